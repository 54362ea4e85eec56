import os
from dataclasses import dataclass
from typing import Any, Mapping


class ConfigError(Exception):
    pass


def _bool_env(environ: Mapping[str, str], name: str, default: bool = False) -> bool:
    v = environ.get(name)
    if v is None:
        return default
    return v.lower() in ("1", "true", "yes", "y")


def _int_env(environ: Mapping[str, str], name: str, default: int) -> int:
    try:
        return int(environ.get(name, ""))
    except ValueError:
        return default


@dataclass
class Config:
    server: str
    username: str
    password: str
    port: int = 1433
    # empty string keeps the login's default database
    database: str = ""
    encrypt: bool = True
    trust_server_certificate: bool = True
    listen_host: str = "0.0.0.0"
    listen_port: int = 4000
    # seconds; query_timeout 0 means wait forever
    connect_timeout: int = 15
    query_timeout: int = 15
    log_level: str = "INFO"
    log_format: str = "json"
    tracing_enabled: bool = False

    def describe(self) -> dict[str, Any]:
        """Log-safe view of the configuration."""
        return {
            "target": f"{self.username}@{self.server}:{self.port}",
            "database": self.database or None,
            "encrypt": self.encrypt,
            "trust_server_certificate": self.trust_server_certificate,
            "listen": f"{self.listen_host}:{self.listen_port}",
            "connect_timeout": self.connect_timeout,
            "query_timeout": self.query_timeout,
        }


def load_config(environ: Mapping[str, str] | None = None) -> Config:
    env = os.environ if environ is None else environ
    for required in ("SERVER", "USERNAME", "PASSWORD"):
        if not env.get(required):
            raise ConfigError(f"Missing {required} information")

    return Config(
        server=env["SERVER"],
        username=env["USERNAME"],
        password=env["PASSWORD"],
        port=_int_env(env, "PORT", 1433),
        database=env.get("DATABASE", ""),
        encrypt=_bool_env(env, "ENCRYPT", default=True),
        trust_server_certificate=_bool_env(env, "TRUST_SERVER_CERTIFICATE", default=True),
        listen_host=env.get("LISTEN_HOST", "0.0.0.0"),
        listen_port=_int_env(env, "EXPOSE", 4000),
        connect_timeout=_int_env(env, "CONNECT_TIMEOUT", 15),
        query_timeout=_int_env(env, "QUERY_TIMEOUT", 15),
        log_level=env.get("LOG_LEVEL", "INFO"),
        log_format=env.get("LOG_FORMAT", "json").lower(),
        tracing_enabled=_bool_env(env, "TRACING_ENABLED"),
    )
