import pytest

from mssql_exporter.config import ConfigError, load_config

BASE_ENV = {"SERVER": "db.local", "USERNAME": "sa", "PASSWORD": "secret"}


def test_defaults():
    cfg = load_config(dict(BASE_ENV))
    assert cfg.server == "db.local"
    assert cfg.port == 1433
    assert cfg.encrypt is True
    assert cfg.trust_server_certificate is True
    assert cfg.listen_port == 4000
    assert cfg.connect_timeout == 15
    assert cfg.query_timeout == 15
    assert cfg.database == ""
    assert cfg.tracing_enabled is False


def test_overrides():
    env = dict(BASE_ENV, PORT="1434", EXPOSE="9399", ENCRYPT="false", TRUST_SERVER_CERTIFICATE="no",
               QUERY_TIMEOUT="0", DATABASE="master", LOG_FORMAT="TEXT", TRACING_ENABLED="yes")
    cfg = load_config(env)
    assert cfg.port == 1434
    assert cfg.listen_port == 9399
    assert cfg.encrypt is False
    assert cfg.trust_server_certificate is False
    assert cfg.query_timeout == 0
    assert cfg.database == "master"
    assert cfg.log_format == "text"
    assert cfg.tracing_enabled is True


def test_unparseable_port_falls_back_to_default():
    cfg = load_config(dict(BASE_ENV, PORT="not-a-port", EXPOSE=""))
    assert cfg.port == 1433
    assert cfg.listen_port == 4000


@pytest.mark.parametrize("missing", ["SERVER", "USERNAME", "PASSWORD"])
def test_missing_required_setting(missing):
    env = dict(BASE_ENV)
    del env[missing]
    with pytest.raises(ConfigError, match=missing):
        load_config(env)


def test_reads_process_environment(monkeypatch):
    for k, v in BASE_ENV.items():
        monkeypatch.setenv(k, v)
    monkeypatch.setenv("EXPOSE", "4100")
    assert load_config().listen_port == 4100


def test_describe_masks_password():
    cfg = load_config(dict(BASE_ENV))
    described = cfg.describe()
    assert "secret" not in repr(described)
    assert described["target"] == "sa@db.local:1433"
