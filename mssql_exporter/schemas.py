from pydantic import BaseModel


class VersionInfo(BaseModel):
    name: str
    version: str


class Health(BaseModel):
    status: str = "ok"
