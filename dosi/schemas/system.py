"""System status and activity log schemas."""

from pydantic import BaseModel


class ServerInfoResponse(BaseModel):
    name: str
    version: str
    status: str
    store_backend: str


class LogResponse(BaseModel):
    lines: list[str]
    count: int
