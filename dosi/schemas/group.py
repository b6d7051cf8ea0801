"""Group and provisioning script schemas."""

from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class GroupResponse(BaseModel):
    name: str
    device_count: int
    has_script: bool


class GroupCreateRequest(BaseModel):
    name: Optional[str] = Field(default=None, validation_alias=AliasChoices("name", "groupName"))


class ScriptRequest(BaseModel):
    content: Optional[str] = None


class ScriptResponse(BaseModel):
    group: str
    content: str
