"""Device request/response schemas."""

import re
from typing import Annotated, Any, Optional

from pydantic import AliasChoices, BaseModel, BeforeValidator, Field


def _split_ids(value):
    # form posts send one comma/space separated string
    if isinstance(value, str):
        return [v for v in re.split(r"[\s,]+", value) if v]
    return value


# items are validated one by one by the registry so a bad entry fails alone
DeviceIdList = Annotated[list[Any], BeforeValidator(_split_ids)]


# --- Pending ---

class PendingDeviceResponse(BaseModel):
    device_id: str
    status: str
    last_check_in: Optional[str]


class AdoptRequest(BaseModel):
    device_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("device_id", "cpuSerial"))
    group: Optional[str] = Field(default=None, validation_alias=AliasChoices("group", "groupName"))


# --- Adopted ---

class AdoptedDeviceResponse(BaseModel):
    device_id: str
    group: str
    alias: Optional[str]
    last_check_in: Optional[str]
    reboot_pending: bool


class AliasRequest(BaseModel):
    alias: Optional[str] = None


class MoveRequest(BaseModel):
    target_group: Optional[str] = Field(default=None, validation_alias=AliasChoices("target_group", "targetGroup"))


# --- Batch ---

class BatchMoveRequest(BaseModel):
    device_ids: DeviceIdList = Field(default_factory=list, validation_alias=AliasChoices("device_ids", "cpuSerials"))
    target_group: Optional[str] = Field(default=None, validation_alias=AliasChoices("target_group", "targetGroup"))


class BatchDeleteRequest(BaseModel):
    device_ids: DeviceIdList = Field(default_factory=list, validation_alias=AliasChoices("device_ids", "cpuSerials"))


class BatchFailureResponse(BaseModel):
    device_id: str
    error: str


class BatchResponse(BaseModel):
    succeeded: list[str]
    failed: list[BatchFailureResponse]
