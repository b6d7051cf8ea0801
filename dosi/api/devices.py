"""Device management API endpoints (operator only)."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, status

from dosi.api.deps import form_or_json, get_registry, require_operator
from dosi.schemas.device import (
    AdoptedDeviceResponse,
    AdoptRequest,
    AliasRequest,
    BatchDeleteRequest,
    BatchFailureResponse,
    BatchMoveRequest,
    BatchResponse,
    MoveRequest,
    PendingDeviceResponse,
)
from dosi.services.context import RequestContext
from dosi.services.registry import AdoptedDevice, BatchResult, DeviceRegistry

router = APIRouter(tags=["devices"])


def _iso(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() if ts else None


def _device_to_response(device: AdoptedDevice) -> AdoptedDeviceResponse:
    return AdoptedDeviceResponse(
        device_id=device.device_id,
        group=device.group,
        alias=device.alias,
        last_check_in=_iso(device.last_check_in),
        reboot_pending=device.reboot_pending,
    )


def _batch_to_response(result: BatchResult) -> BatchResponse:
    return BatchResponse(
        succeeded=result.succeeded,
        failed=[BatchFailureResponse(device_id=f.device_id, error=f.error) for f in result.failed],
    )


# --- Pending adoption ---

@router.get("/devices/pending", response_model=list[PendingDeviceResponse])
def list_pending(
    context: RequestContext = Depends(require_operator),
    registry: DeviceRegistry = Depends(get_registry),
):
    """List devices that checked in but were not adopted yet."""
    return [
        PendingDeviceResponse(device_id=d.device_id, status=d.status, last_check_in=_iso(d.last_check_in))
        for d in registry.list_pending(context)
    ]


@router.delete("/devices/pending/{device_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_pending(
    device_id: str,
    context: RequestContext = Depends(require_operator),
    registry: DeviceRegistry = Depends(get_registry),
):
    registry.delete_pending(context, device_id)


@router.post("/devices/adopt", response_model=AdoptedDeviceResponse, status_code=201)
def adopt_device(
    context: RequestContext = Depends(require_operator),
    request: AdoptRequest = Depends(form_or_json(AdoptRequest)),
    registry: DeviceRegistry = Depends(get_registry),
):
    """Adopt a pending device into a group (the group is created if needed)."""
    return _device_to_response(registry.adopt(context, request.device_id, request.group))


# --- Batch ---

@router.post("/devices/batch/move", response_model=BatchResponse)
def batch_move(
    context: RequestContext = Depends(require_operator),
    request: BatchMoveRequest = Depends(form_or_json(BatchMoveRequest)),
    registry: DeviceRegistry = Depends(get_registry),
):
    """Move several devices; each one succeeds or fails on its own."""
    return _batch_to_response(registry.batch_move(context, request.device_ids, request.target_group))


@router.post("/devices/batch/delete", response_model=BatchResponse)
def batch_delete(
    context: RequestContext = Depends(require_operator),
    request: BatchDeleteRequest = Depends(form_or_json(BatchDeleteRequest)),
    registry: DeviceRegistry = Depends(get_registry),
):
    return _batch_to_response(registry.batch_delete(context, request.device_ids))


# --- Adopted devices ---

@router.get("/devices", response_model=list[AdoptedDeviceResponse])
def list_adopted(
    group: Optional[str] = None,
    context: RequestContext = Depends(require_operator),
    registry: DeviceRegistry = Depends(get_registry),
):
    """List adopted devices, optionally limited to one group."""
    return [_device_to_response(d) for d in registry.list_adopted(context, group)]


@router.get("/devices/{device_id}", response_model=AdoptedDeviceResponse)
def get_device(
    device_id: str,
    context: RequestContext = Depends(require_operator),
    registry: DeviceRegistry = Depends(get_registry),
):
    return _device_to_response(registry.get_device(context, device_id))


@router.delete("/groups/{group}/devices/{device_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_adopted(
    group: str,
    device_id: str,
    context: RequestContext = Depends(require_operator),
    registry: DeviceRegistry = Depends(get_registry),
):
    registry.delete_adopted(context, device_id, group)


@router.post("/groups/{group}/devices/{device_id}/move", response_model=AdoptedDeviceResponse)
def move_device(
    group: str,
    device_id: str,
    context: RequestContext = Depends(require_operator),
    request: MoveRequest = Depends(form_or_json(MoveRequest)),
    registry: DeviceRegistry = Depends(get_registry),
):
    return _device_to_response(registry.move_device(context, device_id, group, request.target_group))


@router.put("/groups/{group}/devices/{device_id}/alias", response_model=AdoptedDeviceResponse)
def set_alias(
    group: str,
    device_id: str,
    context: RequestContext = Depends(require_operator),
    request: AliasRequest = Depends(form_or_json(AliasRequest)),
    registry: DeviceRegistry = Depends(get_registry),
):
    return _device_to_response(registry.set_alias(context, device_id, group, request.alias))


@router.delete("/groups/{group}/devices/{device_id}/alias", response_model=AdoptedDeviceResponse)
def delete_alias(
    group: str,
    device_id: str,
    context: RequestContext = Depends(require_operator),
    registry: DeviceRegistry = Depends(get_registry),
):
    return _device_to_response(registry.delete_alias(context, device_id, group))


@router.post("/groups/{group}/devices/{device_id}/reboot", response_model=AdoptedDeviceResponse)
def request_reboot(
    group: str,
    device_id: str,
    context: RequestContext = Depends(require_operator),
    registry: DeviceRegistry = Depends(get_registry),
):
    """Queue a reboot; it is delivered on the device's next check-in."""
    return _device_to_response(registry.request_reboot(context, device_id, group))
