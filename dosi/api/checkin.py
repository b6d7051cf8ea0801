"""Device phone-home endpoint (no operator login; devices only send their serial)."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse

from dosi.api.deps import get_registry, get_request_context, status_for
from dosi.services.context import RequestContext
from dosi.services.registry import DeviceRegistry, RegistryError

router = APIRouter(tags=["checkin"])


def _check_in(registry: DeviceRegistry, context: RequestContext, serial: Optional[str]) -> PlainTextResponse:
    try:
        result = registry.check_in(context, serial)
    except RegistryError as e:
        return PlainTextResponse(str(e), status_code=status_for(e))
    return PlainTextResponse(result.response_text)


@router.get("/operator", response_class=PlainTextResponse)
def operator_check_in(
    cpu_serial: Optional[str] = Query(default=None, alias="cpuSerial"),
    context: RequestContext = Depends(get_request_context),
    registry: DeviceRegistry = Depends(get_registry),
):
    """Check-in used by deployed devices: returns NEW, PENDING, REBOOT or the group's script."""
    return _check_in(registry, context, cpu_serial)


@router.get("/api/v1/checkin", response_class=PlainTextResponse)
def api_check_in(
    device_id: Optional[str] = None,
    context: RequestContext = Depends(get_request_context),
    registry: DeviceRegistry = Depends(get_registry),
):
    return _check_in(registry, context, device_id)
