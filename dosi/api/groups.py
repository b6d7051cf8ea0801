"""Group and provisioning script API endpoints (operator only)."""

from fastapi import APIRouter, Depends, status

from dosi.api.deps import form_or_json, get_registry, require_operator
from dosi.schemas.group import GroupCreateRequest, GroupResponse, ScriptRequest, ScriptResponse
from dosi.services.context import RequestContext
from dosi.services.registry import DeviceRegistry, GroupSummary

router = APIRouter(prefix="/groups", tags=["groups"])


def _group_to_response(group: GroupSummary) -> GroupResponse:
    return GroupResponse(name=group.name, device_count=group.device_count, has_script=group.has_script)


@router.get("", response_model=list[GroupResponse])
def list_groups(
    context: RequestContext = Depends(require_operator),
    registry: DeviceRegistry = Depends(get_registry),
):
    return [_group_to_response(g) for g in registry.list_groups(context)]


@router.post("", response_model=GroupResponse, status_code=201)
def create_group(
    context: RequestContext = Depends(require_operator),
    request: GroupCreateRequest = Depends(form_or_json(GroupCreateRequest)),
    registry: DeviceRegistry = Depends(get_registry),
):
    return _group_to_response(registry.create_group(context, request.name))


@router.delete("/{group}", status_code=status.HTTP_204_NO_CONTENT)
def delete_group(
    group: str,
    context: RequestContext = Depends(require_operator),
    registry: DeviceRegistry = Depends(get_registry),
):
    """Delete an empty group. Groups that still hold devices are refused with 409."""
    registry.delete_group(context, group)


@router.get("/{group}/script", response_model=ScriptResponse)
def get_script(
    group: str,
    context: RequestContext = Depends(require_operator),
    registry: DeviceRegistry = Depends(get_registry),
):
    return ScriptResponse(group=group, content=registry.get_script(context, group))


@router.put("/{group}/script", response_model=ScriptResponse)
def set_script(
    group: str,
    context: RequestContext = Depends(require_operator),
    request: ScriptRequest = Depends(form_or_json(ScriptRequest)),
    registry: DeviceRegistry = Depends(get_registry),
):
    """Replace the group's provisioning script. Devices receive it on their next check-in."""
    registry.set_script(context, group, request.content)
    return ScriptResponse(group=group, content=request.content)
