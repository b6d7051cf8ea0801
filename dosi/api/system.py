"""System status and activity log API endpoints."""

from fastapi import APIRouter, Depends, Query

from dosi.api.deps import require_operator
from dosi.config import settings
from dosi.schemas.system import LogResponse
from dosi.services.context import RequestContext
from dosi.utils.activity_log import read_activity_log

router = APIRouter(tags=["system"])


@router.get("/system/ping")
def system_ping():
    """Lightweight health check (no auth required)."""
    return {"status": "ok"}


@router.get("/logs", response_model=LogResponse)
def view_logs(
    lines: int = Query(default=200, ge=1, le=5000),
    context: RequestContext = Depends(require_operator),
):
    """Tail of the activity log, oldest line first."""
    tail = read_activity_log(settings.log_path, lines)
    return LogResponse(lines=tail, count=len(tail))
