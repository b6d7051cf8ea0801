"""Common API dependencies: caller context, operator check, registry access, body parsing."""

import json
from typing import Optional, TypeVar

from fastapi import Depends, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ValidationError

from dosi.config import settings
from dosi.services.auth_service import is_authenticated, resolve_context
from dosi.services.context import RequestContext
from dosi.services.registry import (
    Conflict,
    DeviceRegistry,
    InvalidRequest,
    NotFound,
    RegistryError,
    StorageFailure,
    Unauthorized,
)
from dosi.utils.activity_log import log_activity

bearer_scheme = HTTPBearer(auto_error=False)

ModelT = TypeVar("ModelT", bound=BaseModel)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "N/A"


def get_request_context(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> RequestContext:
    """Caller context from the Bearer header or the session cookie (may be anonymous)."""
    token = credentials.credentials if credentials else request.cookies.get(settings.session_cookie_name)
    return resolve_context(token, client_ip(request))


def require_operator(context: RequestContext = Depends(get_request_context)) -> RequestContext:
    """Require an authenticated operator session."""
    if not is_authenticated(context):
        log_activity(context.client_ip, "Unauthorized access attempt.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Operator login required",
        )
    return context


def get_registry(request: Request) -> DeviceRegistry:
    return request.app.state.registry


def status_for(exc: RegistryError) -> int:
    if isinstance(exc, InvalidRequest):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, Unauthorized):
        return status.HTTP_401_UNAUTHORIZED
    if isinstance(exc, NotFound):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, Conflict):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, StorageFailure):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def form_or_json(model: type[ModelT]):
    """Dependency parsing a request body given either as JSON or as a posted form."""

    async def dependency(request: Request) -> ModelT:
        content_type = request.headers.get("content-type", "")
        if content_type.startswith("application/json"):
            try:
                data = await request.json()
            except json.JSONDecodeError:
                raise InvalidRequest("Malformed JSON body.")
            if not isinstance(data, dict):
                raise InvalidRequest("JSON body must be an object.")
        else:
            form = await request.form()
            data = {}
            for key in form.keys():
                values = form.getlist(key)
                data[key] = values if len(values) > 1 else values[0]
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise RequestValidationError(e.errors())

    return dependency
