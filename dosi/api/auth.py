"""Operator login/logout endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from dosi.api.deps import client_ip, form_or_json, get_request_context
from dosi.config import settings
from dosi.schemas.auth import LoginRequest, LoginResponse
from dosi.services.auth_service import login
from dosi.services.context import RequestContext
from dosi.utils.activity_log import log_activity

router = APIRouter(tags=["auth"])


@router.post("/login", response_model=LoginResponse)
def operator_login(
    request_obj: Request,
    response: Response,
    request: LoginRequest = Depends(form_or_json(LoginRequest)),
):
    """Verify operator credentials. Sets the session cookie and returns the token."""
    token = login(request.username, request.password, client_ip(request_obj))
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials.",
        )

    expires_in = settings.session_expire_minutes * 60
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=expires_in,
        httponly=True,
        samesite="lax",
    )
    return LoginResponse(access_token=token, username=request.username, expires_in=expires_in)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def operator_logout(
    response: Response,
    context: RequestContext = Depends(get_request_context),
):
    """Drop the session cookie. Tokens are stateless and simply expire."""
    log_activity(context.client_ip, f"User logged out: {context.username or 'anonymous'}")
    response.delete_cookie(settings.session_cookie_name)
