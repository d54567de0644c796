"""
api/routes/v1/auth.py -- Session endpoints for API-style clients.

Routes:
  POST /api/v1/auth/login   -- password login; returns the token and sets the cookie
  POST /api/v1/auth/logout  -- clears the cookie; 200
  GET  /api/v1/auth/me      -- current identity (full gate chain)

API clients send the returned token as `Authorization: Bearer <token>`.
A request carrying both a cookie and a Bearer header is judged by the cookie.

Security:
  [H2] POST /login is rate-limited (LOGIN_RATE_LIMIT, 10/minute by default).
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on login responses.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import LoginRequest, LoginResponse, MeResponse
from auth.dependencies import require_user
from auth.errors import IssuanceError
from auth.models import User
from auth.store import UserStore
from auth.tokens import TokenService, authenticate_user, clear_auth_cookie, set_auth_cookie
from core.config import get_settings

logger = logging.getLogger("overtime.api")

# Auth policy:
# - POST /api/v1/auth/login:   public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/logout:  public -- clearing a cookie needs no prior auth
# - GET  /api/v1/auth/me:      full gate chain (require_user)
router = APIRouter()


def _login_rate_limit() -> str:
    return get_settings().login_rate_limit


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(_login_rate_limit)  # [H2] must be BELOW @router so the registered endpoint is the wrapper
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; return and set the session token.

    Returns the same generic error for wrong username and wrong password
    ("bad_credentials") to avoid leaking username existence information.
    A user with a pending password change still gets a token; the gate chain
    sends them to /change-password on their next request.
    """
    user_store: UserStore = request.app.state.user_store
    token_service: TokenService = request.app.state.token_service

    user = authenticate_user(user_store, body.username, body.password)
    if user is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid username or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    try:
        token = token_service.issue(user)
    except IssuanceError:
        logger.exception("Token issuance failed for user %d", user.id)
        return JSONResponse(
            status_code=500,
            content={"error": {"code": "issuance_failed", "message": "Could not start a session."}},
        )

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=token_service.expire_seconds,
            username=user.username,
            role=user.role,
            must_change_password=user.must_change_password,
        ).model_dump(mode="json"),
    )
    set_auth_cookie(resp, token, token_service.expire_seconds, secure=get_settings().secure_cookies)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout")
async def logout() -> JSONResponse:
    """Clear the session cookie. Bearer clients simply discard their token."""
    resp = JSONResponse(content={"message": "Logged out."})
    clear_auth_cookie(resp)
    return resp


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: User = Depends(require_user())) -> MeResponse:
    """Return identity information for the currently authenticated user."""
    return MeResponse.from_user(current_user)
