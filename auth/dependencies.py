"""
auth/dependencies.py -- Access Gate Chain as FastAPI Depends() helpers.

Every protected request walks the same ordered gates. Each gate either passes
control on or raises GateTerminated carrying the response to send instead; the
handler registered in api/main.py returns that response unchanged.

  1. Token present?         cookie "token" first, then Authorization: Bearer.
                            Missing -> 303 /login.
  2. Token verifies?        TokenService.verify(). Invalid signature and
                            expired are handled alike: clear cookie, 303 /login.
  3. Identity resolves?     Live user row by claims.user_id. Deleted since
                            issue -> clear cookie, 303 /login.
  4. Password compliant?    must_change_password and not on /change-password
                            -> 303 /change-password.
  5. Role allowed?          Only when the route declares roles. Not a member
                            -> 403. The user IS logged in, so never a redirect.

The resolved User is the dependency's return value. Handlers receive it as an
explicit argument:

    @router.get("/invites")
    def invites(request: Request, user: User = Depends(require_user(Role.ADMIN))): ...

No gate writes to the database.

Layer rule: no imports from web/, core/, or records/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response

from auth.errors import AuthError, AuthzError, MissingToken, OvertimeAuthError, RoleNotAllowed
from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import COOKIE_NAME, TokenService, clear_auth_cookie

logger = logging.getLogger("overtime.auth")

LOGIN_PATH = "/login"
CHANGE_PASSWORD_PATH = "/change-password"


class GateTerminated(Exception):
    """Raised by a gate to end the request early with a ready-made response."""

    def __init__(self, response: Response, error: OvertimeAuthError) -> None:
        super().__init__(error.message)
        self.response = response
        self.error = error


# ---------------------------------------------------------------------------
# Terminal responses
# ---------------------------------------------------------------------------


def _redirect(path: str, clear_cookie: bool = False) -> RedirectResponse:
    resp = RedirectResponse(path, status_code=303)
    if clear_cookie:
        clear_auth_cookie(resp)
    return resp


def _forbidden(request: Request, error: AuthzError) -> Response:
    if request.url.path.startswith("/api/"):
        return JSONResponse(
            status_code=403,
            content={"error": {"code": "forbidden", "message": error.message}},
        )
    return HTMLResponse(f"<h1>Forbidden</h1><p>{error.message}</p>", status_code=403)


# ---------------------------------------------------------------------------
# Gates
# ---------------------------------------------------------------------------


def extract_token(request: Request) -> str | None:
    """Return the session token from the cookie, else from a Bearer header."""
    token = request.cookies.get(COOKIE_NAME)
    if token:
        return token
    auth_header = request.headers.get("Authorization", "")
    scheme, _, credentials = auth_header.partition(" ")
    if scheme == "Bearer" and credentials.strip():
        return credentials.strip()
    return None


def authenticate(request: Request) -> User:
    """Gates 1-3: token present, token verifies, identity still exists."""
    token = extract_token(request)
    if token is None:
        raise GateTerminated(_redirect(LOGIN_PATH), MissingToken())

    token_service: TokenService = request.app.state.token_service
    try:
        claims = token_service.verify(token)
    except AuthError as exc:
        logger.info("Rejected session token on %s: %s", request.url.path, type(exc).__name__)
        raise GateTerminated(_redirect(LOGIN_PATH, clear_cookie=True), exc) from exc

    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(claims.user_id)
    if user is None:
        logger.info("Session token for missing user %d on %s", claims.user_id, request.url.path)
        raise GateTerminated(_redirect(LOGIN_PATH, clear_cookie=True), MissingToken("Account no longer exists."))
    return user


def check_password_compliance(request: Request, user: User) -> None:
    """Gate 4: force a password change before anything but the change page."""
    if user.must_change_password and request.url.path != CHANGE_PASSWORD_PATH:
        raise GateTerminated(
            _redirect(CHANGE_PASSWORD_PATH),
            AuthError("Password change required."),
        )


def check_role(request: Request, user: User, allowed: frozenset[Role]) -> None:
    """Gate 5: the live role must be in the route's allow-list (if it has one)."""
    if allowed and user.role not in allowed:
        error = RoleNotAllowed()
        logger.warning(
            "Role %s denied on %s for user %d",
            user.role.value,
            request.url.path,
            user.id,
        )
        raise GateTerminated(_forbidden(request, error), error)


# ---------------------------------------------------------------------------
# Dependency factories
# ---------------------------------------------------------------------------


def require_user(*roles: Role) -> Callable[[Request], User]:
    """Build the full gate chain for a route, optionally restricted to roles."""
    allowed = frozenset(roles)

    def dependency(request: Request) -> User:
        user = authenticate(request)
        check_password_compliance(request, user)
        check_role(request, user, allowed)
        return user

    return dependency


def require_session(request: Request) -> User:
    """Gates 1-3 only. For the change-password endpoints and logout, which
    must stay reachable while a password change is pending."""
    return authenticate(request)


def try_get_current_user(request: Request) -> User | None:
    """Soft variant: the resolved user, or None instead of a terminal response."""
    try:
        return authenticate(request)
    except GateTerminated:
        return None
