"""
auth/tokens.py -- Session tokens, password hashing, and credential rules.

Security design decisions:
  JWT: python-jose with HS256. TokenService is built once at startup with the
       secret and session duration from core.config.get_settings() and is
       read-only afterwards -- there is no in-process rotation. Tokens carry
       user_id, username, role, iat and exp (exp = iat + duration).

       verify() checks the signature first and the expiry second. python-jose's
       own exp check treats exp == now as still valid, so it is disabled and
       replaced with a strict `now < exp` against the injected clock. Any
       failure is a hard reject: there is no partially trusted token.

  Passwords: bcrypt directly. The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether a username exists [C1].

Layer rule: no imports from api/, web/, core/, or records/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import jwt
from jose.exceptions import JOSEError

from auth.errors import (
    Expired,
    InvalidSignature,
    InvalidUsername,
    IssuanceError,
    MismatchConfirmation,
    WeakPassword,
)
from auth.models import Role, SessionClaims

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("overtime.auth")

_ALGORITHM = "HS256"

COOKIE_NAME = "token"

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------

_BCRYPT_MAX_BYTES = 72


def _bcrypt_input(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only reads the first 72 bytes, and recent releases reject longer
    input outright, so the encoded password is cut to 72 bytes here and in
    verify_password().
    """
    return bcrypt.hashpw(_bcrypt_input(plain), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(_bcrypt_input(plain), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the store -- never a match.
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("overtime_timing_dummy")


# ---------------------------------------------------------------------------
# Credential rules
# ---------------------------------------------------------------------------


def check_username(username: str, min_length: int) -> None:
    """Raise InvalidUsername if the username is shorter than min_length."""
    if len(username) < min_length:
        raise InvalidUsername(f"Username must be at least {min_length} characters.")


def check_new_password(password: str, confirm_password: str, min_length: int) -> None:
    """Validate a newly chosen password against its confirmation and length rule.

    Confirmation mismatch is reported before length so the user fixes the
    typo first.
    """
    if password != confirm_password:
        raise MismatchConfirmation()
    if len(password) < min_length:
        raise WeakPassword(f"Password must be at least {min_length} characters.")


# ---------------------------------------------------------------------------
# Token service
# ---------------------------------------------------------------------------


class TokenService:
    """Issues and verifies signed session tokens.

    Usage:
        service = TokenService(settings.secret_key, settings.session_expire_seconds)
        token = service.issue(user)
        claims = service.verify(token)   # raises InvalidSignature / Expired
    """

    def __init__(self, secret_key: str, expire_seconds: int, clock: Clock = utcnow) -> None:
        self._secret_key = secret_key
        self._expire_seconds = expire_seconds
        self._clock = clock

    @property
    def expire_seconds(self) -> int:
        return self._expire_seconds

    def issue(self, user: User) -> str:
        """Encode a signed JWT for the given identity.

        Raises IssuanceError if the secret is blank, the user has not been
        persisted yet, or the signing operation itself fails.
        """
        if not self._secret_key:
            raise IssuanceError("Signing secret is not configured.")
        if user.id is None:
            raise IssuanceError("Cannot issue a token for an unsaved user.")

        issued_at = int(self._clock().timestamp())
        payload = {
            "sub": user.username,
            "user_id": user.id,
            "username": user.username,
            "role": user.role.value,
            "iat": issued_at,
            "exp": issued_at + self._expire_seconds,
        }
        try:
            return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)
        except JOSEError as exc:
            raise IssuanceError() from exc

    def verify(self, token: str) -> SessionClaims:
        """Decode a JWT, check its signature, then check it has not expired.

        Raises InvalidSignature for tampering, a wrong secret, a malformed
        token, or a validly signed payload without the expected claims.
        Raises Expired when the signature is good but now >= exp.
        """
        if not self._secret_key:
            raise InvalidSignature()
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except JOSEError as exc:
            raise InvalidSignature() from exc

        try:
            issued_at = int(payload["iat"])
            claims = SessionClaims(
                user_id=int(payload["user_id"]),
                username=str(payload["username"]),
                role=Role(payload["role"]),
                issued_at=datetime.fromtimestamp(issued_at, tz=timezone.utc),
                expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
            )
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Signed session token with malformed claims rejected")
            raise InvalidSignature() from exc

        if not self._clock() < claims.expires_at:
            raise Expired()
        return claims


# ---------------------------------------------------------------------------
# User authentication (constant-time) [C1]
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, username: str, password: str) -> User | None:
    """Authenticate a username/password login with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown username: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the User on success, None on any failure.
    """
    user = store.get_by_username(username)
    if user is None or user.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expire_seconds: int, secure: bool = False) -> None:
    """Write the session token as an httpOnly cookie on the response.

    samesite="strict": the cookie is never sent on cross-site requests.
    max_age matches the token lifetime so both expire together.
    """
    response.set_cookie(
        COOKIE_NAME,
        value=token,
        path="/",
        httponly=True,
        samesite="strict",
        secure=secure,
        max_age=expire_seconds,
    )


def clear_auth_cookie(response) -> None:
    """Expire the session cookie on the client (empty value, Max-Age=0)."""
    response.delete_cookie(COOKIE_NAME, path="/", httponly=True, samesite="strict")
