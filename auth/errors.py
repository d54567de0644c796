"""
auth/errors.py -- Exception taxonomy for the auth package.

Each family maps to one recovery strategy at the edge:

  AuthError        -> gate chain: clear cookie, redirect to /login
  AuthzError       -> 403, the user stays logged in
  InviteError      -> registration flow shows a rejection page
  CredentialError  -> form re-rendered with the message (DEBUG log only)
  IssuanceError    -> login fails, logged with traceback

`message` is safe to show to an end user; it never contains token contents,
codes, or password material.

Layer rule: stdlib only.
"""

from __future__ import annotations


class OvertimeAuthError(Exception):
    """Base class for every error raised by the auth package."""

    message = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message


class IssuanceError(OvertimeAuthError):
    message = "Could not issue a session token."


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class AuthError(OvertimeAuthError):
    message = "Authentication required."


class MissingToken(AuthError):
    message = "No session token was presented."


class InvalidSignature(AuthError):
    message = "Session token is invalid."


class Expired(AuthError):
    message = "Session has expired."


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class AuthzError(OvertimeAuthError):
    message = "Forbidden."


class RoleNotAllowed(AuthzError):
    message = "Your role does not have access to this page."


# ---------------------------------------------------------------------------
# Invites
# ---------------------------------------------------------------------------


class InviteError(OvertimeAuthError):
    message = "Invalid invite link."


class InviteNotFound(InviteError):
    message = "Invalid invite link."


class AlreadyUsed(InviteError):
    message = "This invite link has already been used."


class InviteExpired(InviteError):
    message = "This invite link has expired."


class EntropyUnavailable(InviteError):
    message = "Could not generate an invite code."


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class CredentialError(OvertimeAuthError):
    message = "Invalid credentials."


class UsernameTaken(CredentialError):
    message = "Username already exists."


class InvalidUsername(CredentialError):
    message = "Username is too short."


class WeakPassword(CredentialError):
    message = "Password is too short."


class MismatchConfirmation(CredentialError):
    message = "Passwords do not match."
