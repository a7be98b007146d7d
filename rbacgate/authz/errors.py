from __future__ import annotations


class AuthorizationError(Exception):
    """Base class for per-request authorization rejections."""

    reason = "unauthorized"
    status_code = 401

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.reason)
        self.message = message or self.reason


class MissingCredential(AuthorizationError):
    reason = "missing_credential"
    status_code = 401


class MalformedCredential(AuthorizationError):
    reason = "malformed_credential"
    status_code = 401


class InvalidCredential(AuthorizationError):
    """Signature, decode or expiry failure."""

    reason = "invalid_credential"
    status_code = 401


class PolicyUnavailable(AuthorizationError):
    """No policy was ever loaded into the cache (startup wiring error)."""

    reason = "policy_unavailable"
    status_code = 503


class Forbidden(AuthorizationError):
    reason = "forbidden"
    status_code = 403
