from __future__ import annotations

from typing import Any, Dict

import jwt  # PyJWT

from rbacgate.auth.models import Claims, now_ms

SYMMETRIC_ALGORITHM = "HS512"
RSA_ALGORITHM = "RS512"


class TokenError(Exception):
    """Access token could not be encoded or verified."""


def _algorithm(use_rsa: bool) -> str:
    return RSA_ALGORITHM if use_rsa else SYMMETRIC_ALGORITHM


def decode_access_token(token: str, key: str, *, use_rsa: bool = False) -> Claims:
    """
    Verify an access token and return its claims.

    `key` is the shared secret (HS512) or an RSA public key PEM (RS512).
    PyJWT's `exp` check is disabled: `exp` is in milliseconds, so callers check
    expiry with `Claims.is_expired()`.
    """
    if not token:
        raise TokenError("empty token")
    if not key:
        raise TokenError("verification key not configured")
    try:
        payload = jwt.decode(
            token,
            key=key,
            algorithms=[_algorithm(use_rsa)],
            options={"verify_exp": False, "verify_aud": False},
        )
    except (jwt.PyJWTError, ValueError) as e:
        raise TokenError(f"token verification failed: {e}") from e
    if not isinstance(payload, dict):
        raise TokenError("invalid token payload")
    try:
        return Claims.from_payload(payload)
    except ValueError as e:
        raise TokenError(str(e)) from e


def encode_access_token(
    *,
    user_id: int,
    user_account: str,
    user_name: str,
    app_id: str,
    timeout_hours: int,
    key: str,
    use_rsa: bool = False,
) -> str:
    """
    Sign an access token valid for `timeout_hours`.

    `key` is the shared secret (HS512) or an RSA private key PEM (RS512).
    """
    claims: Dict[str, Any] = {
        "user_id": int(user_id),
        "user_name": user_name,
        "user_account": user_account,
        "app_id": app_id,
        "exp": now_ms() + int(timeout_hours) * 60 * 60 * 1000,
    }
    try:
        return jwt.encode(claims, key, algorithm=_algorithm(use_rsa))
    except (jwt.PyJWTError, ValueError, TypeError) as e:
        raise TokenError(f"token encoding failed: {e}") from e
