from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Claims:
    """Access-token claims. `exp` is epoch milliseconds."""

    user_id: int
    user_name: str
    user_account: str
    app_id: str
    exp: int

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Claims":
        missing = [k for k in ("user_id", "user_name", "user_account", "app_id", "exp") if k not in payload]
        if missing:
            raise ValueError(f"token missing claims: {', '.join(missing)}")
        try:
            return cls(
                user_id=int(payload["user_id"]),
                user_name=str(payload["user_name"]),
                user_account=str(payload["user_account"]),
                app_id=str(payload["app_id"]),
                exp=int(payload["exp"]),
            )
        except (TypeError, ValueError, OverflowError) as e:
            raise ValueError(f"invalid token claims: {e}") from e

    def is_expired(self, now: Optional[int] = None) -> bool:
        return self.exp < (now_ms() if now is None else now)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AuthorizationContext:
    """Per-request state carried through the authorization pipeline."""

    route: str
    bearer: Optional[str] = None
    claims: Optional[Claims] = None
