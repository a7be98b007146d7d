from __future__ import annotations

import json
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml


class ConfigError(ValueError):
    """Invalid gate configuration."""


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y", "on")


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except Exception:
        return default


def _env_str(name: str) -> Optional[str]:
    return (os.getenv(name, "") or "").strip() or None


@dataclass(frozen=True)
class GateConfig:
    # Application identity (also the key for authority-provided policies)
    app_name: str

    # Token verification: HS512 shared secret, or RS512 public key PEM when use_rsa
    token_secret: Optional[str]
    use_rsa: bool

    # Policy sources
    use_local_only: bool
    authority_url: Optional[str]
    authority_timeout_seconds: float
    policy_file: Optional[str]
    routes_file: Optional[str]

    # Background refresh; 0 disables
    refresh_interval_seconds: float

    log_level: str

    @property
    def authority_enabled(self) -> bool:
        return bool(self.authority_url) and not self.use_local_only


def _read_secret() -> Optional[str]:
    secret = os.getenv("RBAC_TOKEN_SECRET", "") or ""
    if secret.strip():
        return secret.strip()
    path = _env_str("RBAC_TOKEN_SECRET_FILE")
    if not path:
        return None
    with open(path, "r", encoding="utf-8") as f:
        return f.read().strip() or None


@lru_cache(maxsize=1)
def load_gate_config() -> GateConfig:
    """
    Load gate configuration from environment variables.

    Recommended vars:
    - RBAC_APP_NAME=my-service
    - RBAC_TOKEN_SECRET=... or RBAC_TOKEN_SECRET_FILE=/etc/rbac/public.pem
    - RBAC_USE_RSA=1
    - RBAC_AUTHORITY_URL=http://idm:8080
    - RBAC_USE_LOCAL_ONLY=0
    - RBAC_POLICY_FILE=/etc/rbac/policy.yaml
    - RBAC_ROUTES_FILE=/etc/rbac/routes.yaml
    - RBAC_REFRESH_INTERVAL_SECONDS=10
    """
    authority_url = _env_str("RBAC_AUTHORITY_URL")
    refresh = _env_float("RBAC_REFRESH_INTERVAL_SECONDS", 10.0)
    return GateConfig(
        app_name=_env_str("RBAC_APP_NAME") or "",
        token_secret=_read_secret(),
        use_rsa=_env_bool("RBAC_USE_RSA", False),
        # Without an authority there is nothing remote to prefer.
        use_local_only=_env_bool("RBAC_USE_LOCAL_ONLY", authority_url is None),
        authority_url=authority_url,
        authority_timeout_seconds=max(1.0, _env_float("RBAC_AUTHORITY_TIMEOUT_SECONDS", 5.0)),
        policy_file=_env_str("RBAC_POLICY_FILE"),
        routes_file=_env_str("RBAC_ROUTES_FILE"),
        refresh_interval_seconds=max(0.0, refresh),
        log_level=(_env_str("LOG_LEVEL") or "info").lower(),
    )


def _load_document(path: str | Path) -> Any:
    p = Path(path)
    with open(p, "r", encoding="utf-8") as f:
        raw = f.read()
    if not raw.strip():
        return {}
    if p.suffix.lower() == ".json":
        return json.loads(raw)
    return yaml.safe_load(raw) or {}


def parse_routes(data: Any) -> Tuple[List[str], Dict[str, Tuple[str, str]]]:
    """
    Validate a routes document:

        whitelist:
          - "GET /healthz"
          - "^GET /static/.*$"
        routes:
          "GET /api/items": ["/items", "view"]
          "^DELETE /api/items/\\d+$": ["/items", "delete"]
    """
    if not isinstance(data, dict):
        raise ConfigError("routes document must be a mapping")
    whitelist = data.get("whitelist") or []
    if not isinstance(whitelist, list) or not all(isinstance(x, str) for x in whitelist):
        raise ConfigError("`whitelist` must be a list of route strings")
    raw_routes = data.get("routes") or {}
    if not isinstance(raw_routes, dict):
        raise ConfigError("`routes` must map route patterns to [page, action]")
    routes: Dict[str, Tuple[str, str]] = {}
    for route, target in raw_routes.items():
        if isinstance(target, dict):
            target = [target.get("page"), target.get("action")]
        if not isinstance(target, (list, tuple)) or len(target) != 2 or not all(isinstance(x, str) for x in target):
            raise ConfigError(f"route {route!r} must map to [page, action]")
        routes[str(route)] = (target[0], target[1])
    return list(whitelist), routes


def load_route_file(path: str | Path) -> Tuple[List[str], Dict[str, Tuple[str, str]]]:
    try:
        data = _load_document(path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot read routes file {path}: {e}") from e
    return parse_routes(data)
