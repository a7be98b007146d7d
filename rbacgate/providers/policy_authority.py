"""
Client for the remote policy authority.

The authority serves per-application RBAC documents and application logins.
Every response is wrapped in the envelope `{status, code, message}`.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from pydantic import BaseModel, ConfigDict, ValidationError

from rbacgate.authz.cache import PolicyCache
from rbacgate.authz.policy import PolicyConfig, PolicyFormatError

logger = logging.getLogger(__name__)


class PolicyAuthorityError(Exception):
    """Network, HTTP or envelope error talking to the policy authority."""


class ClientResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: bool
    code: int = 0
    message: Any = None


class ReadRbacMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    rbac: Optional[Dict[str, Any]] = None


class LoginMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: str
    user_name: str
    user_account: str
    rbac: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class LoginResult:
    access_token: str
    refresh_token: str
    user_name: str
    user_account: str
    rbac: Optional[PolicyConfig]


def strip_url_last_slash(url: str) -> str:
    return url[:-1] if url.endswith("/") else url


def _to_policy(raw: Optional[Dict[str, Any]]) -> Optional[PolicyConfig]:
    if raw is None:
        return None
    try:
        return PolicyConfig.from_dict(raw)
    except PolicyFormatError as e:
        raise PolicyAuthorityError(f"authority returned an invalid RBAC document: {e}") from e


class PolicyAuthorityClient:
    def __init__(
        self,
        server: str,
        *,
        timeout_seconds: float = 5.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.server = strip_url_last_slash((server or "").strip())
        self.timeout_seconds = timeout_seconds
        self._session = session or requests.Session()

    def _envelope(self, response: requests.Response) -> ClientResponse:
        if response.status_code >= 400:
            raise PolicyAuthorityError(f"authority returned HTTP {response.status_code}")
        try:
            return ClientResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise PolicyAuthorityError(f"authority response is not a valid envelope: {e}") from e

    def fetch_policy(self, app_name: str) -> Optional[PolicyConfig]:
        """Fetch the RBAC document registered for `app_name` (None when the authority has none)."""
        url = f"{self.server}/api/v1/janus/app/readrbac/{app_name}"
        try:
            r = self._session.get(url, timeout=self.timeout_seconds)
        except requests.RequestException as e:
            raise PolicyAuthorityError(f"policy authority unreachable: {e}") from e
        env = self._envelope(r)
        if not env.status:
            raise PolicyAuthorityError(f"authority refused RBAC read for {app_name}: {env.message}")
        try:
            msg = ReadRbacMessage.model_validate(env.message or {})
        except ValidationError as e:
            raise PolicyAuthorityError(f"authority RBAC payload is malformed: {e}") from e
        return _to_policy(msg.rbac)

    def app_login(
        self,
        app_name: str,
        app_secret: str,
        account: str,
        password: str,
        *,
        cache: Optional[PolicyCache] = None,
    ) -> LoginResult:
        """
        Log an account in through the authority.

        When the authority returns an RBAC document and `cache` is given, it is
        stored as the named policy for `app_name`.
        """
        url = f"{self.server}/api/v1/janus/app/applogin"
        payload = {"appname": app_name, "appsecret": app_secret, "account": account, "password": password}
        try:
            r = self._session.post(url, json=payload, timeout=self.timeout_seconds)
        except requests.RequestException as e:
            raise PolicyAuthorityError(f"policy authority unreachable: {e}") from e
        env = self._envelope(r)
        if not env.status:
            raise PolicyAuthorityError(f"login error reason: {env.message}")
        try:
            msg = LoginMessage.model_validate(env.message)
        except ValidationError as e:
            raise PolicyAuthorityError(f"login response is malformed: {e}") from e

        rbac = _to_policy(msg.rbac)
        if rbac is not None and cache is not None:
            logger.warning("Updating remote RBAC policy for %s from login response", app_name)
            cache.upsert_named(app_name, rbac)
        return LoginResult(
            access_token=msg.access_token,
            refresh_token=msg.refresh_token,
            user_name=msg.user_name,
            user_account=msg.user_account,
            rbac=rbac,
        )

    def prime(self, cache: PolicyCache, app_name: str) -> bool:
        """
        Startup fetch of the application's policy into the named cache.

        Failures are logged; the service keeps running on its local policy.
        """
        try:
            policy = self.fetch_policy(app_name)
        except PolicyAuthorityError as e:
            logger.warning("Initial RBAC fetch for %s failed: %s", app_name, str(e))
            return False
        if policy is None:
            logger.info("Policy authority has no RBAC document for %s; using local policy", app_name)
            return False
        cache.upsert_named(app_name, policy)
        logger.warning("Using remote RBAC config for %s", app_name)
        return True


class AuthorityLookup:
    """
    Remote lookup used by the pipeline when authority policies are preferred.

    Serves the named cache first. On a miss it fetches from the authority (with
    the client's timeout), at most once per `miss_ttl_seconds` per key, and
    stores what it gets. Fetch errors propagate to the caller.
    """

    def __init__(self, client: PolicyAuthorityClient, cache: PolicyCache, *, miss_ttl_seconds: float = 10.0) -> None:
        self._client = client
        self._cache = cache
        self._miss_ttl = max(0.0, miss_ttl_seconds)
        self._last_miss: Dict[str, float] = {}
        self._lock = threading.Lock()

    def __call__(self, key: str) -> Optional[PolicyConfig]:
        cached = self._cache.get_named(key)
        if cached is not None:
            return cached

        now = time.monotonic()
        with self._lock:
            last = self._last_miss.get(key)
            if last is not None and now - last < self._miss_ttl:
                return None
            self._last_miss[key] = now

        policy = self._client.fetch_policy(key)
        if policy is not None:
            self._cache.upsert_named(key, policy)
            with self._lock:
                self._last_miss.pop(key, None)
        return policy
