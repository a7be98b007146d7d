from __future__ import annotations

import logging
from typing import List, Optional

from rbacgate.auth.config import GateConfig, load_route_file
from rbacgate.authz.cache import PolicyCache
from rbacgate.authz.pipeline import Authorizer
from rbacgate.authz.policy import PolicyConfig, load_policy_file
from rbacgate.authz.refresh import PolicyRefresher
from rbacgate.providers.policy_authority import AuthorityLookup, PolicyAuthorityClient

logger = logging.getLogger(__name__)


class AuthzService:
    """
    Owns the policy cache, the authorizer and the background refreshers.

    Construct once at startup and hand it to request handlers. `start()` primes
    the authority-backed policy and starts refreshing; `stop()` cancels the
    refreshers.
    """

    def __init__(
        self,
        authorizer: Authorizer,
        *,
        authority: Optional[PolicyAuthorityClient] = None,
        refreshers: Optional[List[PolicyRefresher]] = None,
    ) -> None:
        self.authorizer = authorizer
        self.cache: PolicyCache = authorizer.cache
        self.authority = authority
        self.refreshers: List[PolicyRefresher] = list(refreshers or [])
        self._started = False

    @classmethod
    def from_config(cls, cfg: GateConfig) -> "AuthzService":
        initial = load_policy_file(cfg.policy_file) if cfg.policy_file else PolicyConfig.empty()
        cache = PolicyCache(initial)

        whitelist: List[str] = []
        routes = {}
        if cfg.routes_file:
            whitelist, routes = load_route_file(cfg.routes_file)

        authority: Optional[PolicyAuthorityClient] = None
        remote_lookup = None
        if cfg.authority_enabled and cfg.authority_url:
            authority = PolicyAuthorityClient(cfg.authority_url, timeout_seconds=cfg.authority_timeout_seconds)
            remote_lookup = AuthorityLookup(
                authority, cache, miss_ttl_seconds=cfg.refresh_interval_seconds or cfg.authority_timeout_seconds
            )

        authorizer = Authorizer(
            cache,
            whitelist=whitelist,
            routes=routes,
            secret=cfg.token_secret,
            use_rsa=cfg.use_rsa,
            app_name=cfg.app_name,
            use_local_only=cfg.use_local_only,
            remote_lookup=remote_lookup,
        )

        refreshers: List[PolicyRefresher] = []
        if cfg.refresh_interval_seconds > 0:
            policy_file = cfg.policy_file
            if policy_file:
                refreshers.append(
                    PolicyRefresher(
                        cache,
                        lambda: load_policy_file(policy_file),
                        interval_seconds=cfg.refresh_interval_seconds,
                        name="local-policy-refresher",
                    )
                )
            if authority is not None and cfg.app_name:
                client = authority
                refreshers.append(
                    PolicyRefresher(
                        cache,
                        lambda: client.fetch_policy(cfg.app_name),
                        key=cfg.app_name,
                        interval_seconds=cfg.refresh_interval_seconds,
                        name="authority-policy-refresher",
                    )
                )

        logger.info(
            "Authz service: app=%s use_rsa=%s local_only=%s authority=%s whitelist=%d routes=%d",
            cfg.app_name,
            cfg.use_rsa,
            cfg.use_local_only,
            cfg.authority_url,
            len(whitelist),
            len(routes),
        )
        return cls(authorizer, authority=authority, refreshers=refreshers)

    def start(self) -> None:
        if self._started:
            return
        if self.authority is not None and self.authorizer.app_name:
            self.authority.prime(self.cache, self.authorizer.app_name)
        for r in self.refreshers:
            r.start()
        self._started = True

    def stop(self) -> None:
        for r in self.refreshers:
            r.stop()
        self._started = False

    def refresh_now(self) -> int:
        """Run every refresher once; returns how many updated the cache."""
        return sum(1 for r in self.refreshers if r.refresh_once())

    def __enter__(self) -> "AuthzService":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()
