from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping, Optional

from rbacgate.auth.models import AuthorizationContext, Claims
from rbacgate.auth.tokens import TokenError, decode_access_token
from rbacgate.authz.cache import PolicyCache
from rbacgate.authz.errors import (
    AuthorizationError,
    Forbidden,
    InvalidCredential,
    MalformedCredential,
    MissingCredential,
)
from rbacgate.authz.policy import PolicyConfig, resolve
from rbacgate.authz.routes import PageAction, RouteMatcher, RouteTable, route_key

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "

RemoteLookup = Callable[[str], Optional[PolicyConfig]]


@dataclass(frozen=True)
class Rejection:
    reason: str
    message: str
    status_code: int
    cause: Optional[BaseException] = None


@dataclass(frozen=True)
class AuthzOutcome:
    claims: Optional[Claims] = None
    rejection: Optional[Rejection] = None
    exempt: bool = False

    @property
    def ok(self) -> bool:
        return self.rejection is None


class Authorizer:
    """
    Per-request authorization: bearer token -> claims -> whitelist -> policy.

    Safe to share between threads; the only shared state it touches is the
    policy cache, which is read-only on this path.
    """

    def __init__(
        self,
        cache: PolicyCache,
        *,
        whitelist: Iterable[str] = (),
        routes: Optional[Mapping[str, PageAction]] = None,
        secret: Optional[str] = None,
        use_rsa: bool = False,
        app_name: str = "",
        use_local_only: bool = True,
        remote_lookup: Optional[RemoteLookup] = None,
    ) -> None:
        self.cache = cache
        self.whitelist = RouteMatcher(whitelist)
        self.routes = RouteTable(routes)
        self.secret = secret or ""
        self.use_rsa = use_rsa
        self.app_name = app_name
        self.use_local_only = use_local_only
        self._remote_lookup: RemoteLookup = remote_lookup or cache.get_named

    def policy(self) -> PolicyConfig:
        """The policy decisions are made against right now (authority first unless local-only)."""
        return self.cache.effective_policy(not self.use_local_only, self._remote_lookup, self.app_name)

    def _bearer(self, authorization: Optional[str]) -> str:
        if authorization is None or authorization == "":
            raise MissingCredential("no authorization header")
        if len(authorization) < len(BEARER_PREFIX) or not authorization.startswith(BEARER_PREFIX):
            raise MalformedCredential("authorization header is not a bearer token")
        return authorization[len(BEARER_PREFIX) :]

    def _decode(self, token: str) -> Claims:
        try:
            claims = decode_access_token(token, self.secret, use_rsa=self.use_rsa)
        except TokenError as e:
            raise InvalidCredential("access token could not be verified") from e
        if claims.is_expired():
            raise InvalidCredential("access token has expired")
        return claims

    def check_and_verify(self, method: str, path: str, authorization: Optional[str]) -> Claims:
        """
        Run the full pipeline and return the caller's claims.

        Raises an AuthorizationError subclass on rejection.
        """
        ctx = AuthorizationContext(route=route_key(method, path))
        ctx.bearer = self._bearer(authorization)
        ctx.claims = self._decode(ctx.bearer)

        if self.whitelist.is_exempt(ctx.route):
            return ctx.claims

        account = ctx.claims.user_account
        policy = self.policy()
        target = self.routes.lookup(ctx.route)
        if target is not None:
            page, action = target
            granted, _requirements = resolve(policy, account, page, action)
            if granted:
                return ctx.claims
        raise Forbidden(f"account {account} has no permission for {ctx.route}")

    def is_exempt(self, method: str, path: str) -> bool:
        return self.whitelist.is_exempt(route_key(method, path))

    def authorize(self, method: str, path: str, authorization: Optional[str]) -> AuthzOutcome:
        """Boundary form of `check_and_verify`: rejections come back as values."""
        try:
            claims = self.check_and_verify(method, path, authorization)
        except AuthorizationError as e:
            logger.info("Rejected %s %s: %s (%s)", method, path, e.reason, e.message)
            return AuthzOutcome(
                rejection=Rejection(reason=e.reason, message=e.message, status_code=e.status_code, cause=e.__cause__ or e)
            )
        return AuthzOutcome(claims=claims, exempt=self.is_exempt(method, path))
