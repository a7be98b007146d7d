"""
HTTP integration: a FastAPI app that runs every request through the authorizer.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request

from rbacgate.api.envelope import ok_body, rejection_response
from rbacgate.auth.models import Claims
from rbacgate.authz.policy import grants_to_dict, resolve_all
from rbacgate.authz.service import AuthzService

logger = logging.getLogger(__name__)


def require_claims(request: Request) -> Claims:
    """Claims attached by the authorization middleware."""
    claims = getattr(request.state, "claims", None)
    if claims is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return claims


def install_guard(app: FastAPI, service: AuthzService) -> None:
    """Register the middleware that authorizes every request before routing."""

    @app.middleware("http")
    async def authorize_requests(request: Request, call_next):
        start_time = time.time()
        # CORS preflights carry no credentials.
        if request.method == "OPTIONS" and "access-control-request-method" in request.headers:
            return await call_next(request)

        # Authority lookups may block on the network; keep them off the event loop.
        outcome = await asyncio.to_thread(
            service.authorizer.authorize, request.method, request.url.path, request.headers.get("authorization")
        )
        if outcome.rejection is not None:
            logger.debug(
                "%s %s - %d %s", request.method, request.url.path, outcome.rejection.status_code, outcome.rejection.reason
            )
            return rejection_response(outcome.rejection)

        request.state.claims = outcome.claims
        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception("%s %s - ERROR after %.3fs: %s", request.method, request.url.path, time.time() - start_time, str(e))
            raise
        logger.debug(
            "%s %s - %d (%.3fs)", request.method, request.url.path, response.status_code, time.time() - start_time
        )
        return response


def create_app(service: Optional[AuthzService] = None) -> FastAPI:
    if service is None:
        from rbacgate.auth.config import load_gate_config

        service = AuthzService.from_config(load_gate_config())

    app = FastAPI(title="rbacgate")
    app.state.authz = service
    install_guard(app, service)

    @app.on_event("startup")
    def _startup_authz() -> None:
        service.start()

    @app.on_event("shutdown")
    def _shutdown_authz() -> None:
        service.stop()

    @app.get("/healthz")
    def healthz() -> Dict[str, Any]:
        return {"ok": True}

    @app.get("/api/rbac/permissions")
    def my_permissions(request: Request, include_all: bool = Query(False, alias="all")) -> Dict[str, Any]:
        claims = require_claims(request)
        policy = service.authorizer.policy()
        grants = resolve_all(policy, claims.user_account, include_ungranted=include_all)
        return ok_body({"name": policy.name, "account": claims.user_account, "permission": grants_to_dict(grants)})

    @app.post("/api/rbac/refresh")
    def refresh() -> Dict[str, Any]:
        refreshed = service.refresh_now()
        return {"ok": True, "refreshed": refreshed}

    return app


def run(host: str = "0.0.0.0", port: int = 8080) -> None:
    import uvicorn

    log_level = os.getenv("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    app = create_app()
    logger.info("Starting rbacgate server on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_log_level)
