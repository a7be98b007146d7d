from __future__ import annotations

from typing import Any, Dict

from fastapi.responses import JSONResponse

from rbacgate.authz.pipeline import Rejection


def ok_body(data: Any, code: int = 200) -> Dict[str, Any]:
    return {"status": True, "code": code, "message": data}


def error_body(message: str, code: int) -> Dict[str, Any]:
    return {"status": False, "code": code, "message": message}


def rejection_response(rejection: Rejection) -> JSONResponse:
    # No WWW-Authenticate header: clients read the envelope, not a browser prompt.
    return JSONResponse(
        status_code=rejection.status_code,
        content=error_body(f"{rejection.reason}: {rejection.message}", rejection.status_code),
    )
