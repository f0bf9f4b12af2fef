# FILE: reassignment_billing/api/response.py
from __future__ import annotations

from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from reassignment_billing.schemas.common import ApiError, ApiResponse


def ok(data: Any = None, *, status_code: int = 200) -> JSONResponse:
    """
    {"ok": true, "data": ..., "error": null}
    """
    payload = ApiResponse(ok=True, data=jsonable_encoder(data))
    return JSONResponse(status_code=status_code,
                        content=jsonable_encoder(payload))


def err(
    msg: str = "Something went wrong",
    *,
    status_code: int = 400,
    code: Optional[str] = None,
    details: Any = None,
) -> JSONResponse:
    """
    {"ok": false, "data": null, "error": {"msg", "code", "details"}}
    """
    payload = ApiResponse(
        ok=False,
        error=ApiError(msg=msg, code=code, details=jsonable_encoder(details)),
    )
    return JSONResponse(status_code=status_code,
                        content=jsonable_encoder(payload))
