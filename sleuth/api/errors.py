from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException


# Status codes the envelope names explicitly; anything else falls back to "error".
_CODES = {
    400: "invalid_argument",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    500: "internal",
    503: "unavailable",
}


@dataclass
class APIError(Exception):
    status_code: int
    code: str
    message: str
    details: dict[str, Any] | None = None


def error_code(status_code: int) -> str:
    return _CODES.get(int(status_code), "error")


def error_response(*, status_code: int, code: str, message: str, details: dict[str, Any] | None = None) -> JSONResponse:
    """Every non-2xx body is `{"error": {"code", "message", "details"?}}`."""
    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return JSONResponse(status_code=int(status_code), content=payload)


async def api_error_handler(_req: Request, exc: APIError) -> JSONResponse:
    return error_response(status_code=exc.status_code, code=exc.code, message=exc.message, details=exc.details)


async def http_error_handler(_req: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(status_code=exc.status_code, code=error_code(exc.status_code), message=str(exc.detail))


async def validation_error_handler(_req: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(e.get("loc") or []), "msg": str(e.get("msg") or ""), "type": str(e.get("type") or "")}
        for e in exc.errors()
    ]
    return error_response(
        status_code=400,
        code="invalid_argument",
        message="Request validation failed.",
        details={"errors": errors},
    )


async def unhandled_error_handler(_req: Request, exc: Exception) -> JSONResponse:
    # Run failures are recorded as run_failed events; the response only names the exception type.
    return error_response(status_code=500, code="internal", message="Internal server error.", details={"type": type(exc).__name__})


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
