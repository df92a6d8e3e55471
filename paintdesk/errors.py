"""
Exception handlers rendering every error as {"error": ...}

A dict detail (e.g. subscription gating) is merged into the body so
clients get machine-readable fields such as "code" next to "error".
"""
import logging
from typing import Any, Dict

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from postgrest.exceptions import APIError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .logging_config import get_request_id

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


def is_unique_violation(exc: Exception) -> bool:
    return isinstance(exc, APIError) and getattr(exc, "code", None) == UNIQUE_VIOLATION


def error_body(detail: Any, status_code: int) -> Dict[str, Any]:
    if isinstance(detail, dict):
        body = dict(detail)
        body.setdefault("error", body.get("message") or f"HTTP {status_code} error")
        return body
    return {"error": str(detail) if detail else f"HTTP {status_code} error"}


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("HTTP %s on %s: %s", exc.status_code, request.url.path, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.detail, exc.status_code),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        messages.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg", "invalid"))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "; ".join(messages) or "Invalid request"},
    )


async def database_exception_handler(request: Request, exc: APIError) -> JSONResponse:
    logger.error(
        "Database error on %s: %s (code=%s)",
        request.url.path,
        getattr(exc, "message", exc),
        getattr(exc, "code", None),
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Database error"},
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled exception on %s: %s",
        request.url.path,
        exc,
        exc_info=True,
        extra={"request_id": get_request_id()},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(APIError, database_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
