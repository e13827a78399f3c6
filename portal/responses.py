"""
Campaign Portal API Response Utilities
Standardized response format and error handling
"""
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from typing import Dict, Optional
from datetime import datetime, timezone
import traceback

from .errors import PortalError
from .logging_config import api_logger


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# ============================================================
# ERROR RESPONSES
# ============================================================

def error_response(status_code: int, message: str, error_code: str, details: Optional[Dict] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "ok": False,
            "error": message,
            "error_code": error_code,
            "details": details,
            "timestamp": _timestamp(),
        },
    )


# ============================================================
# EXCEPTION HANDLERS
# ============================================================

async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
    """Render domain errors with their stable error code."""
    log = api_logger.error if exc.status_code >= 500 else api_logger.warning
    log(
        f"API Error: {exc.message}",
        status_code=exc.status_code,
        error_code=exc.error_code,
        path=request.url.path,
    )
    return error_response(exc.status_code, exc.message, exc.error_code, exc.details)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg")}
        for err in exc.errors()
    ]
    api_logger.warning("Request validation failed", path=request.url.path, error_count=len(errors))
    return error_response(422, "Invalid request", "VALIDATION_ERROR", {"errors": errors})


async def api_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for everything else"""

    if isinstance(exc, HTTPException):
        api_logger.warning(
            f"HTTP Error: {exc.detail}",
            status_code=exc.status_code,
            path=request.url.path,
        )
        return error_response(exc.status_code, str(exc.detail), f"HTTP_{exc.status_code}")

    api_logger.error(
        f"Unexpected error: {exc}",
        error=exc,
        path=request.url.path,
        traceback=traceback.format_exc(),
    )
    return error_response(500, "An unexpected error occurred", "INTERNAL_ERROR")
