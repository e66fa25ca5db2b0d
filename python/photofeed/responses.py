"""Error envelope and exception handlers.

Success bodies are the resource itself (album JSON, image bytes,
augmentation record); widgets consume them directly. Errors always look like:

    {"error": {"code": "E_...", "message": "...", "request_id": "..."}}
"""

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from photofeed.errors import ApiError, ApiErrorCode
from photofeed.logging import get_logger, get_request_id

logger = get_logger(__name__)

# Starlette raises HTTPException for unmatched routes and methods
_HTTP_STATUS_CODES: dict[int, ApiErrorCode] = {
    400: ApiErrorCode.E_INVALID_REQUEST,
    404: ApiErrorCode.E_NOT_FOUND,
    405: ApiErrorCode.E_INVALID_REQUEST,
    422: ApiErrorCode.E_INVALID_REQUEST,
}


def error_response(
    code: ApiErrorCode, message: str, request_id: str | None = None
) -> dict[str, Any]:
    """Build the error envelope; request_id defaults to the current request's."""
    error = {"code": code.value, "message": message}
    request_id = request_id or get_request_id()
    if request_id:
        error["request_id"] = request_id
    return {"error": error}


def _render(status_code: int, code: ApiErrorCode, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error_response(code, message))


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("api_error", code=exc.code.value, status_code=exc.status_code)
    return _render(exc.status_code, exc.code, exc.message)


async def http_exception_handler(request: Request, exc: Any) -> JSONResponse:
    code = _HTTP_STATUS_CODES.get(exc.status_code, ApiErrorCode.E_INTERNAL)
    return _render(exc.status_code, code, str(exc.detail) if exc.detail else "An error occurred")


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log the exception and answer 500 E_INTERNAL without details."""
    logger.exception("unhandled_exception", error_type=type(exc).__name__)
    return _render(500, ApiErrorCode.E_INTERNAL, "Internal server error")
