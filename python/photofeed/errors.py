"""API error codes and exceptions.

Service code raises ApiError subclasses; responses.py renders them into
the error envelope. Upstream failures surface only on a cold cache, since
every read path serves stale data when it has any.
"""

from enum import Enum


class ApiErrorCode(str, Enum):
    # 400
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_INVALID_TOKEN = "E_INVALID_TOKEN"

    # 404
    E_NOT_FOUND = "E_NOT_FOUND"
    E_IMAGE_NOT_FOUND = "E_IMAGE_NOT_FOUND"
    E_ITEM_NOT_FOUND = "E_ITEM_NOT_FOUND"

    # 502 / 504
    E_ALBUM_FETCH_FAILED = "E_ALBUM_FETCH_FAILED"
    E_IMAGE_FETCH_FAILED = "E_IMAGE_FETCH_FAILED"
    E_UPSTREAM_TIMEOUT = "E_UPSTREAM_TIMEOUT"

    # 500 / 503
    E_ENCRYPTION_UNAVAILABLE = "E_ENCRYPTION_UNAVAILABLE"
    E_INTERNAL = "E_INTERNAL"


ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.E_INVALID_REQUEST: 400,
    ApiErrorCode.E_INVALID_TOKEN: 400,
    ApiErrorCode.E_NOT_FOUND: 404,
    ApiErrorCode.E_IMAGE_NOT_FOUND: 404,
    ApiErrorCode.E_ITEM_NOT_FOUND: 404,
    ApiErrorCode.E_ALBUM_FETCH_FAILED: 502,
    ApiErrorCode.E_IMAGE_FETCH_FAILED: 502,
    ApiErrorCode.E_UPSTREAM_TIMEOUT: 504,
    ApiErrorCode.E_ENCRYPTION_UNAVAILABLE: 503,
    ApiErrorCode.E_INTERNAL: 500,
}


class ApiError(Exception):
    """Error with a stable code; the HTTP status is derived from the code."""

    def __init__(self, code: ApiErrorCode, message: str):
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        super().__init__(message)


class NotFoundError(ApiError):
    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class InvalidRequestError(ApiError):
    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)


class UpstreamError(ApiError):
    """Album provider or image host failed and no cached copy could be served.

    Args:
        code: The failure code for the upstream (album or image fetch).
        message: Client-safe description (never includes upstream URLs).
        timeout: Report E_UPSTREAM_TIMEOUT (504) instead of ``code``.
    """

    def __init__(self, code: ApiErrorCode, message: str, *, timeout: bool = False):
        self.timeout = timeout
        super().__init__(ApiErrorCode.E_UPSTREAM_TIMEOUT if timeout else code, message)
