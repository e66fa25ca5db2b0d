"""X-Request-ID correlation and access logging.

Incoming IDs are kept when they look sane (UUIDs are lowercased), otherwise
a fresh UUID4 is issued. The ID is bound to the logging context, stored on
request.state, echoed on the response and written into error envelopes.

Access log paths have album tokens replaced by ``:token``; a token is a
read credential for the album.

Registered last so it wraps everything else, CORS preflights included.
"""

import re
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from photofeed.logging import clear_request_context, get_logger, set_request_context

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_BYTES = 128

_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")
_UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
_TOKEN_PATH = re.compile(r"^(/api/(?:album|augmentation)/)[^/]+")

logger = get_logger(__name__)


def is_valid_request_id(value: str) -> bool:
    if not value or len(value.encode("utf-8")) > MAX_REQUEST_ID_BYTES:
        return False
    return bool(_REQUEST_ID_PATTERN.match(value))


def resolve_request_id(incoming: str | None) -> str:
    """Accepted (and normalized) client ID, or a new UUID4."""
    if incoming is None or not is_valid_request_id(incoming):
        return str(uuid.uuid4())
    if _UUID_PATTERN.match(incoming):
        return incoming.lower()
    return incoming


def redact_path(path: str) -> str:
    return _TOKEN_PATH.sub(r"\1:token", path)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Binds X-Request-ID for each request and logs one access line.

    Args:
        app: The ASGI application.
        log_requests: Emit a ``request_completed`` entry per request.
    """

    def __init__(self, app, log_requests: bool = True):
        super().__init__(app)
        self.log_requests = log_requests

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = time.monotonic()
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        set_request_context(request_id, redact_path(request.url.path), request.method)

        try:
            response = await call_next(request)
        except Exception:
            logger.exception("request_failed")
            raise
        else:
            response.headers[REQUEST_ID_HEADER] = request_id
            if self.log_requests:
                logger.info(
                    "request_completed",
                    status_code=response.status_code,
                    duration_ms=round((time.monotonic() - started) * 1000, 2),
                )
            return response
        finally:
            clear_request_context()
