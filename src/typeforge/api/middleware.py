"""Request correlation middleware for FastAPI."""

import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADERS = ("x-request-id", "x-correlation-id")
RESPONSE_HEADER = "X-Request-ID"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Sets request.state.request_id and echoes it on the response.

    The id comes from the first non-empty X-Request-ID / X-Correlation-ID
    header; otherwise a new one is generated.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = None
        for header in REQUEST_ID_HEADERS:
            value = request.headers.get(header)
            if value:
                request_id = value
                break
        request.state.request_id = request_id or uuid.uuid4().hex

        response = await call_next(request)
        response.headers[RESPONSE_HEADER] = request.state.request_id
        return response


def get_request_id(request: Request) -> str | None:
    """Get the correlation id from the request state."""
    return getattr(request.state, "request_id", None)
