"""Per-request correlation ids.

Every request carries an id in ``X-Request-ID``. A client-supplied id is
kept as is, otherwise a fresh UUID4 is minted. The id is echoed on the
response and attached to each turn's log records.
"""

import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIdMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, header_name: str = REQUEST_ID_HEADER):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request.state.request_id = request.headers.get(self.header_name) or str(uuid.uuid4())
        response = await call_next(request)
        response.headers[self.header_name] = request.state.request_id
        return response


def get_request_id(request: Request) -> str:
    """Return the id assigned by ``RequestIdMiddleware``, or ``"unknown"``."""
    return getattr(request.state, "request_id", "unknown")
