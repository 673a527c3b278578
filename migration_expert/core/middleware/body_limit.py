from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from migration_expert.core.errors import PayloadTooLargeError, app_error_handler


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject requests whose declared Content-Length exceeds max_bytes."""

    def __init__(self, app, *, max_bytes: int):
        super().__init__(app)
        self.max_bytes = max_bytes

    async def dispatch(self, request: Request, call_next):
        declared = request.headers.get("content-length")
        if declared is not None:
            try:
                size = int(declared)
            except ValueError:
                size = 0
            if size > self.max_bytes:
                return await app_error_handler(request, PayloadTooLargeError("Request body too large"))
        return await call_next(request)
