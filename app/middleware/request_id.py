"""Request ID middleware: tags every API request's logs and response with a request id."""
import logging
import time
from uuid import uuid4

from app.utils.logging import current_request_id

logger = logging.getLogger("api.access")

# polled by dashboards every few seconds, not worth an access line
_QUIET_PATHS = {"/health", "/metrics"}


class RequestIdMiddleware:
    """ASGI middleware that propagates X-Request-ID and logs one access line per request."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        request_id = headers.get(b"x-request-id", b"").decode() or uuid4().hex[:12]
        token = current_request_id.set(request_id)
        started = time.monotonic()
        status = {"code": 500}

        async def send_with_request_id(message):
            if message["type"] == "http.response.start":
                status["code"] = message["status"]
                out = list(message.get("headers", []))
                out.append((b"x-request-id", request_id.encode()))
                message["headers"] = out
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            path = scope.get("path", "")
            if path not in _QUIET_PATHS:
                duration_ms = round((time.monotonic() - started) * 1000, 1)
                logger.info(
                    "%s %s -> %d",
                    scope.get("method", "-"), path, status["code"],
                    extra={"duration_ms": duration_ms},
                )
            current_request_id.reset(token)
