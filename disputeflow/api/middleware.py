import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from disputeflow.common.logging import get_logger

logger = get_logger("middleware")


class AuditMiddleware(BaseHTTPMiddleware):
    """Access log line per request, tagged with the calling actor."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start_time = time.time()
        response = await call_next(request)
        duration_ms = (time.time() - start_time) * 1000

        logger.info(
            "%s %s %d %.1fms actor=%s role=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            request.headers.get("x-actor-id", "-"),
            request.headers.get("x-actor-role", "-"),
        )

        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"
        return response
