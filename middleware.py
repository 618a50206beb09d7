import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger("access")


class TimingMiddleware(BaseHTTPMiddleware):
    """Log every request and expose its latency in X-Latency-Ms."""

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        latency_ms = int((time.perf_counter() - start) * 1000)
        response.headers["X-Latency-Ms"] = str(latency_ms)
        logger.info("%s %s -> %s (%d ms)", request.method, request.url.path, response.status_code, latency_ms)
        return response
