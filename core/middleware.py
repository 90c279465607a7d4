import time
from fastapi import Request
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

EXCLUDED_PATHS = [
    "/docs",
    "/openapi.json",
    "/health",
]

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if any(request.url.path.startswith(p) for p in EXCLUDED_PATHS):
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        logger.info(
            f"Request → {request.method} {request.url.path} "
            f"{response.status_code} ({elapsed_ms:.1f} ms)"
        )
        return response
