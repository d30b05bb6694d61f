import time
import uuid

from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from storefront.core.config import settings
from storefront.core.metrics import HTTP_REQUEST_DURATION_SECONDS, HTTP_REQUESTS_TOTAL


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

        with logger.contextualize(request_id=request_id):
            response = await call_next(request)

            duration_seconds = time.time() - start_time
            route = request.scope.get("route")
            path = route.path if route is not None and hasattr(route, "path") else request.url.path

            logger.bind(
                request_path=request.url.path,
                method=request.method,
                status_code=response.status_code,
                process_time_ms=round(duration_seconds * 1000, 2),
            ).info("http_request_processed")

            try:
                HTTP_REQUESTS_TOTAL.labels(
                    service=settings.SERVICE_NAME,
                    method=request.method,
                    path=path,
                    status_code=str(response.status_code),
                ).inc()
                HTTP_REQUEST_DURATION_SECONDS.labels(
                    service=settings.SERVICE_NAME,
                    method=request.method,
                    path=path,
                ).observe(duration_seconds)
            except Exception:
                logger.exception("Error updating Prometheus HTTP metrics")

            response.headers["X-Request-ID"] = request_id
            return response
