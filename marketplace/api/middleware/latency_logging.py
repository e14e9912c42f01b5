"""Request latency logging middleware."""

import logging
import re
import time
from typing import Callable

from fastapi import Request, Response

logger = logging.getLogger(__name__)

# Thresholds for log levels (in milliseconds)
SLOW_REQUEST_THRESHOLD_MS = 1000
VERY_SLOW_REQUEST_THRESHOLD_MS = 3000

HEALTH_PATHS = ("/health", "/health/ready")

UUID_PATTERN = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE)


def normalize_path(path: str) -> str:
    """Replace UUIDs so /orders/<id>/release requests log under one route."""
    return UUID_PATTERN.sub("{id}", path)


async def latency_logging_middleware(request: Request, call_next: Callable) -> Response:
    """Log each request's status and latency.

    Settlement calls block on the payment gateway, so slow requests are
    elevated to WARNING and ERROR to make gateway stalls visible.
    """
    start_time = time.perf_counter()
    method = request.method
    path = normalize_path(request.url.path)
    is_health_check = request.url.path in HEALTH_PATHS

    response = None
    error_occurred = False

    try:
        response = await call_next(request)
        return response
    except Exception:
        error_occurred = True
        raise
    finally:
        latency_ms = (time.perf_counter() - start_time) * 1000
        status_code = response.status_code if response else 500
        log_data = {
            "method": method,
            "path": path,
            "status_code": status_code,
            "latency_ms": round(latency_ms, 2),
        }

        if is_health_check:
            logger.debug("%s %s - %d - %.2fms", method, path, status_code, latency_ms, extra=log_data)
        elif error_occurred or status_code >= 500:
            logger.error("%s %s - %d - %.2fms", method, path, status_code, latency_ms, extra=log_data)
        elif latency_ms > VERY_SLOW_REQUEST_THRESHOLD_MS:
            logger.error("VERY SLOW REQUEST: %s %s - %d - %.2fms", method, path, status_code, latency_ms, extra=log_data)
        elif latency_ms > SLOW_REQUEST_THRESHOLD_MS:
            logger.warning("SLOW REQUEST: %s %s - %d - %.2fms", method, path, status_code, latency_ms, extra=log_data)
        elif status_code >= 400:
            logger.warning("%s %s - %d - %.2fms", method, path, status_code, latency_ms, extra=log_data)
        else:
            logger.info("%s %s - %d - %.2fms", method, path, status_code, latency_ms, extra=log_data)
