"""Request body size limiting middleware."""

import logging
from typing import Callable

from fastapi import Request, Response, status

from marketplace.api.middleware.error_handler import create_error_response
from marketplace.core.config import get_settings

logger = logging.getLogger(__name__)


async def request_size_limit_middleware(
    request: Request,
    call_next: Callable[[Request], Response],
) -> Response:
    """Reject requests whose declared body exceeds max_request_body_size.

    Returns:
        Response: The handler's response, or a 413 error body.
    """
    max_size = get_settings().max_request_body_size

    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > max_size:
        logger.warning("Request body too large: %s bytes (max: %d)", content_length, max_size)
        return create_error_response(
            error_type="request_too_large",
            message=f"Request body exceeds maximum size of {max_size} bytes",
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            request_id=request.headers.get("X-Request-ID"),
        )

    return await call_next(request)
