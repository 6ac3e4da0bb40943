"""Exception handlers mapping the error taxonomy onto JSON responses."""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from rxautomate.errors import RateLimitedError, RxAutomateError

logger = logging.getLogger(__name__)


async def rxautomate_exception_handler(request: Request, exc: RxAutomateError) -> JSONResponse:
    status_code = exc.status_code
    if status_code >= 500:
        logger.error(
            "%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc
        )
    headers = exc.headers if isinstance(exc, RateLimitedError) else None
    return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch all unhandled exceptions. Log full traceback server-side, return generic message."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
    )
