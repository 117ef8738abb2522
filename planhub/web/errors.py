"""
FastAPI exception handlers.

Maps the domain error taxonomy to JSON error bodies of the form
{"error": {"code", "message", "details"}} with the error's status code.
Store failures are rendered without internal detail.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..exceptions import PlanHubError, StoreError

logger = logging.getLogger(__name__)


async def planhub_error_handler(request: Request, exc: PlanHubError) -> JSONResponse:
    """Render a domain error."""
    if isinstance(exc, StoreError):
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.error_code}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": {"code": PlanHubError.error_code, "message": "Internal server error", "details": {}}},
    )


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(PlanHubError, planhub_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
