"""Exception handlers that turn backend errors into JSON responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from seller_backend.spapi.errors import ConfigurationError, LwaError, SpApiError

logger = logging.getLogger("api.errors")


async def sp_api_error_handler(request: Request, exc: SpApiError) -> JSONResponse:
    logger.error("%s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=502,
        content={
            "error": str(exc),
            "path": exc.path,
            "status_code": exc.status_code,
            "details": exc.raw_body,
        },
    )


async def lwa_error_handler(request: Request, exc: LwaError) -> JSONResponse:
    logger.error("%s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=502,
        content={"error": str(exc), "status_code": exc.status_code, "details": exc.raw_body},
    )


async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error("Configuration error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": str(exc)})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": str(exc) or type(exc).__name__})


def add_exception_handlers(app: FastAPI) -> None:
    """Register the JSON error handlers on an application."""
    app.add_exception_handler(SpApiError, sp_api_error_handler)
    app.add_exception_handler(LwaError, lwa_error_handler)
    app.add_exception_handler(ConfigurationError, configuration_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
