"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Callable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from seller_backend import __version__
from seller_backend.api.errors import add_exception_handlers
from seller_backend.api.v1 import auth
from seller_backend.core.database import Base, check_connection, engine
from seller_backend.core.dependencies import (
    get_app_settings,
    get_gateway,
    get_lwa_client,
    get_settings,
    get_store,
)
from seller_backend.core.settings import Provider
from seller_backend.plugins.amazon import create_amazon_router

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("api")


# Request tracing middleware
class RequestTracingMiddleware(BaseHTTPMiddleware):
    """Request tracing middleware."""

    async def dispatch(self, request: Request, call_next: Callable) -> Any:
        # Path only: the OAuth callback query string carries the authorization code
        logger.info("Request: %s %s", request.method, request.url.path)

        response = await call_next(request)

        logger.info("Response status: %s", response.status_code)
        return response


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan for the FastAPI application."""
    logger.info("Initializing database...")
    check_connection()
    Base.metadata.create_all(bind=engine)
    logger.info("Database initialized successfully!")
    yield


app_settings = get_app_settings()

app = FastAPI(
    title="Seller Dashboard API",
    description="Multi-channel seller dashboard backend",
    version=__version__,
    lifespan=lifespan,
)

# Add request tracing middleware
app.add_middleware(RequestTracingMiddleware)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=app_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

add_exception_handlers(app)

# Resolve the values at startup
app.include_router(
    create_amazon_router(
        get_settings(Provider.AMAZON),
        app_settings,
        get_store(),
        get_lwa_client(),
        get_gateway(),
    ),
    prefix="/api/amazon",
    tags=["amazon"],
)

# Include routers
app.include_router(auth.router, prefix="/api/v1")


@app.get("/")
async def root() -> dict:
    """Root endpoint."""
    return {"message": "Welcome to the Seller Dashboard API"}
