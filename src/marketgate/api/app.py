"""FastAPI application for the market data gateway."""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from marketgate import __version__
from marketgate.api.routes import router as api_router
from marketgate.config import Settings, get_settings
from marketgate.errors import (
    InvalidBatchRequestError,
    ProviderNotConfiguredError,
    RateLimitExceededError,
)
from marketgate.quotes import QuoteFetchOrchestrator
from marketgate.ratelimit import RATE_LIMIT_TIERS, FixedWindowLimiter, RateLimitGate, RateLimitTier

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan events."""
    # Startup
    logger.info("Starting MarketGate API...")
    if not app.state.orchestrator.configured:
        logger.warning("No quote provider configured - /v1/quotes will answer 503")
    yield
    # Shutdown
    logger.info("Shutting down MarketGate API...")
    await app.state.orchestrator.close()
    logger.info("Quote provider closed")


def tier_headers(request: Request) -> dict[str, str]:
    """Rate limit headers recorded for this request, if the tier was counted."""
    return getattr(request.state, "rate_limit_headers", {})


def register_exception_handlers(app: FastAPI) -> None:
    """Map service errors onto HTTP responses with an ``error`` body."""

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
            headers=tier_headers(request),
        )

    @app.exception_handler(InvalidBatchRequestError)
    async def invalid_batch_handler(request: Request, exc: InvalidBatchRequestError):
        return JSONResponse(status_code=400, content={"error": str(exc)}, headers=tier_headers(request))

    @app.exception_handler(ProviderNotConfiguredError)
    async def provider_not_configured_handler(request: Request, exc: ProviderNotConfiguredError):
        logger.error(f"{exc}; refusing to serve fallback quotes")
        return JSONResponse(status_code=503, content={"error": str(exc)}, headers=tier_headers(request))

    @app.exception_handler(RateLimitExceededError)
    async def rate_limit_handler(request: Request, exc: RateLimitExceededError):
        logger.info(f"Rate limit exceeded for: {exc.identifier[:10]}...")
        return JSONResponse(
            status_code=429,
            content={"error": "Rate limit exceeded", **exc.payload},
            headers=exc.headers,
        )


def create_app(
    settings: Settings | None = None,
    orchestrator: QuoteFetchOrchestrator | None = None,
    gate: RateLimitGate | None = None,
    data_limiter: FixedWindowLimiter | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Collaborators default to instances built from settings; tests inject
    their own.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="MarketGate",
        description="Resilient market quote access with inbound rate limiting",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.orchestrator = orchestrator or QuoteFetchOrchestrator.from_settings(settings)
    app.state.gate = gate or RateLimitGate.from_settings(settings)
    app.state.data_limiter = data_limiter or FixedWindowLimiter(
        RateLimitTier(
            max_requests=settings.rate_limit_data_per_minute,
            window_seconds=RATE_LIMIT_TIERS["data"].window_seconds,
        ),
        name="data",
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
    )

    # Request timing middleware
    @app.middleware("http")
    async def add_timing_header(request: Request, call_next):
        start_time = time.perf_counter()
        response = await call_next(request)
        process_time = (time.perf_counter() - start_time) * 1000
        response.headers["X-Process-Time-Ms"] = f"{process_time:.2f}"
        return response

    register_exception_handlers(app)

    # Include API routes
    app.include_router(api_router, prefix="/v1")

    # Health check
    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "version": __version__,
            "provider_configured": app.state.orchestrator.configured,
            "cache": await app.state.orchestrator.cache.health_check(),
        }

    # Root redirect
    @app.get("/")
    async def root():
        return {
            "name": "MarketGate",
            "version": __version__,
            "docs": "/docs",
            "openapi": "/openapi.json",
        }

    return app


# Create app instance
app = create_app()
