"""FastAPI dependencies for shared service state."""

from fastapi import Request, Response

from marketgate.config import Settings
from marketgate.errors import RateLimitExceededError
from marketgate.quotes import QuoteFetchOrchestrator
from marketgate.ratelimit import (
    FixedWindowLimiter,
    RateLimitGate,
    RequestLimitResult,
    client_identifier,
    rate_limit_headers,
)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_orchestrator(request: Request) -> QuoteFetchOrchestrator:
    return request.app.state.orchestrator


def get_gate(request: Request) -> RateLimitGate:
    return request.app.state.gate


def get_data_limiter(request: Request) -> FixedWindowLimiter:
    return request.app.state.data_limiter


def request_identifier(request: Request) -> str:
    """Identify the caller from proxy headers, then the socket peer."""
    peer = request.client.host if request.client else None
    return client_identifier(request.headers, fallback=peer)


async def enforce_data_tier(request: Request, response: Response) -> RequestLimitResult:
    """
    Count the request against the caller's data tier.

    Raises:
        RateLimitExceededError: If the caller is over budget
    """
    identifier = request_identifier(request)
    result = await get_data_limiter(request).hit(identifier)
    headers = rate_limit_headers(result)

    if not result.allowed:
        raise RateLimitExceededError(
            identifier,
            retry_after=result.retry_after,
            headers=headers,
            payload={
                "retryAfterMs": int((result.retry_after or 0) * 1000),
                "resetTime": int(result.reset_at * 1000),
            },
        )

    request.state.rate_limit_headers = headers
    response.headers.update(headers)
    return result
