"""API routes for quotes and inbound rate limiting."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from marketgate.api.dependencies import (
    enforce_data_tier,
    get_app_settings,
    get_gate,
    get_orchestrator,
)
from marketgate.config import Settings
from marketgate.errors import InvalidBatchRequestError
from marketgate.quotes import QuoteFetchOrchestrator, QuoteRecord
from marketgate.ratelimit import GateDecision, RateLimitGate, RequestLimitResult

logger = logging.getLogger(__name__)
router = APIRouter()


# --- Request/Response Models ---


class CamelModel(BaseModel):
    """Base model serialized with camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QuoteBatchRequest(CamelModel):
    """Batch quote request."""

    symbols: list[str] = Field(..., description="Ticker symbols, in the order results should be returned")


class QuoteItem(CamelModel):
    """One quote with its provenance."""

    symbol: str
    price: float
    change: float
    change_percent: float
    high: float
    low: float
    open: float
    previous_close: float
    provenance: str = Field(..., description="live, cached or fallback")
    is_fallback: bool

    @classmethod
    def from_record(cls, record: QuoteRecord) -> "QuoteItem":
        return cls(
            symbol=record.symbol,
            price=record.price,
            change=record.change,
            change_percent=record.change_percent,
            high=record.high,
            low=record.low,
            open=record.open,
            previous_close=record.previous_close,
            provenance=record.provenance.value,
            is_fallback=record.is_fallback,
        )


def require_identifier(value: str) -> str:
    """Strip an identifier and reject blanks."""
    value = value.strip()
    if not value:
        raise ValueError("identifier must not be blank")
    return value


class RateLimitRequest(CamelModel):
    """Inbound rate limit check or failure report."""

    identifier: str = Field(..., min_length=1, description="Email, IP or API key")
    max_attempts: int | None = Field(default=None, ge=1, description="Defaults to 5")
    window_ms: int | None = Field(default=None, gt=0, description="Defaults to 900000")
    lockout_ms: int | None = Field(default=None, gt=0, description="Defaults to 1800000")

    @field_validator("identifier")
    @classmethod
    def identifier_not_blank(cls, value: str) -> str:
        return require_identifier(value)


class RateLimitClearRequest(CamelModel):
    identifier: str = Field(..., min_length=1)

    @field_validator("identifier")
    @classmethod
    def identifier_not_blank(cls, value: str) -> str:
        return require_identifier(value)


class RateLimitCheckResponse(CamelModel):
    """Result of a rate limit check."""

    allowed: bool
    remaining_attempts: int
    lockout_time_remaining_minutes: int
    status: str
    message: str | None = None

    @classmethod
    def from_decision(cls, decision: GateDecision) -> "RateLimitCheckResponse":
        return cls(
            allowed=decision.allowed,
            remaining_attempts=decision.result.remaining_attempts,
            lockout_time_remaining_minutes=decision.result.lockout_remaining_minutes,
            status=decision.status.value,
            message=decision.message,
        )


class RateLimitClearResponse(CamelModel):
    identifier: str
    cleared: bool


def _seconds(milliseconds: int | None) -> float | None:
    return milliseconds / 1000 if milliseconds is not None else None


def validate_symbols(symbols: list[str], max_symbols: int) -> list[str]:
    """
    Reject batches that are too large or contain blank symbols.

    Raises:
        InvalidBatchRequestError: If the batch is malformed
    """
    if len(symbols) > max_symbols:
        raise InvalidBatchRequestError(
            f"Too many symbols: {len(symbols)} (maximum {max_symbols})"
        )
    blank = [i for i, symbol in enumerate(symbols) if not symbol.strip()]
    if blank:
        raise InvalidBatchRequestError(f"Blank symbol at position(s) {blank}")
    return symbols


# --- Quotes ---


@router.post("/quotes", response_model=list[QuoteItem])
async def get_quotes(
    request: QuoteBatchRequest,
    orchestrator: QuoteFetchOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_app_settings),
    limit: RequestLimitResult = Depends(enforce_data_tier),
) -> list[QuoteItem]:
    """
    Get quotes for an ordered batch of symbols.

    Every symbol gets a record; symbols without live data are served from
    cache or fallback and tagged accordingly.
    """
    symbols = validate_symbols(request.symbols, settings.quote_batch_max_symbols)
    logger.info(f"Fetching quotes for {len(symbols)} symbols (remaining: {limit.remaining})")

    records = await orchestrator.fetch_batch(symbols)
    return [QuoteItem.from_record(record) for record in records]


# --- Rate limiting ---


def _gate_response(decision: GateDecision) -> RateLimitCheckResponse | JSONResponse:
    body = RateLimitCheckResponse.from_decision(decision)
    if decision.allowed:
        return body

    headers = {}
    if decision.result.lockout_remaining_minutes > 0:
        headers["Retry-After"] = str(decision.result.lockout_remaining_minutes * 60)
    return JSONResponse(
        status_code=429,
        content=body.model_dump(by_alias=True),
        headers=headers,
    )


@router.post(
    "/rate-limit/check",
    response_model=RateLimitCheckResponse,
    responses={429: {"model": RateLimitCheckResponse, "description": "Locked out"}},
)
async def check_rate_limit(
    request: RateLimitRequest,
    gate: RateLimitGate = Depends(get_gate),
):
    """Check whether an identifier may attempt again. 429 while locked out."""
    decision = await gate.check(
        request.identifier,
        max_attempts=request.max_attempts,
        window_seconds=_seconds(request.window_ms),
    )
    return _gate_response(decision)


@router.post("/rate-limit/failure", response_model=RateLimitCheckResponse)
async def record_rate_limit_failure(
    request: RateLimitRequest,
    gate: RateLimitGate = Depends(get_gate),
) -> RateLimitCheckResponse:
    """Record a failed attempt and return the identifier's updated state."""
    decision = await gate.record_failure(
        request.identifier,
        max_attempts=request.max_attempts,
        window_seconds=_seconds(request.window_ms),
        lockout_seconds=_seconds(request.lockout_ms),
    )
    return RateLimitCheckResponse.from_decision(decision)


@router.post("/rate-limit/clear", response_model=RateLimitClearResponse)
async def clear_rate_limit(
    request: RateLimitClearRequest,
    gate: RateLimitGate = Depends(get_gate),
) -> RateLimitClearResponse:
    """Clear an identifier after a successful attempt."""
    cleared = await gate.clear(request.identifier)
    return RateLimitClearResponse(identifier=request.identifier, cleared=cleared)
