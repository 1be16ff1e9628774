"""Pydantic schemas for API request/response."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from payhub.services.gateway_matcher import PaymentMethodClass
from payhub.services.webhook_signer import mask_secret
from payhub.services.webhook_store import parse_events, parse_headers


# ── Gateway selection ────────────────────────────────────
class GatewaySelectRequest(BaseModel):
    amount: Optional[Decimal] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    country: Optional[str] = Field(None, min_length=2, max_length=2)
    payment_method: Optional[PaymentMethodClass] = None
    preferred: Optional[str] = None


class GatewayCandidateOut(BaseModel):
    type: str
    code: str
    name: str
    priority: int
    is_healthy: bool

    @classmethod
    def from_candidate(cls, candidate):
        return cls(
            type=candidate.type,
            code=candidate.descriptor.code,
            name=candidate.descriptor.name,
            priority=candidate.priority,
            is_healthy=candidate.is_healthy,
        )


class GatewaySelectionOut(BaseModel):
    best: Optional[GatewayCandidateOut] = None
    candidates: list[GatewayCandidateOut] = Field(default_factory=list)


# ── Webhooks ─────────────────────────────────────────────
class WebhookCreate(BaseModel):
    app_id: str
    url: str
    secret: Optional[str] = None
    events: list[str] = Field(default_factory=lambda: ["*"])
    headers: dict[str, str] = Field(default_factory=dict)
    timeout_seconds: Optional[float] = Field(None, gt=0, le=120)
    description: str = ""


class WebhookOut(BaseModel):
    id: str
    app_id: str
    url: str
    secret: Optional[str] = None  # always masked
    events: list[str]
    headers: dict[str, str]
    timeout_seconds: Optional[float] = None
    is_active: bool
    description: str
    success_count: int
    failure_count: int
    last_delivery_at: Optional[datetime] = None
    last_error: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_model(cls, ep):
        return cls(
            id=ep.id,
            app_id=ep.app_id,
            url=ep.url,
            secret=mask_secret(ep.secret),
            events=parse_events(ep.events),
            headers=parse_headers(ep.headers),
            timeout_seconds=ep.timeout_seconds,
            is_active=ep.is_active,
            description=ep.description or "",
            success_count=ep.success_count or 0,
            failure_count=ep.failure_count or 0,
            last_delivery_at=ep.last_delivery_at,
            last_error=ep.last_error,
            created_at=ep.created_at,
        )


class DeliveryOut(BaseModel):
    id: str
    endpoint_id: str
    event_type: str
    status: str
    attempt_count: int
    next_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    response_status: Optional[int] = None
    correlation_id: Optional[str] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class DeliveryStatsOut(BaseModel):
    total: int
    succeeded: int
    failed: int
    exhausted: int
    pending: int
    success_rate: float


class TestWebhookRequest(BaseModel):
    event_type: str = "test.ping"
    payload: dict = Field(default_factory=lambda: {"message": "Test webhook delivery"})
