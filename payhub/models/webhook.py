"""Webhook models for outbound event delivery."""

from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, Text

from payhub.database import Base
from payhub.models import new_uuid, utcnow


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SENDING = "sending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    RETRY_SCHEDULED = "retry_scheduled"
    EXHAUSTED = "exhausted"


class WebhookEndpoint(Base):
    """Application-owned endpoint receiving event notifications."""

    __tablename__ = "webhook_endpoints"

    id = Column(String(36), primary_key=True, default=new_uuid)
    app_id = Column(String(36), nullable=False, index=True)
    url = Column(String(2048), nullable=False)
    secret = Column(String(200), nullable=True)  # HMAC signing secret
    events = Column(Text, default="[]")  # JSON list; empty or "*" = all events
    headers = Column(Text, default="{}")  # JSON object merged over built-in headers
    timeout_seconds = Column(Float, nullable=True)
    is_active = Column(Boolean, default=True)
    description = Column(String(500), default="")
    # Delivery counters
    success_count = Column(Integer, default=0)
    failure_count = Column(Integer, default=0)
    last_delivery_at = Column(DateTime, nullable=True)
    last_success_at = Column(DateTime, nullable=True)
    last_failure_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class WebhookDelivery(Base):
    """One event transmission to one endpoint, tracked across attempts."""

    __tablename__ = "webhook_deliveries"

    id = Column(String(36), primary_key=True, default=new_uuid)
    endpoint_id = Column(String(36), nullable=False, index=True)
    event_type = Column(String(100), nullable=False)
    payload = Column(Text, default="{}")
    status = Column(String(20), default=DeliveryStatus.PENDING.value, index=True)
    attempt_count = Column(Integer, default=0)
    next_attempt_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    response_status = Column(Integer, nullable=True)
    response_body = Column(Text, nullable=True)
    signature = Column(String(64), nullable=True)
    correlation_id = Column(String(64), nullable=True)
    locked_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
