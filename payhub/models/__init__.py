"""SQLAlchemy models — portable across SQLite and PostgreSQL."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String, Text

from payhub.database import Base


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


def as_utc(value):
    """SQLite hands datetimes back naive; everything stored here is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ── Gateway catalog ─────────────────────────────────────
class PaymentGateway(Base):
    __tablename__ = "payment_gateways"

    id = Column(String(36), primary_key=True, default=new_uuid)
    name = Column(String(100), nullable=False)
    code = Column(String(50), unique=True, nullable=False)
    type = Column(String(30), nullable=False, index=True)
    is_enabled = Column(Boolean, default=True)
    priority = Column(Integer, default=100)  # lower = preferred
    supported_currencies = Column(Text, default="[]")  # JSON list
    supported_countries = Column(Text, default="[]")  # JSON list
    min_amount = Column(Numeric(18, 2), nullable=True)
    max_amount = Column(Numeric(18, 2), nullable=True)
    last_error = Column(Text, nullable=True)
    last_error_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class GatewayHealthCheck(Base):
    """One recorded probe result from the periodic health sweep."""

    __tablename__ = "gateway_health_checks"

    id = Column(String(36), primary_key=True, default=new_uuid)
    gateway_type = Column(String(30), nullable=False, index=True)
    is_healthy = Column(Boolean, default=False)
    error_message = Column(Text, nullable=True)
    response_time_ms = Column(Integer, default=0)
    checked_at = Column(DateTime, default=utcnow)


from payhub.models.webhook import DeliveryStatus, WebhookDelivery, WebhookEndpoint  # noqa: E402,F401
