"""Gateway catalog — read enabled gateway descriptors, record faults and probe results."""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payhub.models import GatewayHealthCheck, PaymentGateway

logger = logging.getLogger(__name__)


def _json_list(raw) -> list:
    if isinstance(raw, (list, tuple, set, frozenset)):
        return list(raw)
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return []
    return value if isinstance(value, list) else []


@dataclass(frozen=True)
class GatewayDescriptor:
    """Catalog entry for one payment backend, immutable for a selection call."""

    type: str
    code: str
    name: str = ""
    enabled: bool = True
    priority: int = 100
    supported_currencies: frozenset = field(default_factory=frozenset)
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None

    @classmethod
    def from_model(cls, gw: PaymentGateway) -> "GatewayDescriptor":
        return cls(
            type=gw.type,
            code=gw.code,
            name=gw.name or "",
            enabled=bool(gw.is_enabled),
            priority=gw.priority if gw.priority is not None else 100,
            supported_currencies=frozenset(c.upper() for c in _json_list(gw.supported_currencies)),
            min_amount=Decimal(gw.min_amount) if gw.min_amount is not None else None,
            max_amount=Decimal(gw.max_amount) if gw.max_amount is not None else None,
        )


class GatewayCatalog:
    """SQLAlchemy-backed catalog collaborator."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def list_enabled(self) -> list[GatewayDescriptor]:
        """Enabled gateways, lowest priority number first."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(PaymentGateway)
                .where(PaymentGateway.is_enabled.is_(True))
                .order_by(PaymentGateway.priority.asc(), PaymentGateway.created_at.asc(), PaymentGateway.id.asc())
            )
            return [GatewayDescriptor.from_model(gw) for gw in result.scalars().all()]

    async def record_fault(self, gateway_type: str, error: str, now: Optional[datetime] = None) -> None:
        """Store the last error for a gateway type. Never raises."""
        now = now or datetime.now(timezone.utc)
        try:
            async with self.session_factory() as db:
                await db.execute(
                    update(PaymentGateway)
                    .where(PaymentGateway.type == gateway_type)
                    .values(last_error=error[:2000], last_error_at=now, updated_at=now)
                )
                await db.commit()
        except Exception as exc:
            logger.error(f"Failed to mark gateway issue for {gateway_type}: {exc}")

    async def record_health(
        self,
        gateway_type: str,
        healthy: bool,
        error: Optional[str] = None,
        response_time_ms: int = 0,
        now: Optional[datetime] = None,
    ) -> None:
        async with self.session_factory() as db:
            db.add(GatewayHealthCheck(
                gateway_type=gateway_type,
                is_healthy=healthy,
                error_message=error,
                response_time_ms=response_time_ms,
                checked_at=now or datetime.now(timezone.utc),
            ))
            await db.commit()


class InMemoryGatewayCatalog:
    """List-backed catalog; handy for wiring without a database."""

    def __init__(self, descriptors: Optional[list[GatewayDescriptor]] = None):
        self.descriptors = list(descriptors or [])
        self.faults: list[tuple[str, str, datetime]] = []
        self.health_records: list[tuple[str, bool, Optional[str]]] = []

    async def list_enabled(self) -> list[GatewayDescriptor]:
        # sorted() is stable, so equal priorities keep insertion order
        return sorted((d for d in self.descriptors if d.enabled), key=lambda d: d.priority)

    async def record_fault(self, gateway_type: str, error: str, now: Optional[datetime] = None) -> None:
        self.faults.append((gateway_type, error, now or datetime.now(timezone.utc)))

    async def record_health(self, gateway_type, healthy, error=None, response_time_ms=0, now=None) -> None:
        self.health_records.append((gateway_type, healthy, error))
