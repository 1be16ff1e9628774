"""Persistence for webhook endpoints and deliveries.

State changes that concurrent workers race on go through single UPDATE
statements: ``transition`` is a compare-and-set on the delivery status, and
``increment_endpoint_counter`` bumps counters in SQL rather than in Python.
"""

import json
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payhub.models.webhook import DeliveryStatus, WebhookDelivery, WebhookEndpoint
from payhub.services.webhook_signer import canonical_json


def parse_events(raw) -> list[str]:
    if isinstance(raw, list):
        return raw
    try:
        events = json.loads(raw or "[]")
    except (json.JSONDecodeError, TypeError):
        return []
    return events if isinstance(events, list) else []


def parse_headers(raw) -> dict[str, str]:
    if isinstance(raw, dict):
        return raw
    try:
        headers = json.loads(raw or "{}")
    except (json.JSONDecodeError, TypeError):
        return {}
    return {str(k): str(v) for k, v in headers.items()} if isinstance(headers, dict) else {}


def subscribes_to(endpoint: WebhookEndpoint, event_type: str) -> bool:
    """Empty subscription list or ``*`` means every event."""
    if not endpoint.is_active:
        return False
    events = parse_events(endpoint.events)
    return not events or "*" in events or event_type in events


def load_payload(delivery: WebhookDelivery):
    return json.loads(delivery.payload or "{}")


def _status_values(statuses: Iterable) -> list[str]:
    return [DeliveryStatus(s).value for s in statuses]


class WebhookStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # ── Endpoints ────────────────────────────────────────
    async def create_endpoint(
        self,
        app_id: str,
        url: str,
        secret: Optional[str] = None,
        events: Optional[list[str]] = None,
        headers: Optional[dict] = None,
        timeout_seconds: Optional[float] = None,
        description: str = "",
    ) -> WebhookEndpoint:
        endpoint = WebhookEndpoint(
            app_id=app_id,
            url=url,
            secret=secret,
            events=json.dumps(events or []),
            headers=json.dumps(headers or {}),
            timeout_seconds=timeout_seconds,
            description=description,
        )
        async with self.session_factory() as db:
            db.add(endpoint)
            await db.commit()
            await db.refresh(endpoint)
        return endpoint

    async def get_endpoint(self, endpoint_id: str) -> Optional[WebhookEndpoint]:
        async with self.session_factory() as db:
            return await db.get(WebhookEndpoint, endpoint_id)

    async def list_endpoints(self, app_id: Optional[str] = None) -> list[WebhookEndpoint]:
        stmt = select(WebhookEndpoint).order_by(WebhookEndpoint.created_at.desc())
        if app_id is not None:
            stmt = stmt.where(WebhookEndpoint.app_id == app_id)
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def list_endpoints_for_event(self, app_id: str, event_type: str) -> list[WebhookEndpoint]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(WebhookEndpoint)
                .where(WebhookEndpoint.app_id == app_id, WebhookEndpoint.is_active.is_(True))
                .order_by(WebhookEndpoint.created_at.asc())
            )
            return [ep for ep in result.scalars().all() if subscribes_to(ep, event_type)]

    async def increment_endpoint_counter(
        self,
        endpoint_id: str,
        success: bool,
        now: datetime,
        error: Optional[str] = None,
    ) -> None:
        values = {"last_delivery_at": now, "updated_at": now}
        if success:
            values.update(success_count=WebhookEndpoint.success_count + 1, last_success_at=now, last_error=None)
        else:
            values.update(failure_count=WebhookEndpoint.failure_count + 1, last_failure_at=now, last_error=error)
        async with self.session_factory() as db:
            await db.execute(
                update(WebhookEndpoint)
                .where(WebhookEndpoint.id == endpoint_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

    # ── Deliveries ───────────────────────────────────────
    async def create_delivery(
        self,
        endpoint_id: str,
        event_type: str,
        payload,
        correlation_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> WebhookDelivery:
        now = now or datetime.now(timezone.utc)
        delivery = WebhookDelivery(
            endpoint_id=endpoint_id,
            event_type=event_type,
            payload=canonical_json(payload).decode("utf-8"),
            status=DeliveryStatus.PENDING.value,
            attempt_count=0,
            correlation_id=correlation_id,
            created_at=now,
            updated_at=now,
        )
        async with self.session_factory() as db:
            db.add(delivery)
            await db.commit()
            await db.refresh(delivery)
        return delivery

    async def get_delivery(self, delivery_id: str) -> Optional[WebhookDelivery]:
        async with self.session_factory() as db:
            return await db.get(WebhookDelivery, delivery_id)

    async def list_deliveries(self, endpoint_id: str, limit: int = 50, offset: int = 0) -> list[WebhookDelivery]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(WebhookDelivery)
                .where(WebhookDelivery.endpoint_id == endpoint_id)
                .order_by(WebhookDelivery.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def transition(
        self,
        delivery_id: str,
        from_statuses: Iterable,
        to_status,
        **values,
    ) -> bool:
        """Atomically move a delivery out of one of ``from_statuses``.

        Returns False when the delivery was not in any of them, i.e. another
        worker got there first.
        """
        values["status"] = DeliveryStatus(to_status).value
        values.setdefault("updated_at", datetime.now(timezone.utc))
        async with self.session_factory() as db:
            result = await db.execute(
                update(WebhookDelivery)
                .where(
                    WebhookDelivery.id == delivery_id,
                    WebhookDelivery.status.in_(_status_values(from_statuses)),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount == 1

    async def list_due_retries(self, now: datetime, limit: int = 50) -> list[WebhookDelivery]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(WebhookDelivery)
                .where(
                    WebhookDelivery.status == DeliveryStatus.RETRY_SCHEDULED.value,
                    WebhookDelivery.next_attempt_at <= now,
                )
                .order_by(WebhookDelivery.next_attempt_at.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def exhaust_overdue(self, max_attempts: int, now: datetime) -> int:
        """Retire scheduled retries that already used up their attempts."""
        async with self.session_factory() as db:
            result = await db.execute(
                update(WebhookDelivery)
                .where(
                    WebhookDelivery.status == DeliveryStatus.RETRY_SCHEDULED.value,
                    WebhookDelivery.attempt_count >= max_attempts,
                )
                .values(status=DeliveryStatus.EXHAUSTED.value, next_attempt_at=None, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount

    async def reclaim_stuck(self, locked_before: datetime, now: datetime) -> int:
        """Release deliveries stuck in ``sending`` (e.g. after a crash) for retry."""
        async with self.session_factory() as db:
            result = await db.execute(
                update(WebhookDelivery)
                .where(
                    WebhookDelivery.status == DeliveryStatus.SENDING.value,
                    WebhookDelivery.locked_at < locked_before,
                )
                .values(
                    status=DeliveryStatus.RETRY_SCHEDULED.value,
                    locked_at=None,
                    next_attempt_at=now,
                    last_error="reclaimed after worker stalled",
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount

    async def delivery_stats(self, endpoint_id: str) -> dict:
        def count_of(*statuses):
            return func.coalesce(func.sum(case((WebhookDelivery.status.in_(_status_values(statuses)), 1), else_=0)), 0)

        async with self.session_factory() as db:
            row = (await db.execute(
                select(
                    func.count(WebhookDelivery.id),
                    count_of(DeliveryStatus.SUCCEEDED),
                    count_of(DeliveryStatus.FAILED),
                    count_of(DeliveryStatus.EXHAUSTED),
                    count_of(DeliveryStatus.PENDING, DeliveryStatus.SENDING, DeliveryStatus.RETRY_SCHEDULED),
                ).where(WebhookDelivery.endpoint_id == endpoint_id)
            )).one()

        total, succeeded, failed, exhausted, pending = (int(v or 0) for v in row)
        return {
            "total": total,
            "succeeded": succeeded,
            "failed": failed,
            "exhausted": exhausted,
            "pending": pending,
            "success_rate": round(succeeded / total * 100, 1) if total else 0.0,
        }
