"""Webhook dispatch service — creates deliveries, sends them with HMAC signing, records outcomes."""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import httpx

from payhub.config import Settings, get_settings
from payhub.errors import ConfigurationFault
from payhub.models.webhook import DeliveryStatus, WebhookDelivery, WebhookEndpoint
from payhub.services.retry_policy import BackoffPolicy
from payhub.services.webhook_signer import canonical_json, sign_payload, signature_header
from payhub.services.webhook_store import WebhookStore, load_payload, parse_headers

logger = logging.getLogger(__name__)

MAX_STORED_BODY = 2000


@dataclass(frozen=True)
class DeliveryOutcome:
    ok: bool
    status_code: Optional[int] = None
    response_body: Optional[str] = None
    error: Optional[str] = None
    duration_ms: int = 0
    signature: Optional[str] = None
    retryable: bool = True

    @classmethod
    def success(cls, status_code, response_body, duration_ms=0, signature=None):
        return cls(True, status_code, response_body, None, duration_ms, signature)

    @classmethod
    def http_failure(cls, status_code, response_body, duration_ms=0, signature=None):
        return cls(False, status_code, response_body, f"HTTP {status_code}", duration_ms, signature)

    @classmethod
    def transport_failure(cls, error, duration_ms=0, signature=None):
        return cls(False, None, None, error, duration_ms, signature)

    @classmethod
    def configuration_failure(cls, error):
        return cls(False, error=error, retryable=False)


class DeliveryDispatcher:
    """Creates webhook deliveries and performs send attempts.

    ``dispatch`` only persists the delivery and schedules the send; the HTTP
    call happens in ``attempt_send``, either on the injected ``enqueue``
    callable (a worker pool) or on a task owned by the dispatcher.

    At most one attempt per delivery is in flight: an attempt starts by
    moving the delivery ``pending`` → ``sending`` with a compare-and-set, and
    an attempt that loses that race does nothing.
    """

    def __init__(
        self,
        store: WebhookStore,
        policy: BackoffPolicy,
        client: httpx.AsyncClient,
        settings: Optional[Settings] = None,
        enqueue: Optional[Callable[[str], None]] = None,
    ):
        self.store = store
        self.policy = policy
        self.client = client
        self.settings = settings or get_settings()
        self.enqueue = enqueue
        self._tasks: set[asyncio.Task] = set()

    # ── Dispatch ─────────────────────────────────────────
    async def dispatch(
        self,
        endpoint: WebhookEndpoint,
        event_type: str,
        payload,
        correlation_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> WebhookDelivery:
        delivery = await self.store.create_delivery(endpoint.id, event_type, payload, correlation_id, now)
        logger.info(
            f"Webhook delivery dispatched: delivery={delivery.id} endpoint={endpoint.id} "
            f"event={event_type} correlation_id={correlation_id}"
        )
        self.schedule(delivery.id)
        return delivery

    async def dispatch_event(
        self,
        app_id: str,
        event_type: str,
        payload,
        correlation_id: Optional[str] = None,
    ) -> list[WebhookDelivery]:
        """Dispatch an event to every active endpoint of the app subscribed to it."""
        endpoints = await self.store.list_endpoints_for_event(app_id, event_type)
        logger.info(f"Found {len(endpoints)} webhook endpoint(s) for app={app_id} event={event_type}")
        return [await self.dispatch(ep, event_type, payload, correlation_id) for ep in endpoints]

    def schedule(self, delivery_id: str) -> None:
        if self.enqueue is not None:
            self.enqueue(delivery_id)
            return
        task = asyncio.create_task(self._run_attempt(delivery_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for sends started by ``schedule`` (without a worker pool)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run_attempt(self, delivery_id: str) -> None:
        try:
            await self.attempt_send(delivery_id)
        except Exception:
            logger.exception(f"Webhook send task crashed: delivery={delivery_id}")

    # ── Send ─────────────────────────────────────────────
    async def attempt_send(self, delivery_id: str, now: Optional[datetime] = None) -> Optional[DeliveryOutcome]:
        """Run one send attempt. Returns None if another attempt holds the delivery."""
        claimed_at = now or datetime.now(timezone.utc)
        claimed = await self.store.transition(
            delivery_id, [DeliveryStatus.PENDING], DeliveryStatus.SENDING, locked_at=claimed_at
        )
        if not claimed:
            logger.debug(f"Delivery {delivery_id} is not pending; skipping send")
            return None

        delivery = await self.store.get_delivery(delivery_id)
        endpoint = await self.store.get_endpoint(delivery.endpoint_id)
        if endpoint is None or not endpoint.is_active:
            fault = ConfigurationFault(f"endpoint {delivery.endpoint_id} is missing or inactive")
            logger.error(f"Webhook delivery {delivery_id} failed: {fault}")
            outcome = DeliveryOutcome.configuration_failure(str(fault))
            await self._record(delivery, None, outcome, now or datetime.now(timezone.utc))
            return outcome

        try:
            outcome = await self.send(endpoint, delivery)
        except asyncio.CancelledError:
            await self._record(
                delivery, endpoint, DeliveryOutcome.transport_failure("send cancelled"),
                now or datetime.now(timezone.utc),
            )
            raise

        await self._record(delivery, endpoint, outcome, now or datetime.now(timezone.utc))
        return outcome

    def build_headers(self, endpoint: WebhookEndpoint, delivery: WebhookDelivery, signature: str) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.settings.webhook_user_agent,
            "X-Webhook-Signature": signature_header(signature),
            "X-Webhook-Event": delivery.event_type,
            "X-Webhook-Delivery": delivery.id,
        }
        # Endpoint headers win, compared case-insensitively
        for name, value in parse_headers(endpoint.headers).items():
            for existing in [k for k in headers if k.lower() == name.lower()]:
                del headers[existing]
            headers[name] = value
        return headers

    async def send(self, endpoint: WebhookEndpoint, delivery: WebhookDelivery) -> DeliveryOutcome:
        payload = load_payload(delivery)
        body = canonical_json(payload)
        signature = sign_payload(payload, endpoint.secret or "")
        headers = self.build_headers(endpoint, delivery, signature)
        total_timeout = endpoint.timeout_seconds or self.settings.webhook_default_timeout_seconds
        timeout = httpx.Timeout(total_timeout, connect=self.settings.webhook_connect_timeout_seconds)

        start = time.monotonic()
        try:
            # httpx timeouts are per read/write; the deadline covers the whole exchange
            resp = await asyncio.wait_for(
                self.client.post(endpoint.url, content=body, headers=headers, timeout=timeout),
                total_timeout,
            )
        except asyncio.TimeoutError:
            duration_ms = int((time.monotonic() - start) * 1000)
            return DeliveryOutcome.transport_failure(
                f"timeout: no complete response within {total_timeout}s", duration_ms, signature
            )
        except httpx.TimeoutException as exc:
            duration_ms = int((time.monotonic() - start) * 1000)
            return DeliveryOutcome.transport_failure(f"timeout: {str(exc) or type(exc).__name__}", duration_ms, signature)
        except Exception as exc:
            duration_ms = int((time.monotonic() - start) * 1000)
            return DeliveryOutcome.transport_failure(str(exc) or type(exc).__name__, duration_ms, signature)

        duration_ms = int((time.monotonic() - start) * 1000)
        text = resp.text[:MAX_STORED_BODY]
        if 200 <= resp.status_code < 300:
            return DeliveryOutcome.success(resp.status_code, text, duration_ms, signature)
        return DeliveryOutcome.http_failure(resp.status_code, text, duration_ms, signature)

    async def _record(
        self,
        delivery: WebhookDelivery,
        endpoint: Optional[WebhookEndpoint],
        outcome: DeliveryOutcome,
        now: datetime,
    ) -> None:
        attempts = (delivery.attempt_count or 0) + 1
        next_attempt_at = None
        if outcome.ok:
            status = DeliveryStatus.SUCCEEDED
        elif not outcome.retryable:
            status = DeliveryStatus.FAILED
        elif self.policy.is_exhausted(attempts):
            status = DeliveryStatus.EXHAUSTED
        else:
            status = DeliveryStatus.RETRY_SCHEDULED
            next_attempt_at = self.policy.next_attempt_at(attempts, now)

        moved = await self.store.transition(
            delivery.id,
            [DeliveryStatus.SENDING],
            status,
            attempt_count=attempts,
            next_attempt_at=next_attempt_at,
            last_error=outcome.error,
            response_status=outcome.status_code,
            response_body=outcome.response_body,
            signature=outcome.signature,
            delivered_at=now if outcome.ok else None,
            locked_at=None,
            updated_at=now,
        )
        if not moved:
            # Reclaimed while in flight; the retry owns the delivery and its counters now
            logger.warning(f"Delivery {delivery.id} left 'sending' before its outcome was recorded; outcome dropped")
            return

        if endpoint is not None:
            await self.store.increment_endpoint_counter(endpoint.id, outcome.ok, now, outcome.error)

        if status is DeliveryStatus.SUCCEEDED:
            logger.info(f"Webhook delivered: delivery={delivery.id} status_code={outcome.status_code}")
        elif status is DeliveryStatus.EXHAUSTED:
            logger.warning(f"Webhook delivery exhausted after {attempts} attempts: delivery={delivery.id} error={outcome.error}")
        elif status is DeliveryStatus.RETRY_SCHEDULED:
            logger.warning(
                f"Webhook delivery failed: delivery={delivery.id} status_code={outcome.status_code or 'N/A'} "
                f"attempts={attempts} next_attempt_at={next_attempt_at.isoformat()} error={outcome.error}"
            )
