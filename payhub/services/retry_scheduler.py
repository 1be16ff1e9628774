"""Retry scheduler — re-enqueues deliveries whose backoff has elapsed."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from payhub.models.webhook import DeliveryStatus, WebhookDelivery
from payhub.services.retry_policy import BackoffPolicy
from payhub.services.webhook_store import WebhookStore

logger = logging.getLogger(__name__)


class RetryScheduler:
    """Periodic scan over ``retry_scheduled`` deliveries.

    Each due delivery is claimed (``retry_scheduled`` → ``pending``) before
    it is handed to the dispatcher, so a second scan running right behind
    the first finds nothing left to claim.
    """

    def __init__(
        self,
        store: WebhookStore,
        dispatcher,
        policy: BackoffPolicy,
        batch_size: int = 50,
        stuck_after: timedelta = timedelta(minutes=10),
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.policy = policy
        self.batch_size = batch_size
        self.stuck_after = stuck_after

    async def retry_eligible(self, now: Optional[datetime] = None) -> list[WebhookDelivery]:
        now = now or datetime.now(timezone.utc)

        exhausted = await self.store.exhaust_overdue(self.policy.max_attempts, now)
        if exhausted:
            logger.warning(f"Marked {exhausted} webhook deliveries exhausted")

        claimed = []
        for delivery in await self.store.list_due_retries(now, self.batch_size):
            ok = await self.store.transition(
                delivery.id,
                [DeliveryStatus.RETRY_SCHEDULED],
                DeliveryStatus.PENDING,
                updated_at=now,
            )
            if ok:
                claimed.append(delivery)

        for delivery in claimed:
            self.dispatcher.schedule(delivery.id)

        if claimed:
            logger.info(f"Retrying {len(claimed)} webhook deliveries")
        return claimed

    async def reclaim_stuck(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        reclaimed = await self.store.reclaim_stuck(now - self.stuck_after, now)
        if reclaimed:
            logger.warning(f"Reclaimed {reclaimed} webhook deliveries stuck in sending")
        return reclaimed
