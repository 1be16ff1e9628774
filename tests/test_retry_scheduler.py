"""Tests for backoff policies and the retry scheduler."""

from datetime import timedelta

import pytest

from conftest import NOW, Receiver
from payhub.config import Settings
from payhub.models import as_utc
from payhub.models.webhook import DeliveryStatus
from payhub.services.retry_policy import BackoffPolicy, exponential_backoff, fixed_backoff
from payhub.services.retry_scheduler import RetryScheduler
from payhub.services.webhook_dispatcher import DeliveryDispatcher


async def _scheduled(store, endpoint, attempts=1, due_in=timedelta(seconds=-1)):
    delivery = await store.create_delivery(endpoint.id, "payment.succeeded", {"id": "pi_1"}, now=NOW)
    await store.transition(
        delivery.id,
        [DeliveryStatus.PENDING],
        DeliveryStatus.RETRY_SCHEDULED,
        attempt_count=attempts,
        next_attempt_at=NOW + due_in,
    )
    return delivery


# ── Backoff policy ───────────────────────────────────────

class TestBackoffPolicy:
    def test_exponential_doubles_and_caps(self):
        backoff = exponential_backoff(timedelta(minutes=5), timedelta(minutes=60))
        assert [backoff(n) for n in range(1, 7)] == [
            timedelta(minutes=5),
            timedelta(minutes=10),
            timedelta(minutes=20),
            timedelta(minutes=40),
            timedelta(minutes=60),
            timedelta(minutes=60),
        ]

    def test_fixed(self):
        backoff = fixed_backoff(timedelta(seconds=30))
        assert backoff(1) == backoff(9) == timedelta(seconds=30)

    def test_exhaustion(self):
        policy = BackoffPolicy(max_attempts=3, backoff=fixed_backoff(timedelta(seconds=1)))
        assert not policy.is_exhausted(2)
        assert policy.is_exhausted(3)
        assert policy.is_exhausted(4)

    def test_next_attempt_at(self):
        policy = BackoffPolicy(max_attempts=5, backoff=exponential_backoff(timedelta(minutes=5), timedelta(hours=1)))
        assert policy.next_attempt_at(2, NOW) == NOW + timedelta(minutes=10)

    def test_invalid_max_attempts(self):
        with pytest.raises(ValueError):
            BackoffPolicy(max_attempts=0, backoff=fixed_backoff(timedelta(seconds=1)))

    def test_from_settings_defaults(self):
        policy = BackoffPolicy.from_settings(Settings())
        assert policy.max_attempts == 5
        assert policy.backoff(1) == timedelta(minutes=5)
        assert policy.backoff(10) == timedelta(hours=1)

    def test_from_settings_fixed(self):
        policy = BackoffPolicy.from_settings(Settings(webhook_backoff="fixed", webhook_backoff_base_seconds=45))
        assert policy.backoff(4) == timedelta(seconds=45)

    def test_from_settings_unknown(self):
        with pytest.raises(ValueError):
            BackoffPolicy.from_settings(Settings(webhook_backoff="linear"))


# ── Scheduler ────────────────────────────────────────────

class TestRetryScheduler:
    @pytest.mark.asyncio
    async def test_due_delivery_claimed_and_enqueued(self, dispatcher, store, endpoint, policy):
        queued = []
        dispatcher.enqueue = queued.append
        delivery = await _scheduled(store, endpoint)
        scheduler = RetryScheduler(store, dispatcher, policy)

        claimed = await scheduler.retry_eligible(NOW)

        assert [d.id for d in claimed] == [delivery.id]
        assert queued == [delivery.id]
        stored = await store.get_delivery(delivery.id)
        assert stored.status == DeliveryStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_scan_is_idempotent(self, dispatcher, store, endpoint, policy):
        queued = []
        dispatcher.enqueue = queued.append
        await _scheduled(store, endpoint)
        scheduler = RetryScheduler(store, dispatcher, policy)

        await scheduler.retry_eligible(NOW)
        assert await scheduler.retry_eligible(NOW) == []
        assert len(queued) == 1

    @pytest.mark.asyncio
    async def test_not_yet_due_left_alone(self, dispatcher, store, endpoint, policy):
        queued = []
        dispatcher.enqueue = queued.append
        delivery = await _scheduled(store, endpoint, due_in=timedelta(minutes=5))
        scheduler = RetryScheduler(store, dispatcher, policy)

        assert await scheduler.retry_eligible(NOW) == []
        assert queued == []
        stored = await store.get_delivery(delivery.id)
        assert stored.status == DeliveryStatus.RETRY_SCHEDULED.value

    @pytest.mark.asyncio
    async def test_overdue_exhausted_not_enqueued(self, dispatcher, store, endpoint, policy):
        queued = []
        dispatcher.enqueue = queued.append
        delivery = await _scheduled(store, endpoint, attempts=policy.max_attempts)
        scheduler = RetryScheduler(store, dispatcher, policy)

        assert await scheduler.retry_eligible(NOW) == []
        assert queued == []
        stored = await store.get_delivery(delivery.id)
        assert stored.status == DeliveryStatus.EXHAUSTED.value
        assert stored.next_attempt_at is None

    @pytest.mark.asyncio
    async def test_batch_size_limits_claims(self, dispatcher, store, endpoint, policy):
        queued = []
        dispatcher.enqueue = queued.append
        for _ in range(3):
            await _scheduled(store, endpoint)
        scheduler = RetryScheduler(store, dispatcher, policy, batch_size=2)

        assert len(await scheduler.retry_eligible(NOW)) == 2
        assert len(await scheduler.retry_eligible(NOW)) == 1
        assert len(queued) == 3

    @pytest.mark.asyncio
    async def test_failing_endpoint_exhausts_after_max_attempts(self, store, endpoint, policy, settings):
        receiver = Receiver(status=503)
        async with receiver.client() as http:
            dispatcher = DeliveryDispatcher(store, policy, http, settings)
            queued = []
            dispatcher.enqueue = queued.append
            scheduler = RetryScheduler(store, dispatcher, policy)

            delivery = await store.create_delivery(endpoint.id, "payment.succeeded", {"id": "pi_1"}, now=NOW)
            now = NOW
            await dispatcher.attempt_send(delivery.id, now=now)
            for _ in range(policy.max_attempts - 1):
                now += timedelta(seconds=61)
                claimed = await scheduler.retry_eligible(now)
                assert [d.id for d in claimed] == [delivery.id]
                await dispatcher.attempt_send(queued.pop(), now=now)

            stored = await store.get_delivery(delivery.id)
            assert stored.status == DeliveryStatus.EXHAUSTED.value
            assert stored.attempt_count == policy.max_attempts
            assert len(receiver.requests) == policy.max_attempts

            # nothing left to retry, however late the scan runs
            assert await scheduler.retry_eligible(now + timedelta(days=1)) == []
            assert queued == []

    @pytest.mark.asyncio
    async def test_retry_eventually_succeeds(self, store, endpoint, policy, settings):
        receiver = Receiver(status=500)
        async with receiver.client() as http:
            dispatcher = DeliveryDispatcher(store, policy, http, settings)
            queued = []
            dispatcher.enqueue = queued.append
            scheduler = RetryScheduler(store, dispatcher, policy)

            delivery = await store.create_delivery(endpoint.id, "payment.succeeded", {"id": "pi_1"}, now=NOW)
            await dispatcher.attempt_send(delivery.id, now=NOW)

            receiver.status = 200
            later = NOW + timedelta(seconds=61)
            await scheduler.retry_eligible(later)
            await dispatcher.attempt_send(queued.pop(), now=later)

        stored = await store.get_delivery(delivery.id)
        assert stored.status == DeliveryStatus.SUCCEEDED.value
        assert stored.attempt_count == 2
        ep = await store.get_endpoint(endpoint.id)
        assert (ep.success_count, ep.failure_count) == (1, 1)


# ── Stuck deliveries ─────────────────────────────────────

class TestReclaimStuck:
    @pytest.mark.asyncio
    async def test_reclaims_only_stale_locks(self, dispatcher, store, endpoint, policy):
        stale = await store.create_delivery(endpoint.id, "payment.succeeded", {"id": "a"}, now=NOW)
        fresh = await store.create_delivery(endpoint.id, "payment.succeeded", {"id": "b"}, now=NOW)
        await store.transition(stale.id, [DeliveryStatus.PENDING], DeliveryStatus.SENDING,
                               locked_at=NOW - timedelta(minutes=20))
        await store.transition(fresh.id, [DeliveryStatus.PENDING], DeliveryStatus.SENDING,
                               locked_at=NOW - timedelta(minutes=1))
        scheduler = RetryScheduler(store, dispatcher, policy, stuck_after=timedelta(minutes=10))

        assert await scheduler.reclaim_stuck(NOW) == 1

        stored = await store.get_delivery(stale.id)
        assert stored.status == DeliveryStatus.RETRY_SCHEDULED.value
        assert stored.locked_at is None
        assert as_utc(stored.next_attempt_at) == NOW
        assert (await store.get_delivery(fresh.id)).status == DeliveryStatus.SENDING.value

    @pytest.mark.asyncio
    async def test_reclaimed_delivery_is_retried(self, dispatcher, store, endpoint, policy, receiver):
        delivery = await store.create_delivery(endpoint.id, "payment.succeeded", {"id": "a"}, now=NOW)
        await store.transition(delivery.id, [DeliveryStatus.PENDING], DeliveryStatus.SENDING,
                               locked_at=NOW - timedelta(hours=1))
        scheduler = RetryScheduler(store, dispatcher, policy)

        await scheduler.reclaim_stuck(NOW)
        await scheduler.retry_eligible(NOW)
        await dispatcher.drain()

        stored = await store.get_delivery(delivery.id)
        assert stored.status == DeliveryStatus.SUCCEEDED.value
        assert len(receiver.requests) == 1
