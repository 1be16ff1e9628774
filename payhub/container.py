"""Wiring for the gateway-selection and webhook-delivery services."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payhub.config import Settings
from payhub.services.gateway_catalog import GatewayCatalog
from payhub.services.gateway_health import GatewayHealthProbe
from payhub.services.gateway_registry import GatewayRegistry
from payhub.services.gateway_selector import GatewaySelector
from payhub.services.retry_policy import BackoffPolicy
from payhub.services.retry_scheduler import RetryScheduler
from payhub.services.ttl_cache import TTLCache
from payhub.services.webhook_dispatcher import DeliveryDispatcher
from payhub.services.webhook_store import WebhookStore
from payhub.services.webhook_worker import WebhookWorkerPool
from payhub.workers import BackgroundWorker, WorkerTask


@dataclass
class CoreServices:
    settings: Settings
    registry: GatewayRegistry
    catalog: GatewayCatalog
    probe: GatewayHealthProbe
    selector: GatewaySelector
    store: WebhookStore
    dispatcher: DeliveryDispatcher
    pool: WebhookWorkerPool
    retry_scheduler: RetryScheduler
    worker: BackgroundWorker
    http_client: httpx.AsyncClient

    async def start(self) -> None:
        """Route sends through the worker pool and start the periodic tasks."""
        self.pool.start()
        self.dispatcher.enqueue = self.pool.submit
        await self.worker.start()

    async def stop(self) -> None:
        await self.worker.stop()
        self.dispatcher.enqueue = None
        await self.pool.stop(timeout=self.settings.webhook_connect_timeout_seconds)
        await self.dispatcher.drain()
        await self.http_client.aclose()


def build_core_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    registry: Optional[GatewayRegistry] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> CoreServices:
    if registry is None:
        registry = GatewayRegistry.from_entry_points(settings.gateway_entry_point_group)
    catalog = GatewayCatalog(session_factory)
    probe = GatewayHealthProbe(
        registry,
        TTLCache(settings.gateway_health_ttl_seconds),
        timeout_seconds=settings.gateway_probe_timeout_seconds,
    )
    selector = GatewaySelector(catalog, registry, probe, default_currency=settings.default_currency)

    http_client = http_client or httpx.AsyncClient(follow_redirects=False)
    policy = BackoffPolicy.from_settings(settings)
    store = WebhookStore(session_factory)
    dispatcher = DeliveryDispatcher(store, policy, http_client, settings)
    pool = WebhookWorkerPool(dispatcher, concurrency=settings.webhook_workers)
    retry_scheduler = RetryScheduler(
        store,
        dispatcher,
        policy,
        batch_size=settings.webhook_retry_batch_size,
        stuck_after=timedelta(minutes=settings.webhook_stuck_minutes),
    )

    async def webhook_retry(now: datetime) -> Optional[str]:
        claimed = await retry_scheduler.retry_eligible(now)
        return f"retried={len(claimed)}" if claimed else None

    async def webhook_reclaim_stuck(now: datetime) -> Optional[str]:
        reclaimed = await retry_scheduler.reclaim_stuck(now)
        return f"reclaimed={reclaimed}" if reclaimed else None

    async def gateway_health_sweep(now: datetime) -> Optional[str]:
        results = await probe.sweep(catalog, now)
        unhealthy = sorted(t for t, ok in results.items() if not ok)
        return f"unhealthy={','.join(unhealthy)}" if unhealthy else None

    tasks = [
        WorkerTask(name="webhook_retry", fn=webhook_retry),
        WorkerTask(name="webhook_reclaim_stuck", fn=webhook_reclaim_stuck),
    ]
    if settings.gateway_health_sweep_enabled:
        tasks.append(WorkerTask(name="gateway_health_sweep", fn=gateway_health_sweep))
    worker = BackgroundWorker(interval_seconds=settings.webhook_retry_interval_seconds, tasks=tasks)

    return CoreServices(
        settings=settings,
        registry=registry,
        catalog=catalog,
        probe=probe,
        selector=selector,
        store=store,
        dispatcher=dispatcher,
        pool=pool,
        retry_scheduler=retry_scheduler,
        worker=worker,
        http_client=http_client,
    )
