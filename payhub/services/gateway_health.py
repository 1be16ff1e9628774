"""Gateway health probe — cached, time-bounded liveness checks per gateway type."""

import asyncio
import inspect
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from payhub.errors import HealthProbeFault
from payhub.services.gateway_registry import GatewayRegistry
from payhub.services.ttl_cache import TTLCache

logger = logging.getLogger(__name__)


class GatewayHealthProbe:
    """Answers "is gateway type T usable right now?".

    Results are cached in the injected ``TTLCache``. A probe that raises or
    runs past ``timeout_seconds`` counts as unhealthy; ``check`` never raises.
    Services without a ``health_check`` method are healthy by default.
    """

    def __init__(
        self,
        registry: GatewayRegistry,
        cache: TTLCache,
        timeout_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry
        self.cache = cache
        self.timeout_seconds = timeout_seconds
        self.clock = clock

    async def check(self, gateway_type: str) -> bool:
        now = self.clock()
        cached = self.cache.get(gateway_type, now)
        if cached is not None:
            return cached

        healthy, _ = await self._probe(gateway_type)
        self.cache.set(gateway_type, healthy, self.clock())
        return healthy

    async def check_many(self, gateway_types: Iterable[str]) -> dict[str, bool]:
        """Probe distinct types concurrently; each probe has its own timeout."""
        unique = list(dict.fromkeys(gateway_types))
        results = await asyncio.gather(*(self.check(t) for t in unique))
        return dict(zip(unique, results))

    def invalidate(self, gateway_type: Optional[str] = None) -> None:
        self.cache.invalidate(gateway_type)

    async def sweep(self, catalog, now: Optional[datetime] = None) -> dict[str, bool]:
        """Probe every enabled catalog gateway, bypassing and refreshing the cache.

        Each result is recorded through ``catalog.record_health``.
        """
        now = now or datetime.now(timezone.utc)
        descriptors = await catalog.list_enabled()
        types = list(dict.fromkeys(d.type for d in descriptors))

        async def probe_one(gateway_type):
            started = time.monotonic()
            healthy, error = await self._probe(gateway_type)
            elapsed_ms = int((time.monotonic() - started) * 1000)
            self.cache.set(gateway_type, healthy, self.clock())
            await catalog.record_health(gateway_type, healthy, error, elapsed_ms, now)
            return healthy

        results = await asyncio.gather(*(probe_one(t) for t in types))
        return dict(zip(types, results))

    async def _probe(self, gateway_type: str) -> tuple[bool, Optional[str]]:
        service = self.registry.get(gateway_type)
        if service is None:
            return False, "no registered service"

        health_check = getattr(service, "health_check", None)
        if health_check is None:
            return True, None

        try:
            return bool(await asyncio.wait_for(self._run(health_check), self.timeout_seconds)), None
        except asyncio.TimeoutError:
            fault = HealthProbeFault(gateway_type, f"timed out after {self.timeout_seconds}s")
        except Exception as exc:
            fault = HealthProbeFault(gateway_type, str(exc) or type(exc).__name__)
        logger.warning(f"Gateway health check failed: gateway_type={gateway_type} error={fault.reason}")
        return False, fault.reason

    @staticmethod
    async def _run(health_check):
        if inspect.iscoroutinefunction(health_check):
            return await health_check()
        # Blocking probes run in a thread so wait_for can bound them
        result = await asyncio.to_thread(health_check)
        if inspect.isawaitable(result):
            result = await result
        return result
