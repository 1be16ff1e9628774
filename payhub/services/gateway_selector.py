"""Gateway selection — filter the catalog, probe health, rank candidates."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from payhub.services.gateway_catalog import GatewayDescriptor
from payhub.services.gateway_health import GatewayHealthProbe
from payhub.services.gateway_matcher import SelectionCriteria, matches_criteria
from payhub.services.gateway_registry import GatewayRegistry, PaymentGatewayService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayCandidate:
    descriptor: GatewayDescriptor
    service: PaymentGatewayService
    is_healthy: bool
    priority: int

    @property
    def type(self) -> str:
        return self.descriptor.type


def rank_candidates(candidates: list[GatewayCandidate]) -> list[GatewayCandidate]:
    """Healthy first, then ascending priority. Stable, so ties keep catalog order."""
    return sorted(candidates, key=lambda c: (not c.is_healthy, c.priority))


def pick_best(ranked: list[GatewayCandidate], preferred: Optional[str] = None) -> Optional[GatewayCandidate]:
    """First ranked candidate, unless ``preferred`` (type or code) matched and is healthy."""
    if not ranked:
        return None
    if preferred:
        for candidate in ranked:
            if candidate.is_healthy and preferred in (candidate.type, candidate.descriptor.code):
                return candidate
    return ranked[0]


class GatewaySelector:
    """Produces a ranked gateway list for a payment.

    Selection never touches the network beyond the (cached, time-bounded)
    health probes, and never raises for expected conditions: no match is an
    empty list, an unregistered gateway type is skipped.
    """

    def __init__(
        self,
        catalog,
        registry: GatewayRegistry,
        probe: GatewayHealthProbe,
        default_currency: str = "KES",
    ):
        self.catalog = catalog
        self.registry = registry
        self.probe = probe
        self.default_currency = default_currency

    async def select_gateways(self, criteria: Optional[SelectionCriteria] = None) -> list[GatewayCandidate]:
        criteria = criteria or SelectionCriteria()
        descriptors = await self.catalog.list_enabled()

        matched: list[tuple[GatewayDescriptor, PaymentGatewayService]] = []
        for descriptor in descriptors:
            service = self.registry.get(descriptor.type)
            if service is None:
                logger.debug(f"Skipping gateway {descriptor.code}: no service registered for type {descriptor.type}")
                continue
            if matches_criteria(descriptor, criteria, self.default_currency, service):
                matched.append((descriptor, service))

        health = await self.probe.check_many(d.type for d, _ in matched)
        candidates = [
            GatewayCandidate(
                descriptor=descriptor,
                service=service,
                is_healthy=health[descriptor.type],
                priority=descriptor.priority,
            )
            for descriptor, service in matched
        ]
        return rank_candidates(candidates)

    async def best_gateway(
        self,
        criteria: Optional[SelectionCriteria] = None,
        preferred: Optional[str] = None,
    ) -> Optional[GatewayCandidate]:
        """Top-ranked candidate, or None when nothing matches.

        A caller preference wins only when that gateway matched and is healthy.
        """
        return pick_best(await self.select_gateways(criteria), preferred)

    def get_service(self, gateway_type: str) -> Optional[PaymentGatewayService]:
        return self.registry.get(gateway_type)

    async def mark_gateway_issue(self, gateway_type: str, error: str, now: Optional[datetime] = None) -> None:
        """Record a processing failure for operational visibility.

        Does not exclude the gateway from later selections.
        """
        await self.catalog.record_fault(gateway_type, error, now or datetime.now(timezone.utc))
