"""Payment gateway capability interface and the type → service registry."""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from importlib.metadata import entry_points
from typing import Iterator, Optional

logger = logging.getLogger(__name__)

# Adapter packages register services under this group, named by gateway type:
#   [project.entry-points."payhub.gateways"]
#   mpesa = "acme_mpesa.service:MpesaService"
ENTRY_POINT_GROUP = "payhub.gateways"


class GatewayType(str, Enum):
    MPESA = "mpesa"
    MTN_MOMO = "mtn_momo"
    AIRTEL_MONEY = "airtel_money"
    BANK_TRANSFER = "bank_transfer"
    TELEBIRR = "telebirr"
    STRIPE = "stripe"


MOBILE_MONEY_TYPES = frozenset({GatewayType.MPESA, GatewayType.MTN_MOMO, GatewayType.AIRTEL_MONEY})


def parse_gateway_type(value) -> Optional[GatewayType]:
    """Return the GatewayType for a catalog tag, or None for unknown tags."""
    try:
        return GatewayType(value)
    except ValueError:
        return None


class PaymentGatewayService(ABC):
    """What every registered gateway backend must provide.

    ``health_check`` is optional: services that do not define it are treated
    as healthy. It may be a plain or an ``async`` method.
    """

    @abstractmethod
    def get_name(self) -> str: ...

    @abstractmethod
    def supports_country_and_currency(self, country: str, currency: str) -> bool: ...

    @abstractmethod
    def get_supported_payment_methods(self) -> set[str]: ...

    @abstractmethod
    async def process_payment(self, charge, payment_data: dict) -> dict: ...

    @abstractmethod
    async def check_payment_status(self, charge) -> dict: ...

    @abstractmethod
    async def process_refund(self, charge, amount, metadata: Optional[dict] = None) -> dict: ...

    @abstractmethod
    def validate_payment_method(self, details: dict) -> bool: ...


class GatewayRegistry:
    """Explicit mapping from gateway type to service handle."""

    def __init__(self, services: Optional[dict] = None):
        self._services: dict[GatewayType, PaymentGatewayService] = {}
        for gateway_type, service in (services or {}).items():
            self.register(gateway_type, service)

    @classmethod
    def from_entry_points(cls, group: str = ENTRY_POINT_GROUP) -> "GatewayRegistry":
        """Build a registry from installed adapter packages.

        Each entry point loads a zero-argument factory, usually the service
        class. Unknown types and adapters that fail to load are logged and skipped.
        """
        registry = cls()
        for ep in entry_points(group=group):
            if parse_gateway_type(ep.name) is None:
                logger.warning(f"Ignoring gateway adapter {ep.value!r}: unknown gateway type {ep.name!r}")
                continue
            try:
                service = ep.load()()
            except Exception:
                logger.exception(f"Failed to load gateway adapter {ep.name} from {ep.value}")
                continue
            registry.register(ep.name, service)
            logger.info(f"Registered gateway adapter: type={ep.name} service={service.get_name()}")
        return registry

    def register(self, gateway_type, service: PaymentGatewayService) -> None:
        parsed = parse_gateway_type(gateway_type)
        if parsed is None:
            raise ValueError(f"Unknown gateway type: {gateway_type}")
        self._services[parsed] = service

    def get(self, gateway_type) -> Optional[PaymentGatewayService]:
        parsed = parse_gateway_type(gateway_type)
        if parsed is None:
            logger.debug(f"Lookup for unknown gateway type {gateway_type!r}")
            return None
        return self._services.get(parsed)

    def types(self) -> list[GatewayType]:
        return list(self._services)

    def __contains__(self, gateway_type) -> bool:
        return self.get(gateway_type) is not None

    def __iter__(self) -> Iterator[GatewayType]:
        return iter(self._services)

    def __len__(self) -> int:
        return len(self._services)
