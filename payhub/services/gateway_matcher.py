"""Criteria matching — does a catalog gateway satisfy a payment's constraints?"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from payhub.services.gateway_catalog import GatewayDescriptor
from payhub.services.gateway_registry import MOBILE_MONEY_TYPES, GatewayType


class PaymentMethodClass(str, Enum):
    CARD = "card"
    MOBILE_MONEY = "mobile_money"
    BANK_TRANSFER = "bank_transfer"


@dataclass(frozen=True)
class SelectionCriteria:
    """Payment constraints; ``None`` on an axis means no constraint there."""

    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    payment_method: Optional[PaymentMethodClass] = None
    country: Optional[str] = None

    def __post_init__(self):
        if self.amount is not None and not isinstance(self.amount, Decimal):
            object.__setattr__(self, "amount", Decimal(str(self.amount)))
        if self.currency is not None:
            object.__setattr__(self, "currency", self.currency.upper())
        if self.country is not None:
            object.__setattr__(self, "country", self.country.upper())
        if self.payment_method is not None and not isinstance(self.payment_method, PaymentMethodClass):
            object.__setattr__(self, "payment_method", PaymentMethodClass(self.payment_method))


def amount_in_range(descriptor: GatewayDescriptor, amount: Decimal) -> bool:
    if descriptor.min_amount is not None and amount < descriptor.min_amount:
        return False
    if descriptor.max_amount is not None and amount > descriptor.max_amount:
        return False
    return True


def matches_criteria(
    descriptor: GatewayDescriptor,
    criteria: SelectionCriteria,
    default_currency: str = "KES",
    service=None,
) -> bool:
    """All given constraints must pass."""
    if criteria.amount is not None and not amount_in_range(descriptor, criteria.amount):
        return False

    if criteria.currency is not None:
        supported = descriptor.supported_currencies or frozenset({default_currency.upper()})
        if criteria.currency not in supported:
            return False

    method = criteria.payment_method
    if method is PaymentMethodClass.MOBILE_MONEY and descriptor.type not in {t.value for t in MOBILE_MONEY_TYPES}:
        return False
    if method is PaymentMethodClass.BANK_TRANSFER and descriptor.type != GatewayType.BANK_TRANSFER.value:
        return False

    # Country is only checkable against a live service handle
    if service is not None and criteria.country is not None and criteria.currency is not None:
        if not service.supports_country_and_currency(criteria.country, criteria.currency):
            return False

    return True
