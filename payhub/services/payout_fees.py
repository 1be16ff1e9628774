"""Payout (disbursement) fee calculation."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping, Optional

CENT = Decimal("0.01")


@dataclass(frozen=True)
class FeeRule:
    rate: Decimal
    min_fee: Decimal
    max_fee: Decimal

    def apply(self, amount: Decimal) -> Decimal:
        fee = amount * self.rate
        return max(self.min_fee, min(fee, self.max_fee)).quantize(CENT, rounding=ROUND_HALF_UP)


# Kenya disbursement schedule, amounts in KES
DEFAULT_FEE_SCHEDULE: dict[str, FeeRule] = {
    "mpesa": FeeRule(Decimal("0.01"), Decimal("5.00"), Decimal("50.00")),
    "bank": FeeRule(Decimal("0.015"), Decimal("25.00"), Decimal("200.00")),
    "default": FeeRule(Decimal("0.02"), Decimal("10.00"), Decimal("100.00")),
}


def calculate_disbursement_fee(
    amount,
    method: str,
    schedule: Optional[Mapping[str, FeeRule]] = None,
) -> Decimal:
    """Fee for paying ``amount`` out via ``method``, clamped to the rule's bounds."""
    amount = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    if amount < 0:
        raise ValueError("amount must be >= 0")
    schedule = schedule or DEFAULT_FEE_SCHEDULE
    rule = schedule.get(method) or schedule["default"]
    return rule.apply(amount)
