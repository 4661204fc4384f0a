"""Per-tier standard rates and add-on surcharges."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

from scribeflow.schemas.pricing import AddOn, ServiceTier

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True, slots=True)
class TierPrice:
    standard_rate: Decimal
    surcharges: Mapping[AddOn, Decimal] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class PricingTable:
    tiers: Mapping[ServiceTier, TierPrice]

    def standard_rate(self, tier: ServiceTier) -> Decimal:
        return self.tiers[tier].standard_rate

    def surcharge_rate(self, tier: ServiceTier, add_ons: Iterable[AddOn]) -> Decimal:
        """Per-unit surcharge for the requested add-ons; duplicates count once."""
        surcharges = self.tiers[tier].surcharges
        return sum((surcharges.get(add_on, ZERO) for add_on in set(add_ons)), ZERO)


DEFAULT_PRICING = PricingTable(
    tiers={
        ServiceTier.AI: TierPrice(standard_rate=Decimal("0.40")),
        ServiceTier.HYBRID: TierPrice(
            standard_rate=Decimal("1.50"),
            surcharges={AddOn.RUSH_DELIVERY: Decimal("0.50"), AddOn.MULTIPLE_SPEAKERS: Decimal("0.25")},
        ),
        ServiceTier.HUMAN: TierPrice(
            standard_rate=Decimal("2.50"),
            surcharges={AddOn.RUSH_DELIVERY: Decimal("0.75"), AddOn.MULTIPLE_SPEAKERS: Decimal("0.30")},
        ),
    }
)
