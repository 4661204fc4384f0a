"""Funding plan value types shared by the allocator, the ledger and job records."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from scribeflow.domain.pricing import ZERO
from scribeflow.schemas.pricing import AddOn, FundingSource, ServiceTier


@dataclass(frozen=True, slots=True)
class SourceBreakdown:
    """Signed per-source deltas carried by every ledger entry.

    ``package_units`` is an ordered tuple of ``(package_id, units)`` pairs.
    """

    trial_units: Decimal = ZERO
    wallet_amount: Decimal = ZERO
    package_units: tuple[tuple[str, Decimal], ...] = ()

    def negated(self) -> SourceBreakdown:
        return SourceBreakdown(
            trial_units=ZERO - self.trial_units,
            wallet_amount=ZERO - self.wallet_amount,
            package_units=tuple((package_id, ZERO - units) for package_id, units in self.package_units),
        )


@dataclass(frozen=True, slots=True)
class FundingDraw:
    source: FundingSource
    units: Decimal
    rate: Decimal
    cost: Decimal
    surcharge: Decimal = ZERO
    package_id: str | None = None


@dataclass(frozen=True, slots=True)
class FundingPlan:
    """Funding decision for one request.

    ``plan_id`` identifies this computation; executing the same plan twice
    applies it once.
    """

    plan_id: str
    account_id: str
    tier: ServiceTier
    requested_units: Decimal
    add_ons: tuple[AddOn, ...]
    balance_version: int
    draws: tuple[FundingDraw, ...]
    total_cost: Decimal
    wallet_cost: Decimal

    @property
    def trial_units(self) -> Decimal:
        return sum((d.units for d in self.draws if d.source is FundingSource.TRIAL), ZERO)

    @property
    def wallet_units(self) -> Decimal:
        return sum((d.units for d in self.draws if d.source is FundingSource.WALLET), ZERO)

    def same_allocation(self, other: FundingPlan) -> bool:
        """True when both plans draw identical amounts from identical sources."""
        return (
            self.draws == other.draws
            and self.total_cost == other.total_cost
            and self.wallet_cost == other.wallet_cost
        )

    def debit_breakdown(self) -> SourceBreakdown:
        return SourceBreakdown(
            trial_units=ZERO - self.trial_units,
            wallet_amount=ZERO - self.wallet_cost,
            package_units=tuple(
                (draw.package_id, ZERO - draw.units)
                for draw in self.draws
                if draw.source is FundingSource.PACKAGE and draw.package_id is not None
            ),
        )
