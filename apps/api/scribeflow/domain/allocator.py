"""Pure funding-plan computation.

Sources are consumed in a fixed order: the trial allowance, then active
packages of the requested tier (cheapest first, oldest first on equal
rate), then the wallet. Only wallet-funded units pay add-on surcharges.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from scribeflow.domain.funding import FundingDraw, FundingPlan
from scribeflow.domain.pricing import DEFAULT_PRICING, ZERO, PricingTable, to_money
from scribeflow.errors import ApiError, InsufficientFundsError
from scribeflow.domain.records import AccountBalanceRecord, PackageRecord
from scribeflow.schemas.pricing import AddOn, FundingSource, ServiceTier


def eligible_packages(
    balance: AccountBalanceRecord,
    tier: ServiceTier,
    now: datetime,
) -> list[PackageRecord]:
    packages = [package for package in balance.packages if package.tier is tier and package.is_active(now)]
    packages.sort(key=lambda package: (package.unit_rate, package.purchased_at))
    return packages


def plan_funding(
    balance: AccountBalanceRecord,
    *,
    tier: ServiceTier,
    requested_units: Decimal,
    add_ons: Iterable[AddOn] = (),
    now: datetime,
    pricing: PricingTable = DEFAULT_PRICING,
) -> FundingPlan:
    """Compute which sources pay for ``requested_units`` without mutating anything.

    Raises InsufficientFundsError with the wallet shortfall instead of
    returning a partial plan.
    """
    if requested_units <= 0:
        raise ApiError(
            status_code=422,
            code="VALIDATION_ERROR",
            message="Requested units must be positive",
            details={"requested_units": str(requested_units)},
        )

    add_on_tuple = tuple(sorted(set(add_ons), key=lambda add_on: add_on.value))
    remaining = requested_units
    draws: list[FundingDraw] = []

    if balance.trial_available(now):
        take = min(remaining, balance.trial_units_remaining)
        draws.append(FundingDraw(source=FundingSource.TRIAL, units=take, rate=ZERO, cost=to_money(ZERO)))
        remaining -= take

    for package in eligible_packages(balance, tier, now):
        if remaining <= 0:
            break
        take = min(remaining, package.units_remaining)
        draws.append(
            FundingDraw(
                source=FundingSource.PACKAGE,
                units=take,
                rate=package.unit_rate,
                cost=to_money(take * package.unit_rate),
                package_id=package.id,
            )
        )
        remaining -= take

    wallet_cost = to_money(ZERO)
    if remaining > 0:
        rate = pricing.standard_rate(tier)
        surcharge = to_money(remaining * pricing.surcharge_rate(tier, add_on_tuple))
        wallet_cost = to_money(remaining * rate) + surcharge
        draws.append(
            FundingDraw(
                source=FundingSource.WALLET,
                units=remaining,
                rate=rate,
                cost=wallet_cost,
                surcharge=surcharge,
            )
        )
        if wallet_cost > balance.wallet_balance:
            raise InsufficientFundsError(
                shortfall=wallet_cost - balance.wallet_balance,
                wallet_cost=wallet_cost,
                wallet_balance=balance.wallet_balance,
            )

    return FundingPlan(
        plan_id=f"plan-{uuid4()}",
        account_id=balance.account_id,
        tier=tier,
        requested_units=requested_units,
        add_ons=add_on_tuple,
        balance_version=balance.version,
        draws=tuple(draws),
        total_cost=sum((draw.cost for draw in draws), to_money(ZERO)),
        wallet_cost=wallet_cost,
    )
