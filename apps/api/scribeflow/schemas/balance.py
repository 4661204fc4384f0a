"""Balance, funding plan and ledger API schemas."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

from scribeflow.schemas.pricing import AddOn, FundingSource, ServiceTier


class LedgerEntryKind(str, Enum):
    PURCHASE = "purchase"
    DEBIT = "debit"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"


class Package(BaseModel):
    id: str
    name: str
    tier: ServiceTier
    units_total: Decimal
    units_used: Decimal
    units_remaining: Decimal
    unit_rate: Decimal
    purchased_at: datetime
    expires_at: datetime
    active: bool


class AccountBalance(BaseModel):
    account_id: str
    trial_units_remaining: Decimal
    trial_units_used: Decimal
    trial_expires_at: datetime | None = None
    trial_active: bool
    wallet_balance: Decimal
    packages: list[Package]
    version: int
    updated_at: datetime


class PackageUnits(BaseModel):
    package_id: str
    units: Decimal


class SourceBreakdown(BaseModel):
    """Signed per-source deltas; debits are negative, credits positive."""

    trial_units: Decimal
    wallet_amount: Decimal
    packages: list[PackageUnits] = Field(default_factory=list)


class FundingDraw(BaseModel):
    source: FundingSource
    package_id: str | None = None
    units: Decimal
    rate: Decimal
    cost: Decimal
    surcharge: Decimal


class FundingPlan(BaseModel):
    tier: ServiceTier
    requested_units: Decimal
    add_ons: list[AddOn]
    draws: list[FundingDraw]
    total_cost: Decimal
    wallet_cost: Decimal


class QuoteRequest(BaseModel):
    tier: ServiceTier
    requested_units: Decimal = Field(gt=0)
    add_ons: list[AddOn] = Field(default_factory=list)


class Quote(BaseModel):
    """Advisory only; the debit re-checks feasibility atomically."""

    sufficient: bool
    shortfall: Decimal
    plan: FundingPlan | None = None


class LedgerEntry(BaseModel):
    id: int
    account_id: str
    kind: LedgerEntryKind
    amount: Decimal
    breakdown: SourceBreakdown
    related_job_id: str | None = None
    refund_of_entry_id: int | None = None
    description: str
    created_at: datetime


class ReconciliationReport(BaseModel):
    account_id: str
    consistent: bool
    entries_replayed: int
    trial_units_remaining: Decimal
    wallet_balance: Decimal
    package_units_remaining: dict[str, Decimal]
