"""Ledger transaction executor: the only writer of account balances."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import logging
from uuid import uuid4

from scribeflow.core.logging_safety import (
    ACCOUNT_PREFIX,
    CORRELATION_PREFIX,
    ENTRY_PREFIX,
    format_amount,
    safe_log_identifier,
)
from scribeflow.domain.allocator import plan_funding
from scribeflow.domain.funding import FundingPlan, SourceBreakdown
from scribeflow.domain.pricing import DEFAULT_PRICING, ZERO, PricingTable, to_money
from scribeflow.domain.records import AccountBalanceRecord, LedgerEntryRecord, PackageRecord
from scribeflow.errors import (
    ApiError,
    ConcurrentModificationError,
    DataIntegrityError,
    InsufficientFundsError,
    ProcessingDelayedError,
    not_found,
)
from scribeflow.repositories.memory import InMemoryStore
from scribeflow.schemas import balance as balance_schemas
from scribeflow.schemas.balance import LedgerEntryKind
from scribeflow.schemas.internal import PurchaseConfirmedRequest
from scribeflow.schemas.pricing import AddOn, ServiceTier

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DebitResult:
    entry: LedgerEntryRecord
    replayed: bool
    plan: FundingPlan | None = None


@dataclass(slots=True)
class RefundResult:
    entry: LedgerEntryRecord
    replayed: bool


@dataclass(slots=True)
class PurchaseResult:
    entry: LedgerEntryRecord
    replayed: bool
    package_id: str | None = None


def breakdown_to_schema(breakdown: SourceBreakdown) -> balance_schemas.SourceBreakdown:
    return balance_schemas.SourceBreakdown(
        trial_units=breakdown.trial_units,
        wallet_amount=breakdown.wallet_amount,
        packages=[
            balance_schemas.PackageUnits(package_id=package_id, units=units)
            for package_id, units in breakdown.package_units
        ],
    )


def plan_to_schema(plan: FundingPlan) -> balance_schemas.FundingPlan:
    return balance_schemas.FundingPlan(
        tier=plan.tier,
        requested_units=plan.requested_units,
        add_ons=list(plan.add_ons),
        draws=[
            balance_schemas.FundingDraw(
                source=draw.source,
                package_id=draw.package_id,
                units=draw.units,
                rate=draw.rate,
                cost=draw.cost,
                surcharge=draw.surcharge,
            )
            for draw in plan.draws
        ],
        total_cost=plan.total_cost,
        wallet_cost=plan.wallet_cost,
    )


def entry_to_schema(entry: LedgerEntryRecord) -> balance_schemas.LedgerEntry:
    return balance_schemas.LedgerEntry(
        id=entry.id,
        account_id=entry.account_id,
        kind=entry.kind,
        amount=entry.amount,
        breakdown=breakdown_to_schema(entry.breakdown),
        related_job_id=entry.related_job_id,
        refund_of_entry_id=entry.refund_of_entry_id,
        description=entry.description,
        created_at=entry.created_at,
    )


class LedgerService:
    def __init__(
        self,
        store: InMemoryStore,
        *,
        pricing: PricingTable = DEFAULT_PRICING,
        max_retries: int = 3,
    ) -> None:
        self._store = store
        self._pricing = pricing
        self._max_retries = max_retries

    # -- reads --------------------------------------------------------------

    def get_balance(self, account_id: str) -> balance_schemas.AccountBalance:
        account = self._store.snapshot_account(account_id)
        now = self._store.clock()
        return balance_schemas.AccountBalance(
            account_id=account.account_id,
            trial_units_remaining=account.trial_units_remaining,
            trial_units_used=account.trial_units_used,
            trial_expires_at=account.trial_expires_at,
            trial_active=account.trial_available(now),
            wallet_balance=account.wallet_balance,
            packages=[self._to_package(package, now) for package in account.packages],
            version=account.version,
            updated_at=account.updated_at,
        )

    def quote(
        self,
        account_id: str,
        *,
        tier: ServiceTier,
        requested_units: Decimal,
        add_ons: Iterable[AddOn] = (),
    ) -> balance_schemas.Quote:
        """Advisory plan against the current balance; the debit re-checks everything."""
        account = self._store.snapshot_account(account_id)
        try:
            plan = plan_funding(
                account,
                tier=tier,
                requested_units=requested_units,
                add_ons=add_ons,
                now=self._store.clock(),
                pricing=self._pricing,
            )
        except InsufficientFundsError as exc:
            return balance_schemas.Quote(sufficient=False, shortfall=exc.shortfall)
        return balance_schemas.Quote(sufficient=True, shortfall=to_money(ZERO), plan=plan_to_schema(plan))

    def list_entries(self, account_id: str) -> list[balance_schemas.LedgerEntry]:
        return [entry_to_schema(entry) for entry in self._store.list_ledger_entries(account_id)]

    # -- debits -------------------------------------------------------------

    def plan(
        self,
        account_id: str,
        *,
        tier: ServiceTier,
        requested_units: Decimal,
        add_ons: Iterable[AddOn] = (),
    ) -> FundingPlan:
        return plan_funding(
            self._store.snapshot_account(account_id),
            tier=tier,
            requested_units=requested_units,
            add_ons=add_ons,
            now=self._store.clock(),
            pricing=self._pricing,
        )

    def execute(
        self,
        plan: FundingPlan,
        *,
        related_job_id: str | None = None,
        idempotency_key: str | None = None,
        correlation_id: str | None = None,
    ) -> DebitResult:
        """Apply a funding plan atomically, or raise without mutating anything.

        Without an explicit ``idempotency_key`` the plan's own id is the key.
        """
        safe_account_id = safe_log_identifier(plan.account_id, prefix=ACCOUNT_PREFIX)
        idempotency_key = idempotency_key or plan.plan_id
        with self._store.account_transaction(plan.account_id) as txn:
            existing = self._store.find_entry_by_idempotency(plan.account_id, idempotency_key)
            if existing is not None:
                logger.info(
                    "ledger.debit.replayed account_id=%s entry_id=%s",
                    safe_account_id,
                    safe_log_identifier(existing.id, prefix=ENTRY_PREFIX),
                )
                return DebitResult(entry=existing, replayed=True)

            fresh = plan_funding(
                txn.account,
                tier=plan.tier,
                requested_units=plan.requested_units,
                add_ons=plan.add_ons,
                now=txn.now,
                pricing=self._pricing,
            )
            if not fresh.same_allocation(plan):
                raise ConcurrentModificationError(
                    plan.account_id,
                    expected_version=plan.balance_version,
                    current_version=txn.account.version,
                )

            breakdown = fresh.debit_breakdown()
            self._apply_breakdown(txn.account, breakdown, track_usage=True, correlation_id=correlation_id)
            self._check_invariants(txn.account, correlation_id=correlation_id)
            entry = self._store.stage_ledger_entry(
                txn,
                kind=LedgerEntryKind.DEBIT,
                amount=ZERO - fresh.total_cost,
                breakdown=breakdown,
                description=f"{plan.tier.value} transcription, {format_amount(plan.requested_units)} units",
                related_job_id=related_job_id,
                idempotency_key=idempotency_key,
            )

        logger.info(
            "ledger.debit.applied account_id=%s entry_id=%s total_cost=%s wallet_cost=%s",
            safe_account_id,
            safe_log_identifier(entry.id, prefix=ENTRY_PREFIX),
            format_amount(fresh.total_cost),
            format_amount(fresh.wallet_cost),
        )
        return DebitResult(entry=entry, replayed=False, plan=fresh)

    def debit(
        self,
        account_id: str,
        *,
        tier: ServiceTier,
        requested_units: Decimal,
        add_ons: Iterable[AddOn] = (),
        related_job_id: str | None = None,
        idempotency_key: str | None = None,
        correlation_id: str | None = None,
    ) -> DebitResult:
        """Plan and execute, re-planning when the account changed in between."""
        correlation_id = correlation_id or str(uuid4())
        safe_account_id = safe_log_identifier(account_id, prefix=ACCOUNT_PREFIX)
        add_ons = tuple(add_ons)

        if idempotency_key is not None:
            existing = self._store.find_entry_by_idempotency(account_id, idempotency_key)
            if existing is not None:
                return DebitResult(entry=existing, replayed=True)

        for attempt in range(1, self._max_retries + 1):
            plan = self.plan(account_id, tier=tier, requested_units=requested_units, add_ons=add_ons)
            try:
                return self.execute(
                    plan,
                    related_job_id=related_job_id,
                    idempotency_key=idempotency_key,
                    correlation_id=correlation_id,
                )
            except ConcurrentModificationError as exc:
                logger.warning(
                    "ledger.debit.stale_plan account_id=%s attempt=%s expected_version=%s current_version=%s",
                    safe_account_id,
                    attempt,
                    exc.expected_version,
                    exc.current_version,
                )

        logger.error(
            "ledger.debit.retries_exhausted account_id=%s correlation_id=%s attempts=%s",
            safe_account_id,
            safe_log_identifier(correlation_id, prefix=CORRELATION_PREFIX),
            self._max_retries,
        )
        raise ProcessingDelayedError(correlation_id=correlation_id)

    # -- credits ------------------------------------------------------------

    def refund(
        self,
        account_id: str,
        debit_entry_id: int,
        *,
        reason: str,
        correlation_id: str | None = None,
    ) -> RefundResult:
        """Restore exactly what a debit took. A debit is refunded at most once."""
        safe_account_id = safe_log_identifier(account_id, prefix=ACCOUNT_PREFIX)
        with self._store.account_transaction(account_id) as txn:
            debit = self._store.get_ledger_entry(debit_entry_id)
            if debit is None or debit.account_id != account_id or debit.kind is not LedgerEntryKind.DEBIT:
                raise not_found()

            existing = self._store.find_refund_for(debit_entry_id)
            if existing is not None:
                logger.info(
                    "ledger.refund.replayed account_id=%s entry_id=%s",
                    safe_account_id,
                    safe_log_identifier(existing.id, prefix=ENTRY_PREFIX),
                )
                return RefundResult(entry=existing, replayed=True)

            restore = debit.breakdown.negated()
            self._apply_breakdown(txn.account, restore, track_usage=True, correlation_id=correlation_id)
            self._check_invariants(txn.account, correlation_id=correlation_id)
            entry = self._store.stage_ledger_entry(
                txn,
                kind=LedgerEntryKind.REFUND,
                amount=ZERO - debit.amount,
                breakdown=restore,
                description=reason,
                related_job_id=debit.related_job_id,
                refund_of_entry_id=debit.id,
            )

        logger.info(
            "ledger.refund.applied account_id=%s entry_id=%s refund_of=%s amount=%s",
            safe_account_id,
            safe_log_identifier(entry.id, prefix=ENTRY_PREFIX),
            safe_log_identifier(debit_entry_id, prefix=ENTRY_PREFIX),
            format_amount(entry.amount),
        )
        return RefundResult(entry=entry, replayed=False)

    def credit_purchase(self, payload: PurchaseConfirmedRequest) -> PurchaseResult:
        """Record a settled purchase once per processor payment reference."""
        safe_account_id = safe_log_identifier(payload.account_id, prefix=ACCOUNT_PREFIX)
        guard = self._store.payment_reference_guard()
        with guard, self._store.account_transaction(payload.account_id) as txn:
            existing = self._store.find_entry_by_payment_reference(payload.payment_reference)
            if existing is not None:
                if existing.account_id != payload.account_id:
                    raise ApiError(
                        status_code=409,
                        code="PAYMENT_REFERENCE_CONFLICT",
                        message="payment_reference was already applied to a different account.",
                    )
                logger.info(
                    "ledger.purchase.replayed account_id=%s entry_id=%s",
                    safe_account_id,
                    safe_log_identifier(existing.id, prefix=ENTRY_PREFIX),
                )
                package_ids = [package_id for package_id, _ in existing.breakdown.package_units]
                return PurchaseResult(
                    entry=existing,
                    replayed=True,
                    package_id=package_ids[0] if package_ids else None,
                )

            package_id: str | None = None
            if payload.kind == "package":
                spec = payload.package
                package = PackageRecord(
                    id=f"pkg-{uuid4()}",
                    name=spec.name,
                    tier=spec.tier,
                    units_total=spec.units,
                    unit_rate=spec.unit_rate,
                    purchased_at=txn.now,
                    expires_at=txn.now + timedelta(days=spec.validity_days),
                )
                txn.account.packages.append(package)
                package_id = package.id
                breakdown = SourceBreakdown(package_units=((package.id, spec.units),))
                description = f"package purchase: {spec.name}"
            else:
                breakdown = SourceBreakdown(wallet_amount=to_money(payload.amount_confirmed))
                self._apply_breakdown(txn.account, breakdown, track_usage=False)
                description = "wallet top-up"

            entry = self._store.stage_ledger_entry(
                txn,
                kind=LedgerEntryKind.PURCHASE,
                amount=to_money(payload.amount_confirmed),
                breakdown=breakdown,
                description=description,
                payment_reference=payload.payment_reference,
            )

        logger.info(
            "ledger.purchase.applied account_id=%s entry_id=%s kind=%s amount=%s",
            safe_account_id,
            safe_log_identifier(entry.id, prefix=ENTRY_PREFIX),
            payload.kind,
            format_amount(entry.amount),
        )
        return PurchaseResult(entry=entry, replayed=False, package_id=package_id)

    def adjust(
        self,
        account_id: str,
        *,
        wallet_delta: Decimal = ZERO,
        trial_units_delta: Decimal = ZERO,
        trial_expires_at: datetime | None = None,
        reason: str,
    ) -> LedgerEntryRecord:
        """Administrative correction or trial grant, rejected in full if anything would go negative."""
        breakdown = SourceBreakdown(trial_units=trial_units_delta, wallet_amount=to_money(wallet_delta))
        with self._store.account_transaction(account_id) as txn:
            self._apply_breakdown(txn.account, breakdown, track_usage=False)
            if trial_expires_at is not None:
                txn.account.trial_expires_at = trial_expires_at
            if txn.account.wallet_balance < 0 or txn.account.trial_units_remaining < 0:
                raise ApiError(
                    status_code=409,
                    code="ADJUSTMENT_REJECTED",
                    message="Adjustment would make a balance negative.",
                    details={
                        "wallet_balance": str(txn.account.wallet_balance),
                        "trial_units_remaining": str(txn.account.trial_units_remaining),
                    },
                )
            entry = self._store.stage_ledger_entry(
                txn,
                kind=LedgerEntryKind.ADJUSTMENT,
                amount=breakdown.wallet_amount,
                breakdown=breakdown,
                description=reason,
            )

        logger.info(
            "ledger.adjustment.applied account_id=%s entry_id=%s wallet_delta=%s trial_units_delta=%s",
            safe_log_identifier(account_id, prefix=ACCOUNT_PREFIX),
            safe_log_identifier(entry.id, prefix=ENTRY_PREFIX),
            format_amount(breakdown.wallet_amount),
            format_amount(trial_units_delta),
        )
        return entry

    # -- reconciliation -----------------------------------------------------

    def verify_account(
        self,
        account_id: str,
        *,
        correlation_id: str | None = None,
    ) -> balance_schemas.ReconciliationReport:
        """Replay the ledger and compare it with the cached balance. Never corrects anything."""
        with self._store.account_transaction(account_id) as txn:
            account = txn.account
            entries = self._store.list_ledger_entries(account_id)

            trial = ZERO
            wallet = ZERO
            package_units: dict[str, Decimal] = {}
            for entry in entries:
                trial += entry.breakdown.trial_units
                wallet += entry.breakdown.wallet_amount
                for package_id, units in entry.breakdown.package_units:
                    package_units[package_id] = package_units.get(package_id, ZERO) + units

            violations = self._invariant_violations(account)
            if trial != account.trial_units_remaining:
                violations.append(f"trial_units_remaining cached={account.trial_units_remaining} replayed={trial}")
            if wallet != account.wallet_balance:
                violations.append(f"wallet_balance cached={account.wallet_balance} replayed={wallet}")
            cached_packages = {package.id: package.units_remaining for package in account.packages}
            for package_id in sorted(set(cached_packages) | set(package_units)):
                cached = cached_packages.get(package_id)
                replayed = package_units.get(package_id)
                if cached != replayed:
                    violations.append(f"package {package_id} cached={cached} replayed={replayed}")

        if violations:
            self._raise_integrity(account_id, violations, correlation_id=correlation_id)

        return balance_schemas.ReconciliationReport(
            account_id=account_id,
            consistent=True,
            entries_replayed=len(entries),
            trial_units_remaining=trial,
            wallet_balance=wallet,
            package_units_remaining=package_units,
        )

    # -- helpers ------------------------------------------------------------

    def _apply_breakdown(
        self,
        account: AccountBalanceRecord,
        breakdown: SourceBreakdown,
        *,
        track_usage: bool,
        correlation_id: str | None = None,
    ) -> None:
        account.trial_units_remaining += breakdown.trial_units
        if track_usage:
            account.trial_units_used -= breakdown.trial_units
        account.wallet_balance += breakdown.wallet_amount
        for package_id, units in breakdown.package_units:
            package = account.get_package(package_id)
            if package is None:
                self._raise_integrity(
                    account.account_id,
                    [f"package {package_id} referenced by ledger is missing"],
                    correlation_id=correlation_id,
                )
            package.units_used -= units

    @staticmethod
    def _invariant_violations(account: AccountBalanceRecord) -> list[str]:
        violations: list[str] = []
        if account.wallet_balance < 0:
            violations.append(f"wallet_balance negative: {account.wallet_balance}")
        if account.trial_units_remaining < 0:
            violations.append(f"trial_units_remaining negative: {account.trial_units_remaining}")
        for package in account.packages:
            if package.units_used < 0 or package.units_remaining < 0:
                violations.append(f"package {package.id} out of range: used={package.units_used}")
        return violations

    def _check_invariants(self, account: AccountBalanceRecord, *, correlation_id: str | None) -> None:
        violations = self._invariant_violations(account)
        if violations:
            self._raise_integrity(account.account_id, violations, correlation_id=correlation_id)

    @staticmethod
    def _raise_integrity(account_id: str, violations: list[str], *, correlation_id: str | None) -> None:
        correlation_id = correlation_id or str(uuid4())
        logger.critical(
            "ledger.integrity.violation account_id=%s correlation_id=%s violations=%s",
            safe_log_identifier(account_id, prefix=ACCOUNT_PREFIX),
            safe_log_identifier(correlation_id, prefix=CORRELATION_PREFIX),
            "; ".join(violations),
        )
        raise DataIntegrityError(account_id=account_id, violations=violations, correlation_id=correlation_id)

    @staticmethod
    def _to_package(package: PackageRecord, now: datetime) -> balance_schemas.Package:
        return balance_schemas.Package(
            id=package.id,
            name=package.name,
            tier=package.tier,
            units_total=package.units_total,
            units_used=package.units_used,
            units_remaining=package.units_remaining,
            unit_rate=package.unit_rate,
            purchased_at=package.purchased_at,
            expires_at=package.expires_at,
            active=package.is_active(now),
        )
