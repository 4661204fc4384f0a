"""Application exception types."""

from decimal import Decimal

from scribeflow.schemas.error import ErrorResponse


class ApiError(Exception):
    """Structured API error that maps directly to contract error payloads."""

    def __init__(self, status_code: int, code: str, message: str, details: dict | None = None) -> None:
        self.status_code = status_code
        self.payload = ErrorResponse(code=code, message=message, details=details)
        super().__init__(message)


class InsufficientFundsError(ApiError):
    """The wallet cannot cover the wallet-funded portion of a plan; nothing was mutated."""

    def __init__(self, *, shortfall: Decimal, wallet_cost: Decimal, wallet_balance: Decimal) -> None:
        self.shortfall = shortfall
        self.wallet_cost = wallet_cost
        self.wallet_balance = wallet_balance
        super().__init__(
            status_code=402,
            code="INSUFFICIENT_FUNDS",
            message="Wallet balance does not cover this request.",
            details={
                "shortfall": str(shortfall),
                "wallet_cost": str(wallet_cost),
                "wallet_balance": str(wallet_balance),
            },
        )


class ProcessingDelayedError(ApiError):
    """Opaque user-facing failure; the correlation id links to internal logs."""

    def __init__(self, *, correlation_id: str, status_code: int = 503) -> None:
        self.correlation_id = correlation_id
        super().__init__(
            status_code=status_code,
            code="PROCESSING_DELAYED",
            message="Processing is delayed. Contact support with the correlation id.",
            details={"correlation_id": correlation_id},
        )


class DataIntegrityError(ProcessingDelayedError):
    """Observed state breaks a balance invariant. Never corrected automatically."""

    def __init__(self, *, account_id: str, violations: list[str], correlation_id: str) -> None:
        self.account_id = account_id
        self.violations = list(violations)
        super().__init__(correlation_id=correlation_id, status_code=500)


class ConcurrentModificationError(Exception):
    """A funding plan went stale because the account changed underneath it."""

    def __init__(self, account_id: str, *, expected_version: int, current_version: int) -> None:
        self.account_id = account_id
        self.expected_version = expected_version
        self.current_version = current_version
        super().__init__(
            f"account changed during debit (expected version {expected_version}, found {current_version})"
        )


def not_found() -> ApiError:
    return ApiError(status_code=404, code="RESOURCE_NOT_FOUND", message="Resource not found")


__all__ = [
    "ApiError",
    "ConcurrentModificationError",
    "DataIntegrityError",
    "InsufficientFundsError",
    "ProcessingDelayedError",
    "not_found",
]
