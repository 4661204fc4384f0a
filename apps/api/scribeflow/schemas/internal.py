"""Internal (service-to-service) schemas."""

from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from scribeflow.schemas.pricing import ServiceTier


class PackageSpec(BaseModel):
    name: str = Field(min_length=1)
    tier: ServiceTier
    units: Decimal = Field(gt=0)
    unit_rate: Decimal = Field(ge=0)
    validity_days: int = Field(default=30, ge=1)


class PurchaseConfirmedRequest(BaseModel):
    """Payment processor event for a purchase that has already settled."""

    account_id: str = Field(min_length=1)
    payment_reference: str = Field(min_length=1)
    kind: Literal["package", "wallet_topup"]
    amount_confirmed: Decimal = Field(gt=0)
    package: PackageSpec | None = None

    @model_validator(mode="after")
    def _package_matches_kind(self) -> "PurchaseConfirmedRequest":
        if self.kind == "package" and self.package is None:
            raise ValueError("package purchases require a package spec")
        if self.kind == "wallet_topup" and self.package is not None:
            raise ValueError("wallet top-ups must not carry a package spec")
        return self


class PurchaseConfirmedResponse(BaseModel):
    account_id: str
    ledger_entry_id: int
    package_id: str | None = None
    replayed: bool


class PipelineTickResponse(BaseModel):
    examined: int
    submitted: int
    completed: int
    retried: int
    failed: int


class QueueDrainResponse(BaseModel):
    assigned: int
    still_queued: int
