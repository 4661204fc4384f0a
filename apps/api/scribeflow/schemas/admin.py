"""Administrative API schemas."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, model_validator


class AdjustmentRequest(BaseModel):
    wallet_delta: Decimal = Decimal("0")
    trial_units_delta: Decimal = Decimal("0")
    trial_expires_at: datetime | None = None
    reason: str = Field(min_length=1)

    @model_validator(mode="after")
    def _has_effect(self) -> "AdjustmentRequest":
        if self.wallet_delta == 0 and self.trial_units_delta == 0 and self.trial_expires_at is None:
            raise ValueError("adjustment has no effect")
        return self


class RefundJobRequest(BaseModel):
    reason: str = Field(min_length=1)
