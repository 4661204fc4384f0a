"""Authentication schemas."""

from typing import Literal

from pydantic import BaseModel, Field

Role = Literal["customer", "transcriber", "admin"]


class AuthPrincipal(BaseModel):
    """Normalized authenticated principal used by business services.

    ``user_id`` is the account id for customers and the worker id for transcribers.
    """

    user_id: str = Field(min_length=1)
    role: Role = "customer"
