"""Authentication provider interfaces."""

from abc import ABC, abstractmethod
from typing import get_args

from scribeflow.schemas.auth import AuthPrincipal, Role

KNOWN_ROLES: frozenset[str] = frozenset(get_args(Role))


class AuthVerificationError(Exception):
    """Raised when a token cannot be verified or normalized."""


class TokenVerifier(ABC):
    """Provider-neutral token verification interface."""

    @abstractmethod
    def verify_token(self, token: str) -> AuthPrincipal:
        """Verify token and return normalized principal."""


def normalize_role(raw: str | None, *, default: str = "customer") -> str:
    role = (raw or default).strip().lower()
    if role not in KNOWN_ROLES:
        raise AuthVerificationError("Bearer token carries an unknown role")
    return role


__all__ = ["AuthVerificationError", "KNOWN_ROLES", "TokenVerifier", "normalize_role"]
