"""Bearer token verifiers: mock tokens for development, Firebase ID tokens in production."""

from .base import KNOWN_ROLES, AuthVerificationError, TokenVerifier, normalize_role
from .firebase_auth import FirebaseTokenVerifier
from .mock_auth import MockTokenVerifier

__all__ = [
    "KNOWN_ROLES",
    "AuthVerificationError",
    "FirebaseTokenVerifier",
    "MockTokenVerifier",
    "TokenVerifier",
    "normalize_role",
]
