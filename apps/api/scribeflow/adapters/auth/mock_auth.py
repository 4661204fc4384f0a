"""Mock auth verifier for local development and tests."""

from scribeflow.adapters.auth.base import AuthVerificationError, TokenVerifier, normalize_role
from scribeflow.schemas.auth import AuthPrincipal

_TOKEN_PREFIX = "test"


class MockTokenVerifier(TokenVerifier):
    """Accepts ``test:<principal_id>`` or ``test:<principal_id>:<role>``.

    The principal id is an account id for customers and a worker id for
    transcribers. Omitting the role means customer.
    """

    def verify_token(self, token: str) -> AuthPrincipal:
        prefix, *fields = token.split(":")
        if prefix != _TOKEN_PREFIX or not 1 <= len(fields) <= 2:
            raise AuthVerificationError("Invalid bearer token")

        principal_id = fields[0].strip()
        if not principal_id:
            raise AuthVerificationError("Bearer token missing user identity")

        raw_role = fields[1] if len(fields) == 2 else None
        if raw_role is not None and not raw_role.strip():
            raise AuthVerificationError("Bearer token missing role")
        return AuthPrincipal(user_id=principal_id, role=normalize_role(raw_role))


__all__ = ["MockTokenVerifier"]
