"""Firebase Auth token verifier adapter."""

from __future__ import annotations

from typing import Any

from scribeflow.adapters.auth.base import AuthVerificationError, TokenVerifier, normalize_role
from scribeflow.schemas.auth import AuthPrincipal


class FirebaseTokenVerifier(TokenVerifier):
    """Verifies Firebase ID tokens and maps custom claims onto a principal.

    The ``role`` claim selects customer, transcriber or admin. Transcriber
    tokens may carry a ``worker_id`` claim, which then becomes the principal
    id so assignment ownership checks compare against the worker pool.
    """

    def __init__(self, project_id: str | None, audience: str | None) -> None:
        self._project_id = project_id
        self._audience = audience

    def verify_token(self, token: str) -> AuthPrincipal:
        claims = self._decode(token)
        self._check_issuer(claims)
        role = normalize_role(claims.get("role"))

        subject = claims.get("worker_id") if role == "transcriber" else None
        user_id = str(subject or claims.get("uid") or claims.get("sub") or "").strip()
        if not user_id:
            raise AuthVerificationError("Bearer token missing user identity")
        return AuthPrincipal(user_id=user_id, role=role)

    @staticmethod
    def _decode(token: str) -> dict[str, Any]:
        try:
            import firebase_admin
            from firebase_admin import auth as firebase_auth
        except ImportError as exc:  # pragma: no cover - depends on optional package
            raise AuthVerificationError("Firebase auth verifier is unavailable") from exc

        if not firebase_admin._apps:
            firebase_admin.initialize_app()

        try:
            return dict(firebase_auth.verify_id_token(token, check_revoked=True))
        except Exception as exc:  # pragma: no cover - provider exception surface
            raise AuthVerificationError("Invalid bearer token") from exc

    def _check_issuer(self, claims: dict[str, Any]) -> None:
        audience = str(claims.get("aud", ""))
        if self._audience and audience != self._audience:
            raise AuthVerificationError("Invalid bearer token audience")
        if self._project_id and self._project_id not in str(claims.get("iss", "")) and audience != self._project_id:
            raise AuthVerificationError("Invalid bearer token issuer")


__all__ = ["FirebaseTokenVerifier"]
