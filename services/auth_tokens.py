"""Supabase access-token verification."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

import jwt

from core.auth.constants import DEFAULT_JWT_ALGORITHM, DEFAULT_JWT_AUDIENCE
from core.env import env_str


class AuthTokenError(RuntimeError):
    """Raised when a bearer token cannot be trusted."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    email: Optional[str]
    role: Optional[str]
    raw: Dict[str, Any]


class SupabaseTokenVerifier:
    """Verifies HS256 access tokens signed with the project's JWT secret."""

    def __init__(
        self,
        secret: str,
        *,
        audience: Optional[str] = DEFAULT_JWT_AUDIENCE,
        algorithms: Sequence[str] = (DEFAULT_JWT_ALGORITHM,),
        issuer: Optional[str] = None,
        leeway_seconds: int = 30,
    ) -> None:
        if not secret:
            raise ValueError("A JWT secret is required.")
        self._secret = secret
        self._audience = audience
        self._algorithms = list(algorithms)
        self._issuer = issuer
        self._leeway = leeway_seconds

    @classmethod
    def from_env(cls) -> Optional["SupabaseTokenVerifier"]:
        secret = env_str("SUPABASE_JWT_SECRET")
        if not secret:
            return None
        return cls(
            secret,
            audience=env_str("SUPABASE_JWT_AUDIENCE", DEFAULT_JWT_AUDIENCE) or None,
            issuer=env_str("SUPABASE_JWT_ISSUER"),
        )

    def decode(self, token: str) -> TokenClaims:
        options = {"require": ["exp", "sub"], "verify_aud": self._audience is not None}
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=self._algorithms,
                audience=self._audience,
                issuer=self._issuer,
                leeway=self._leeway,
                options=options,
            )
        except jwt.ExpiredSignatureError as exc:
            raise AuthTokenError("auth.token_expired", "Your session has expired. Please sign in again.") from exc
        except jwt.InvalidTokenError as exc:
            raise AuthTokenError("auth.token_invalid", "Invalid access token.") from exc

        user_id = payload.get("sub")
        if not user_id:
            raise AuthTokenError("auth.token_invalid", "Invalid access token.")
        return TokenClaims(
            user_id=str(user_id),
            email=payload.get("email"),
            role=payload.get("role"),
            raw=payload,
        )


__all__ = ["AuthTokenError", "SupabaseTokenVerifier", "TokenClaims"]
