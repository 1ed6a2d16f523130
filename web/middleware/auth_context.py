"""Attach authenticated user information from Authorization headers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from core.logging import get_logger
from services.auth_tokens import AuthTokenError, SupabaseTokenVerifier

logger = get_logger(__name__)

_BYPASS_PREFIXES = (
    "/api/v1/payments/webhook",
    "/api/v1/payments/config",
    "/docs",
    "/openapi",
    "/health",
    "/metrics",
)


@dataclass(frozen=True)
class AuthenticatedUser:
    id: str
    email: Optional[str]
    role: str = "authenticated"


def _should_bypass(path: str) -> bool:
    path = path or ""
    return any(path.startswith(prefix) for prefix in _BYPASS_PREFIXES)


def _extract_bearer(header_value: Optional[str]) -> Optional[str]:
    if not header_value:
        return None
    value = header_value.strip()
    if value.lower().startswith("bearer "):
        token = value[7:].strip()
        return token or None
    return None


async def auth_context_middleware(request: Request, call_next):
    path = request.url.path if request.url else ""
    if request.method == "OPTIONS" or _should_bypass(path):
        return await call_next(request)

    token = _extract_bearer(request.headers.get("authorization"))
    if not token:
        return await call_next(request)

    verifier: Optional[SupabaseTokenVerifier] = getattr(request.app.state, "token_verifier", None)
    if verifier is None:
        logger.error("Bearer token received but SUPABASE_JWT_SECRET is not configured.")
        detail = {"code": "auth.unavailable", "message": "Authentication is not configured."}
        return JSONResponse(status_code=503, content={"detail": detail})

    try:
        claims = verifier.decode(token)
    except AuthTokenError as exc:
        return JSONResponse(status_code=401, content={"detail": {"code": exc.code, "message": str(exc)}})

    request.state.user = AuthenticatedUser(
        id=claims.user_id,
        email=claims.email,
        role=claims.role or "authenticated",
    )
    request.state.user_claims = claims.raw
    return await call_next(request)


__all__ = ["AuthenticatedUser", "auth_context_middleware"]
