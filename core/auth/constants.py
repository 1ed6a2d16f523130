"""Centralized constants for authentication flows."""

from __future__ import annotations

from typing import FrozenSet, Literal

AuthEvent = Literal["SIGNED_IN", "SIGNED_OUT", "TOKEN_REFRESHED", "USER_UPDATED"]

AUTH_EVENTS: FrozenSet[AuthEvent] = frozenset(["SIGNED_IN", "SIGNED_OUT", "TOKEN_REFRESHED", "USER_UPDATED"])
REFRESHING_AUTH_EVENTS: FrozenSet[AuthEvent] = frozenset(["SIGNED_IN", "USER_UPDATED"])

# Supabase access tokens are HS256 JWTs with audience "authenticated".
DEFAULT_JWT_ALGORITHM = "HS256"
DEFAULT_JWT_AUDIENCE = "authenticated"

__all__ = [
    "AUTH_EVENTS",
    "AuthEvent",
    "DEFAULT_JWT_ALGORITHM",
    "DEFAULT_JWT_AUDIENCE",
    "REFRESHING_AUTH_EVENTS",
]
