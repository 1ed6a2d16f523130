"""Auth-related shared utilities."""

from .constants import (
    AUTH_EVENTS,
    AuthEvent,
    DEFAULT_JWT_ALGORITHM,
    DEFAULT_JWT_AUDIENCE,
    REFRESHING_AUTH_EVENTS,
)

__all__ = [
    "AUTH_EVENTS",
    "AuthEvent",
    "DEFAULT_JWT_ALGORITHM",
    "DEFAULT_JWT_AUDIENCE",
    "REFRESHING_AUTH_EVENTS",
]
