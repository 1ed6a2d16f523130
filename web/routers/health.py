"""Health-related API endpoints."""

from __future__ import annotations

from typing import Any, Optional, Tuple

from fastapi import APIRouter, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

router = APIRouter(prefix="/health", tags=["Health"])


def ping_database(engine: Any) -> Tuple[bool, Optional[str]]:
    """Return database connectivity status and optional error message."""
    if engine is None:
        return False, "database engine not initialised"
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return True, None
    except SQLAlchemyError as exc:
        return False, str(exc)


@router.get("", summary="Liveness check")
def read_health():
    return {"status": "ok"}


@router.get(
    "/status",
    summary="Service runtime status",
    description="Aggregated service health information used by uptime probes.",
)
def read_service_status(request: Request):
    services = getattr(request.app.state, "services", None)
    db_ok, db_error = ping_database(getattr(services, "engine", None))
    payload: dict[str, Any] = {
        "status": "ok" if db_ok else "degraded",
        "database": {"ok": db_ok},
        "payments": {"configured": bool(services and services.stripe)},
    }
    if db_error:
        payload["database"]["error"] = db_error
    return payload


__all__ = ["router", "ping_database"]
