"""Profile + prompt history persistence (the ``profiles`` / ``prompt_history`` tables)."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Protocol

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from core.quota_constants import FREE_PROMPT_LIMIT
from models.profile import Profile
from models.prompt_history import PromptHistoryEntry
from services.quota_errors import ProfileNotFound, StoreError

logger = logging.getLogger(__name__)

UPDATABLE_PROFILE_FIELDS = frozenset(
    {
        "name",
        "email",
        "prompt_count",
        "total_prompts_limit",
        "is_premium",
        "has_prompt_history_access",
        "last_upgrade_payment_intent_id",
        "allowance_period_started_at",
    }
)


@dataclass(frozen=True, slots=True)
class ProfileState:
    """Detached copy of a profile row."""

    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    prompt_count: int = 0
    total_prompts_limit: int = FREE_PROMPT_LIMIT
    is_premium: bool = False
    has_prompt_history_access: bool = False
    last_upgrade_payment_intent_id: Optional[str] = None
    allowance_period_started_at: Optional[datetime] = None

    def with_fields(self, **fields: Any) -> "ProfileState":
        return replace(self, **fields)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "prompt_count": self.prompt_count,
            "total_prompts_limit": self.total_prompts_limit,
            "is_premium": self.is_premium,
            "has_prompt_history_access": self.has_prompt_history_access,
            "last_upgrade_payment_intent_id": self.last_upgrade_payment_intent_id,
            "allowance_period_started_at": (
                self.allowance_period_started_at.isoformat() if self.allowance_period_started_at else None
            ),
        }


@dataclass(frozen=True, slots=True)
class PromptHistoryRecord:
    id: int
    user_id: str
    message: str
    ai_response: str
    tool_type: str
    created_at: datetime


class ProfileStore(Protocol):
    """Contract the reconciliation core depends on. Last write wins unless ``expected`` is given."""

    def get_profile(self, user_id: str) -> Optional[ProfileState]: ...

    def ensure_profile(self, user_id: str, *, name: Optional[str] = None, email: Optional[str] = None) -> ProfileState: ...

    def update_profile(
        self,
        user_id: str,
        fields: Mapping[str, Any],
        *,
        expected: Optional[Mapping[str, Any]] = None,
    ) -> bool: ...

    def increment_prompt_count(self, user_id: str, by: int = 1) -> int: ...

    def count_prompt_history(
        self,
        user_id: str,
        *,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> int: ...

    def list_prompt_history(self, user_id: str, *, limit: int = 50, offset: int = 0) -> List[PromptHistoryRecord]: ...

    def insert_prompt_history(self, user_id: str, message: str, ai_response: str, tool_type: str) -> PromptHistoryRecord: ...


def _to_state(row: Profile) -> ProfileState:
    return ProfileState(
        id=row.id,
        name=row.name,
        email=row.email,
        prompt_count=int(row.prompt_count or 0),
        total_prompts_limit=int(row.total_prompts_limit if row.total_prompts_limit is not None else FREE_PROMPT_LIMIT),
        is_premium=bool(row.is_premium),
        has_prompt_history_access=bool(row.has_prompt_history_access),
        last_upgrade_payment_intent_id=row.last_upgrade_payment_intent_id,
        allowance_period_started_at=row.allowance_period_started_at,
    )


def _to_history(row: PromptHistoryEntry) -> PromptHistoryRecord:
    return PromptHistoryRecord(
        id=int(row.id),
        user_id=row.user_id,
        message=row.message,
        ai_response=row.ai_response,
        tool_type=row.tool_type,
        created_at=row.created_at,
    )


def _check_fields(fields: Mapping[str, Any]) -> None:
    unknown = set(fields) - UPDATABLE_PROFILE_FIELDS
    if unknown:
        raise ValueError(f"Unsupported profile fields: {', '.join(sorted(unknown))}")


class SqlProfileStore:
    """ProfileStore backed by SQLAlchemy sessions."""

    def __init__(self, session_factory: Callable[[], Session], *, free_prompt_limit: int = FREE_PROMPT_LIMIT) -> None:
        self._session_factory = session_factory
        self._free_prompt_limit = free_prompt_limit

    @contextmanager
    def _session(self, operation: str, user_id: str) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.warning("profile_store.%s failed for user=%s: %s", operation, user_id, exc)
            raise StoreError(f"Profile store {operation} failed.", context={"operation": operation}) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_profile(self, user_id: str) -> Optional[ProfileState]:
        with self._session("get_profile", user_id) as session:
            row = session.get(Profile, user_id)
            return _to_state(row) if row is not None else None

    def ensure_profile(self, user_id: str, *, name: Optional[str] = None, email: Optional[str] = None) -> ProfileState:
        existing = self.get_profile(user_id)
        if existing is not None:
            return existing
        display_name = name or (email.split("@")[0] if email else None)
        try:
            with self._session("ensure_profile", user_id) as session:
                row = Profile(
                    id=user_id,
                    name=display_name,
                    email=email,
                    prompt_count=0,
                    total_prompts_limit=self._free_prompt_limit,
                    is_premium=False,
                    has_prompt_history_access=False,
                )
                session.add(row)
                session.flush()
                created = _to_state(row)
            logger.info("Created profile for user=%s", user_id)
            return created
        except StoreError as exc:
            # concurrent first sight: another request inserted the row
            if not isinstance(exc.__cause__, IntegrityError):
                raise
        profile = self.get_profile(user_id)
        if profile is None:
            raise StoreError("Profile could not be created.", context={"operation": "ensure_profile"})
        return profile

    def update_profile(
        self,
        user_id: str,
        fields: Mapping[str, Any],
        *,
        expected: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        if not fields:
            return True
        _check_fields(fields)
        statement = update(Profile).where(Profile.id == user_id)
        for column, value in (expected or {}).items():
            attr = getattr(Profile, column)
            statement = statement.where(attr.is_(None) if value is None else attr == value)
        statement = statement.values(**dict(fields))
        with self._session("update_profile", user_id) as session:
            result = session.execute(statement.execution_options(synchronize_session=False))
            return (result.rowcount or 0) > 0

    def increment_prompt_count(self, user_id: str, by: int = 1) -> int:
        with self._session("increment_prompt_count", user_id) as session:
            result = session.execute(
                update(Profile)
                .where(Profile.id == user_id)
                .values(prompt_count=Profile.prompt_count + by)
                .execution_options(synchronize_session=False)
            )
            if not result.rowcount:
                raise ProfileNotFound("Profile not found.", context={"userId": user_id})
            new_count = session.execute(select(Profile.prompt_count).where(Profile.id == user_id)).scalar_one()
            return int(new_count)

    def count_prompt_history(
        self,
        user_id: str,
        *,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> int:
        inner = select(PromptHistoryEntry.id).where(PromptHistoryEntry.user_id == user_id)
        if since is not None:
            inner = inner.where(PromptHistoryEntry.created_at >= since)
        if limit:
            inner = inner.order_by(PromptHistoryEntry.created_at.desc()).limit(limit)
        with self._session("count_prompt_history", user_id) as session:
            count = session.execute(select(func.count()).select_from(inner.subquery())).scalar_one()
            return int(count or 0)

    def list_prompt_history(self, user_id: str, *, limit: int = 50, offset: int = 0) -> List[PromptHistoryRecord]:
        statement = (
            select(PromptHistoryEntry)
            .where(PromptHistoryEntry.user_id == user_id)
            .order_by(PromptHistoryEntry.created_at.desc(), PromptHistoryEntry.id.desc())
            .offset(max(offset, 0))
            .limit(max(limit, 1))
        )
        with self._session("list_prompt_history", user_id) as session:
            return [_to_history(row) for row in session.execute(statement).scalars()]

    def insert_prompt_history(self, user_id: str, message: str, ai_response: str, tool_type: str) -> PromptHistoryRecord:
        with self._session("insert_prompt_history", user_id) as session:
            row = PromptHistoryEntry(user_id=user_id, message=message, ai_response=ai_response, tool_type=tool_type)
            session.add(row)
            session.flush()
            return _to_history(row)


__all__ = [
    "ProfileState",
    "ProfileStore",
    "PromptHistoryRecord",
    "SqlProfileStore",
    "UPDATABLE_PROFILE_FIELDS",
]
