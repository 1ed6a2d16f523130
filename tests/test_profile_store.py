from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from models.prompt_history import PromptHistoryEntry
from services.profile_store import SqlProfileStore
from services.quota_errors import ProfileNotFound


def test_ensure_profile_creates_free_defaults(sql_profile_store: SqlProfileStore):
    profile = sql_profile_store.ensure_profile("user-1", email="maker@example.com")

    assert profile.id == "user-1"
    assert profile.name == "maker"
    assert profile.prompt_count == 0
    assert profile.total_prompts_limit == 5
    assert profile.is_premium is False
    assert profile.has_prompt_history_access is False


def test_ensure_profile_is_idempotent(sql_profile_store: SqlProfileStore):
    first = sql_profile_store.ensure_profile("user-1", name="First")
    sql_profile_store.update_profile("user-1", {"prompt_count": 3})
    second = sql_profile_store.ensure_profile("user-1", name="Second")

    assert second.name == first.name == "First"
    assert second.prompt_count == 3


def test_get_profile_returns_none_for_unknown_user(sql_profile_store: SqlProfileStore):
    assert sql_profile_store.get_profile("missing") is None


def test_update_profile_respects_expected_values(sql_profile_store: SqlProfileStore):
    sql_profile_store.ensure_profile("user-1")

    applied = sql_profile_store.update_profile(
        "user-1",
        {"total_prompts_limit": 155, "is_premium": True},
        expected={"total_prompts_limit": 5, "is_premium": False},
    )
    stale = sql_profile_store.update_profile(
        "user-1",
        {"total_prompts_limit": 999},
        expected={"total_prompts_limit": 5},
    )

    profile = sql_profile_store.get_profile("user-1")
    assert applied is True
    assert stale is False
    assert profile.total_prompts_limit == 155
    assert profile.is_premium is True


def test_update_profile_expected_none_matches_null_column(sql_profile_store: SqlProfileStore):
    sql_profile_store.ensure_profile("user-1")

    assert sql_profile_store.update_profile(
        "user-1",
        {"last_upgrade_payment_intent_id": "pi_1"},
        expected={"last_upgrade_payment_intent_id": None},
    )
    assert not sql_profile_store.update_profile(
        "user-1",
        {"last_upgrade_payment_intent_id": "pi_2"},
        expected={"last_upgrade_payment_intent_id": None},
    )


def test_update_profile_rejects_unknown_fields(sql_profile_store: SqlProfileStore):
    sql_profile_store.ensure_profile("user-1")

    with pytest.raises(ValueError):
        sql_profile_store.update_profile("user-1", {"id": "someone-else"})


def test_increment_prompt_count_is_relative(sql_profile_store: SqlProfileStore):
    sql_profile_store.ensure_profile("user-1")

    assert sql_profile_store.increment_prompt_count("user-1") == 1
    assert sql_profile_store.increment_prompt_count("user-1") == 2
    assert sql_profile_store.increment_prompt_count("user-1", by=3) == 5
    assert sql_profile_store.get_profile("user-1").prompt_count == 5


def test_increment_prompt_count_unknown_user(sql_profile_store: SqlProfileStore):
    with pytest.raises(ProfileNotFound):
        sql_profile_store.increment_prompt_count("ghost")


def test_prompt_history_listing_and_counts(sql_profile_store: SqlProfileStore, session_factory):
    sql_profile_store.ensure_profile("user-1")
    sql_profile_store.ensure_profile("user-2")
    for index in range(3):
        sql_profile_store.insert_prompt_history("user-1", f"idea {index}", f"prompt {index}", "Cursor")
    sql_profile_store.insert_prompt_history("user-2", "other", "other", "V0")

    old = datetime.now(timezone.utc) - timedelta(days=40)
    with session_factory() as session:
        session.execute(
            update(PromptHistoryEntry)
            .where(PromptHistoryEntry.message == "idea 0")
            .values(created_at=old)
        )
        session.commit()

    history = sql_profile_store.list_prompt_history("user-1")
    assert [row.message for row in history] == ["idea 2", "idea 1", "idea 0"]
    assert sql_profile_store.list_prompt_history("user-1", limit=1, offset=1)[0].message == "idea 1"

    assert sql_profile_store.count_prompt_history("user-1") == 3
    assert sql_profile_store.count_prompt_history("user-1", limit=2) == 2
    since = datetime.now(timezone.utc) - timedelta(days=30)
    assert sql_profile_store.count_prompt_history("user-1", since=since) == 2
    assert sql_profile_store.count_prompt_history("user-2") == 1
