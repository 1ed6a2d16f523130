from datetime import datetime, timedelta, timezone

from core.quota_constants import (
    ALLOWANCE_RESET_ROLLING_30D,
    UPGRADE_POLICY_ADDITIVE,
    QuotaSettings,
)
from services.profile_store import ProfileState
from services.quota_policy import QuotaPolicy


def _profile(**fields) -> ProfileState:
    return ProfileState(id="user-1", **fields)


def test_upgrade_from_free_uses_baseline_plus_bonus():
    policy = QuotaPolicy()
    assert policy.upgrade_limit(_profile(total_prompts_limit=5, prompt_count=5)) == 155


def test_upgrade_normalises_drifted_free_limit():
    policy = QuotaPolicy()
    # a non-premium row with a stale limit still lands on 5 + 150
    assert policy.upgrade_limit(_profile(total_prompts_limit=40, is_premium=False)) == 155


def test_upgrade_on_premium_stacks_bonus():
    policy = QuotaPolicy()
    assert policy.upgrade_limit(_profile(total_prompts_limit=155, is_premium=True)) == 305


def test_additive_policy_adds_to_current_limit():
    policy = QuotaPolicy(QuotaSettings(upgrade_policy=UPGRADE_POLICY_ADDITIVE))
    assert policy.upgrade_limit(_profile(total_prompts_limit=40)) == 190


def test_upgrade_fields_grant_premium_and_history():
    fields = QuotaPolicy().upgrade_fields(_profile(), "pi_1")

    assert fields == {
        "total_prompts_limit": 155,
        "is_premium": True,
        "has_prompt_history_access": True,
        "last_upgrade_payment_intent_id": "pi_1",
    }


def test_upgrade_fields_can_reset_usage():
    policy = QuotaPolicy(QuotaSettings(reset_prompt_count_on_upgrade=True))
    assert policy.upgrade_fields(_profile(prompt_count=5), "pi_1")["prompt_count"] == 0


def test_remaining_never_goes_negative():
    assert QuotaPolicy.remaining(3, 5) == 2
    assert QuotaPolicy.remaining(9, 5) == 0


def test_allowance_reset_disabled_by_default():
    policy = QuotaPolicy()
    old = datetime.now(timezone.utc) - timedelta(days=90)
    assert policy.allowance_reset_fields(_profile(allowance_period_started_at=old)) is None
    assert policy.history_window_start(_profile(allowance_period_started_at=old)) is None


def test_rolling_allowance_starts_then_rolls_over():
    policy = QuotaPolicy(QuotaSettings(allowance_reset=ALLOWANCE_RESET_ROLLING_30D))
    now = datetime(2026, 3, 1, tzinfo=timezone.utc)

    assert policy.allowance_reset_fields(_profile(), now=now) == {"allowance_period_started_at": now}

    recent = _profile(allowance_period_started_at=now - timedelta(days=10), prompt_count=5)
    assert policy.allowance_reset_fields(recent, now=now) is None

    naive_old = (now - timedelta(days=31)).replace(tzinfo=None)
    expired = _profile(allowance_period_started_at=naive_old, prompt_count=5)
    assert policy.allowance_reset_fields(expired, now=now) == {"prompt_count": 0, "allowance_period_started_at": now}


def test_rolling_allowance_never_applies_to_premium():
    policy = QuotaPolicy(QuotaSettings(allowance_reset=ALLOWANCE_RESET_ROLLING_30D))
    old = datetime.now(timezone.utc) - timedelta(days=90)
    premium = _profile(is_premium=True, allowance_period_started_at=old)

    assert policy.allowance_reset_fields(premium) is None
    assert policy.history_window_start(premium) is None


def test_premium_lapse_only_when_enabled():
    exhausted = _profile(is_premium=True, total_prompts_limit=155, prompt_count=155)

    assert QuotaPolicy().exhausted_fields(exhausted, 155) is None
    lapsing = QuotaPolicy(QuotaSettings(revert_premium_when_exhausted=True))
    assert lapsing.exhausted_fields(exhausted, 155) == {"is_premium": False}
    assert lapsing.exhausted_fields(exhausted, 100) is None
