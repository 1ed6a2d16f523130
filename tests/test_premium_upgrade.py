import threading
from decimal import Decimal

import pytest

from core.quota_constants import UPGRADE_POLICY_ADDITIVE, QuotaSettings
from services.premium_upgrade import (
    SOURCE_CLIENT_POLL,
    PremiumUpgradeProcessor,
    UpgradeState,
)
from services.quota_policy import QuotaPolicy
from services.user_locks import KeyedLock


@pytest.fixture()
def processor(profile_store, ledger, policy, locks) -> PremiumUpgradeProcessor:
    return PremiumUpgradeProcessor(profile_store, ledger, policy=policy, locks=locks)


def test_first_payment_upgrades_exhausted_free_user(processor, profile_store, ledger):
    profile_store.seed("user-1", prompt_count=5, total_prompts_limit=5)

    result = processor.apply_upgrade("user-1", "pi_1")

    assert result.success is True
    assert result.already_applied is False
    assert result.new_limit == 155
    assert result.state is UpgradeState.DONE
    assert result.trail == [
        UpgradeState.INITIATED,
        UpgradeState.CONFIRMED_BY_PROCESSOR,
        UpgradeState.PROFILE_UPDATED,
        UpgradeState.PAYMENT_RECORDED,
        UpgradeState.DONE,
    ]
    profile = profile_store.get_profile("user-1")
    assert profile.total_prompts_limit == 155
    assert profile.is_premium is True
    assert profile.has_prompt_history_access is True
    assert profile.prompt_count == 5
    assert ledger.entries["pi_1"].amount == Decimal("3.99")


def test_second_purchase_stacks_on_premium_limit(processor, profile_store):
    profile_store.seed("user-1", prompt_count=20, total_prompts_limit=155, is_premium=True, has_prompt_history_access=True)

    result = processor.apply_upgrade("user-1", "pi_2")

    assert result.new_limit == 305
    assert profile_store.get_profile("user-1").total_prompts_limit == 305


def test_repeat_delivery_is_a_no_op(processor, profile_store, ledger):
    profile_store.seed("user-1", prompt_count=5)

    first = processor.apply_upgrade("user-1", "pi_1")
    second = processor.apply_upgrade("user-1", "pi_1", source=SOURCE_CLIENT_POLL)

    assert first.already_applied is False
    assert second.success is True
    assert second.already_applied is True
    assert second.new_limit == 155
    assert profile_store.get_profile("user-1").total_prompts_limit == 155
    assert len(ledger.entries) == 1


def test_concurrent_webhook_and_poll_grant_once(processor, profile_store, ledger):
    profile_store.seed("user-1", prompt_count=5)
    barrier = threading.Barrier(4)
    results = []

    def _apply(source: str) -> None:
        barrier.wait()
        results.append(processor.apply_upgrade("user-1", "pi_race", source=source))

    threads = [threading.Thread(target=_apply, args=(source,)) for source in ("webhook", "client_poll") * 2]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert all(result.success for result in results)
    assert sum(1 for result in results if not result.already_applied) == 1
    assert profile_store.get_profile("user-1").total_prompts_limit == 155
    assert list(ledger.entries) == ["pi_race"]


def test_ledger_failure_then_retry_does_not_double_grant(processor, profile_store, ledger):
    profile_store.seed("user-1", prompt_count=5)
    ledger.fail_times["record_payment"] = 1

    failed = processor.apply_upgrade("user-1", "pi_1")

    assert failed.success is False
    assert failed.state is UpgradeState.FAILED
    assert failed.error_code == "store.unavailable"
    assert UpgradeState.PROFILE_UPDATED in failed.trail
    # the grant landed even though the ledger write did not
    assert profile_store.get_profile("user-1").total_prompts_limit == 155

    retried = processor.apply_upgrade("user-1", "pi_1")

    assert retried.success is True
    assert retried.new_limit == 155
    assert profile_store.get_profile("user-1").total_prompts_limit == 155
    assert "pi_1" in ledger.entries


def test_losing_ledger_race_keeps_the_grant(profile_store, ledger, policy):
    profile_store.seed("user-1", prompt_count=5)
    # separate locks model two worker processes sharing the same stores
    webhook_worker = PremiumUpgradeProcessor(profile_store, ledger, policy=policy, locks=KeyedLock())
    poll_worker = PremiumUpgradeProcessor(profile_store, ledger, policy=policy, locks=KeyedLock())
    original_record = ledger.record_payment
    poll_results = []

    def _poll_records_first(*args, **kwargs):
        if not poll_results:
            poll_results.append(poll_worker.apply_upgrade("user-1", "pi_1", source=SOURCE_CLIENT_POLL))
        return original_record(*args, **kwargs)

    ledger.record_payment = _poll_records_first

    result = webhook_worker.apply_upgrade("user-1", "pi_1")

    assert poll_results[0].success is True
    assert poll_results[0].already_applied is False
    assert result.success is True
    assert result.already_applied is True
    assert result.new_limit == 155
    profile = profile_store.get_profile("user-1")
    assert profile.total_prompts_limit == 155
    assert profile.is_premium is True
    assert profile.has_prompt_history_access is True
    assert list(ledger.entries) == ["pi_1"]


def test_missing_profile_fails_without_ledger_write(processor, ledger):
    result = processor.apply_upgrade("ghost", "pi_1")

    assert result.success is False
    assert result.state is UpgradeState.FAILED
    assert result.error_code == "store.profile_not_found"
    assert ledger.entries == {}


def test_store_outage_is_reported_not_raised(processor, profile_store, ledger):
    profile_store.seed("user-1")
    ledger.fail_ops.add("has_payment")

    result = processor.apply_upgrade("user-1", "pi_1")

    assert result.success is False
    assert result.trail == [UpgradeState.INITIATED, UpgradeState.FAILED]
    assert profile_store.get_profile("user-1").total_prompts_limit == 5


def test_missing_identifiers_are_rejected(processor):
    result = processor.apply_upgrade("", "pi_1")

    assert result.success is False
    assert result.error_code == "payments.invalid_request"


def test_additive_policy_is_honoured(profile_store, ledger):
    policy = QuotaPolicy(QuotaSettings(upgrade_policy=UPGRADE_POLICY_ADDITIVE))
    processor = PremiumUpgradeProcessor(profile_store, ledger, policy=policy)
    profile_store.seed("user-1", total_prompts_limit=12)

    assert processor.apply_upgrade("user-1", "pi_1").new_limit == 162


def test_result_to_dict_uses_api_field_names(processor, profile_store):
    profile_store.seed("user-1")

    payload = processor.apply_upgrade("user-1", "pi_1").to_dict()

    assert payload["success"] is True
    assert payload["newLimit"] == 155
    assert payload["isPremium"] is True
    assert payload["hasPromptHistoryAccess"] is True
    assert payload["state"] == "done"
