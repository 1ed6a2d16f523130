import asyncio
from types import SimpleNamespace
from typing import List, Optional, Tuple

import pytest

from services.prompt_generation import PromptGenerationService
from services.quota_errors import (
    AuthRequired,
    GenerationCancelled,
    GenerationTimeout,
    QuotaExceeded,
    UpstreamGenerationError,
)
from services.session_cache import SessionCache


class _FakeGenerator:
    def __init__(self, *, text: str = "## Prompt", delay: float = 0.0, error: Optional[Exception] = None) -> None:
        self.text = text
        self.delay = delay
        self.error = error
        self.calls: List[Tuple[str, str]] = []
        self.cancelled = False

    async def generate_tool_prompt(self, idea: str, tool: str) -> str:
        self.calls.append((idea, tool))
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        return f"{self.text} for {tool}"


def _service(profile_store, reconciler, generator, **kwargs) -> PromptGenerationService:
    return PromptGenerationService(profile_store, reconciler, generator, **kwargs)


def _user(user_id: str = "user-free"):
    return SimpleNamespace(id=user_id, email="maker@example.com")


def test_generation_records_history_and_usage(profile_store, reconciler, free_user):
    cache = SessionCache(reconciler)
    generator = _FakeGenerator()
    service = _service(profile_store, reconciler, generator, cache=cache)

    result = asyncio.run(service.generate(_user(), "  A habit tracker  ", "Cursor"))

    assert result.text == "## Prompt for Cursor"
    assert result.persisted is True
    assert result.prompt_count == 1
    assert result.history_id is not None
    assert result.quota is not None and result.quota.prompt_count == 1
    assert generator.calls == [("A habit tracker", "Cursor")]
    assert profile_store.history[0].message == "A habit tracker"
    assert profile_store.history[0].tool_type == "Cursor"


def test_generation_creates_profile_on_first_use(profile_store, reconciler):
    service = _service(profile_store, reconciler, _FakeGenerator())

    result = asyncio.run(service.generate(_user("brand-new"), "idea", "V0"))

    assert result.prompt_count == 1
    assert profile_store.get_profile("brand-new").total_prompts_limit == 5


def test_anonymous_request_is_rejected_without_side_effects(profile_store, reconciler):
    generator = _FakeGenerator()
    service = _service(profile_store, reconciler, generator)

    with pytest.raises(AuthRequired):
        asyncio.run(service.generate(None, "idea", "V0"))

    assert generator.calls == []
    assert profile_store.calls == []


def test_quota_gate_runs_before_llm_call(profile_store, reconciler):
    profile_store.seed("user-free", prompt_count=5)
    generator = _FakeGenerator()
    service = _service(profile_store, reconciler, generator)

    with pytest.raises(QuotaExceeded):
        asyncio.run(service.generate(_user(), "idea", "Bolt"))

    assert generator.calls == []
    assert profile_store.history == []


def test_timeout_leaves_usage_untouched(profile_store, reconciler, free_user):
    generator = _FakeGenerator(delay=5)
    service = _service(profile_store, reconciler, generator)

    with pytest.raises(GenerationTimeout) as excinfo:
        asyncio.run(service.generate(_user(), "idea", "Tempo", timeout=1))

    assert excinfo.value.status_code == 504
    assert generator.cancelled is True
    assert profile_store.get_profile(free_user.id).prompt_count == 0
    assert profile_store.history == []


def test_user_cancellation_leaves_usage_untouched(profile_store, reconciler, free_user):
    generator = _FakeGenerator(delay=5)
    service = _service(profile_store, reconciler, generator)

    async def _run() -> None:
        cancel = asyncio.Event()
        task = asyncio.create_task(service.generate(_user(), "idea", "Lovable", cancel=cancel))
        await asyncio.sleep(0.05)
        cancel.set()
        await task

    with pytest.raises(GenerationCancelled):
        asyncio.run(_run())

    assert profile_store.get_profile(free_user.id).prompt_count == 0
    assert profile_store.history == []


def test_upstream_failure_costs_nothing(profile_store, reconciler, free_user):
    generator = _FakeGenerator(error=UpstreamGenerationError("LLM call failed."))
    service = _service(profile_store, reconciler, generator)

    with pytest.raises(UpstreamGenerationError):
        asyncio.run(service.generate(_user(), "idea", "V0"))

    assert profile_store.get_profile(free_user.id).prompt_count == 0
    assert profile_store.history == []


def test_history_failure_still_returns_text(profile_store, reconciler, free_user):
    profile_store.fail_ops.add("insert_prompt_history")
    service = _service(profile_store, reconciler, _FakeGenerator())

    result = asyncio.run(service.generate(_user(), "idea", "V0"))

    assert result.text.startswith("## Prompt")
    assert result.persisted is False
    assert result.history_id is None
    assert result.prompt_count == 1


def test_increment_failure_is_covered_by_history_count(profile_store, reconciler, free_user):
    profile_store.fail_ops.add("increment_prompt_count")
    service = _service(profile_store, reconciler, _FakeGenerator())

    result = asyncio.run(service.generate(_user(), "idea", "V0"))

    assert result.persisted is False
    assert profile_store.get_profile(free_user.id).prompt_count == 0
    assert reconciler.reconcile_count(free_user.id) == 1


def test_unknown_tool_type_is_rejected(profile_store, reconciler, free_user):
    service = _service(profile_store, reconciler, _FakeGenerator())

    with pytest.raises(ValueError):
        asyncio.run(service.generate(_user(), "idea", "Photoshop"))
