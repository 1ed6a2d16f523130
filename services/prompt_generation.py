"""Quota-gated prompt generation.

Order of operations per request: quota gate, LLM call, history insert, atomic
increment, cache refresh. Nothing is written until the LLM call returned text,
so a timed-out or cancelled generation costs the user nothing.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from core.quota_constants import ToolType
from services import metrics
from services.profile_store import ProfileStore
from services.quota_errors import (
    AuthRequired,
    GenerationCancelled,
    GenerationTimeout,
    StoreError,
    UpstreamGenerationError,
)
from services.quota_reconciler import QuotaReconciler
from services.session_cache import CachedQuota, SessionCache

logger = logging.getLogger(__name__)

MIN_TIMEOUT_SECONDS = 1.0
MAX_TIMEOUT_SECONDS = 120.0


class PromptGenerator(Protocol):
    async def generate_tool_prompt(self, idea: str, tool: str) -> str: ...


@dataclass(slots=True)
class GenerationResult:
    user_id: str
    tool_type: str
    idea: str
    text: str
    persisted: bool = True
    history_id: Optional[int] = None
    prompt_count: Optional[int] = None
    quota: Optional[CachedQuota] = None
    persist_error: Optional[str] = None


def _user_identity(user: Any) -> tuple[Optional[str], Optional[str]]:
    if user is None:
        return None, None
    if isinstance(user, str):
        return user or None, None
    return getattr(user, "id", None), getattr(user, "email", None)


def _normalize_tool(tool_type: Any) -> str:
    if isinstance(tool_type, ToolType):
        return tool_type.value
    try:
        return ToolType(str(tool_type)).value
    except ValueError:
        raise ValueError(f"Unsupported tool type: {tool_type!r}") from None


class PromptGenerationService:
    def __init__(
        self,
        store: ProfileStore,
        reconciler: QuotaReconciler,
        generator: PromptGenerator,
        *,
        cache: Optional[SessionCache] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self._store = store
        self._reconciler = reconciler
        self._generator = generator
        self._cache = cache
        default_timeout = timeout_seconds or reconciler.policy.settings.generation_timeout_seconds
        self._timeout = self._clamp_timeout(default_timeout)

    @staticmethod
    def _clamp_timeout(value: float) -> float:
        return min(max(float(value), MIN_TIMEOUT_SECONDS), MAX_TIMEOUT_SECONDS)

    async def generate(
        self,
        user: Any,
        idea: str,
        tool_type: Any,
        *,
        timeout: Optional[float] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> GenerationResult:
        user_id, email = _user_identity(user)
        if not user_id:
            raise AuthRequired()
        idea = (idea or "").strip()
        if not idea:
            raise ValueError("Describe your product idea first.")
        tool = _normalize_tool(tool_type)

        await asyncio.to_thread(self._store.ensure_profile, user_id, email=email)
        await asyncio.to_thread(self._reconciler.ensure_can_generate, user_id)

        text = await self._call_llm(user_id, idea, tool, timeout=timeout, cancel=cancel)
        result = GenerationResult(user_id=user_id, tool_type=tool, idea=idea, text=text)
        await asyncio.to_thread(self._persist, result)
        if self._cache is not None:
            try:
                result.quota = await asyncio.to_thread(self._cache.force_refresh, user_id)
            except StoreError:
                logger.warning("Quota refresh after generation failed for user=%s", user_id)
        return result

    async def _call_llm(
        self,
        user_id: str,
        idea: str,
        tool: str,
        *,
        timeout: Optional[float],
        cancel: Optional[asyncio.Event],
    ) -> str:
        limit = self._clamp_timeout(timeout) if timeout is not None else self._timeout
        started = time.perf_counter()
        call = asyncio.ensure_future(self._generator.generate_tool_prompt(idea, tool))
        waiters = {call}
        cancel_wait: Optional[asyncio.Future[Any]] = None
        if cancel is not None:
            cancel_wait = asyncio.ensure_future(cancel.wait())
            waiters.add(cancel_wait)
        try:
            done, _ = await asyncio.wait(waiters, timeout=limit, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            call.cancel()
            metrics.record_generation(tool, "cancelled")
            raise
        finally:
            if cancel_wait is not None and not cancel_wait.done():
                cancel_wait.cancel()

        if call not in done:
            call.cancel()
            elapsed = time.perf_counter() - started
            if cancel_wait is not None and cancel_wait in done:
                metrics.record_generation(tool, "cancelled", seconds=elapsed)
                logger.info("Generation cancelled by user=%s after %.1fs", user_id, elapsed)
                raise GenerationCancelled("Generation was cancelled.")
            metrics.record_generation(tool, "timeout", seconds=elapsed)
            logger.warning("Generation timed out for user=%s after %.1fs", user_id, elapsed)
            raise GenerationTimeout("The AI service took too long to respond. Please try again.")

        try:
            text = call.result()
        except UpstreamGenerationError:
            metrics.record_generation(tool, "failed", seconds=time.perf_counter() - started)
            raise
        metrics.record_generation(tool, "succeeded", seconds=time.perf_counter() - started)
        return text

    def _persist(self, result: GenerationResult) -> None:
        """History insert then increment. Either failing leaves the text deliverable."""
        user_id = result.user_id
        errors = []
        try:
            record = self._store.insert_prompt_history(user_id, result.idea, result.text, result.tool_type)
            result.history_id = record.id
        except StoreError as exc:
            errors.append(exc.message)
            logger.error("Prompt history insert failed for user=%s", user_id, exc_info=True)
        try:
            result.prompt_count = self._reconciler.increment_after_generation(user_id)
        except StoreError as exc:
            errors.append(exc.message)
            logger.error("prompt_count increment failed for user=%s", user_id, exc_info=True)
        if errors:
            result.persisted = False
            result.persist_error = "; ".join(errors)


__all__ = ["GenerationResult", "PromptGenerationService", "PromptGenerator"]
