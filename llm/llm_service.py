"""LLM interaction for turning product ideas into tool-specific prompts."""

from __future__ import annotations

import os
from typing import Any, Dict, List, Mapping, Optional, cast

import litellm
from langfuse import Langfuse

from core.env import env_float, env_int, env_str
from core.logging import get_logger
from llm.prompts import tool_prompt
from services.quota_errors import UpstreamGenerationError

logger = get_logger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1500


def _choice_content(response: Any) -> str:
    """Best-effort extraction of the first choice's message content from litellm responses."""
    response_any = cast(Any, response)
    choices = getattr(response_any, "choices", None)
    if choices is None and isinstance(response_any, Mapping):
        choices = response_any.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first_choice = choices[0]
    message = getattr(first_choice, "message", None)
    if message is None and isinstance(first_choice, Mapping):
        message = first_choice.get("message")
    if message is None:
        return ""
    if isinstance(message, Mapping):
        content = message.get("content")
    else:
        content = getattr(message, "content", None)
    return content if isinstance(content, str) else ""


def build_langfuse_client() -> Optional[Any]:
    if not (os.getenv("LANGFUSE_PUBLIC_KEY") and os.getenv("LANGFUSE_SECRET_KEY")):
        return None
    try:
        client = Langfuse(
            public_key=os.getenv("LANGFUSE_PUBLIC_KEY"),
            secret_key=os.getenv("LANGFUSE_SECRET_KEY"),
            host=os.getenv("LANGFUSE_HOST"),
        )
    except Exception as exc:
        logger.error("Failed to initialise Langfuse client: %s", exc, exc_info=True)
        return None
    logger.info("Langfuse client initialised.")
    return client


class LLMService:
    """Async wrapper over ``litellm.acompletion`` with optional Langfuse tracing."""

    def __init__(
        self,
        *,
        model: str = DEFAULT_MODEL,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        langfuse: Optional[Any] = None,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._langfuse = langfuse

    @classmethod
    def from_env(cls) -> "LLMService":
        return cls(
            model=env_str("LLM_PROMPT_MODEL", DEFAULT_MODEL) or DEFAULT_MODEL,
            temperature=env_float("LLM_PROMPT_TEMPERATURE", DEFAULT_TEMPERATURE),
            max_tokens=env_int("LLM_PROMPT_MAX_TOKENS", DEFAULT_MAX_TOKENS, minimum=1),
            langfuse=build_langfuse_client(),
        )

    def _record_langfuse_event(
        self,
        messages: List[Dict[str, Any]],
        *,
        response_content: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        if not self._langfuse:
            return
        try:
            user_input = str(messages[-1].get("content") or "") if messages else ""
            trace = self._langfuse.trace(name="tool_prompt", metadata={"model": self.model})
            trace.generation(
                name="completion",
                model=self.model,
                input=user_input[:2000],
                output=(response_content or "")[:2000],
                metadata={"error": error} if error else None,
            )
            if error:
                trace.update(status="error")
            self._langfuse.flush()
        except Exception as exc:
            logger.debug("Langfuse logging skipped: %s", exc, exc_info=True)

    async def complete(self, messages: List[Dict[str, Any]]) -> str:
        try:
            response = await litellm.acompletion(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except Exception as exc:
            logger.warning("LLM call failed for %s: %s", self.model, exc, exc_info=True)
            self._record_langfuse_event(messages, error=str(exc))
            raise UpstreamGenerationError(f"LLM call failed for model {self.model}.") from exc

        content = _choice_content(response).strip()
        self._record_langfuse_event(messages, response_content=content)
        if not content:
            raise UpstreamGenerationError("LLM returned an empty response.", code="generation.empty")
        return content

    async def generate_tool_prompt(self, idea: str, tool: str) -> str:
        return await self.complete(tool_prompt.get_prompt(idea, tool))


__all__ = ["DEFAULT_MODEL", "LLMService", "build_langfuse_client"]
