"""
Reply generation via an OpenAI-compatible chat completions API (OpenRouter).
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

from openai import AsyncOpenAI

from logging_setup import get_logger, Component
from .errors import GenerationError
from .retrieval import RetrievedSnippet
from .session_store import Turn

logger = get_logger(Component.LLM)

Message = Dict[str, str]


@dataclass(frozen=True)
class GenerationResult:
    text: str
    model: str = ""
    usage: Dict[str, Any] = field(default_factory=dict)


class Generator(Protocol):
    async def generate(self, messages: List[Message]) -> GenerationResult:
        ...

    async def aclose(self) -> None:
        ...


def build_messages(
    persona_prompt: str,
    history: Sequence[Turn],
    transcript: str,
    context: Sequence[RetrievedSnippet] = (),
) -> List[Message]:
    """
    Prompt layout: persona, optional context, prior turns in order, new utterance.
    """
    messages: List[Message] = [{"role": "system", "content": persona_prompt}]

    if context:
        notes = "\n".join(f"- {snippet.text}" for snippet in context)
        messages.append({
            "role": "system",
            "content": f"Relevant notes for this reply:\n{notes}",
        })

    for turn in history:
        messages.append({"role": "user", "content": turn.transcript})
        messages.append({"role": "assistant", "content": turn.reply})

    messages.append({"role": "user", "content": transcript})
    return messages


class ChatCompletionGenerator:
    """Generates short spoken replies with a chat completions model."""

    def __init__(
        self,
        client: AsyncOpenAI,
        *,
        model: str,
        max_tokens: int = 150,
        temperature: float = 0.7,
    ):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def generate(self, messages: List[Message]) -> GenerationResult:
        start = time.perf_counter()
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except Exception as e:
            logger.error(
                "LLM request failed",
                model=self.model,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise GenerationError(f"LLM request failed: {type(e).__name__}", reason="provider_error") from e

        text = ""
        if response.choices:
            text = (response.choices[0].message.content or "").strip()
        if not text:
            raise GenerationError("LLM returned an empty reply", reason="empty_reply")

        usage = _usage_dict(response.usage)
        logger.info(
            "LLM reply generated",
            model=response.model or self.model,
            prompt_messages=len(messages),
            reply_length=len(text),
            latency_ms=int((time.perf_counter() - start) * 1000),
            **usage,
        )
        return GenerationResult(text=text, model=response.model or self.model, usage=usage)

    async def aclose(self) -> None:
        await self.client.close()


def _usage_dict(usage: Optional[Any]) -> Dict[str, Any]:
    if usage is None:
        return {}
    return {
        "prompt_tokens": getattr(usage, "prompt_tokens", None),
        "completion_tokens": getattr(usage, "completion_tokens", None),
        "total_tokens": getattr(usage, "total_tokens", None),
    }
