"""Content providers consumed by the batch engine.

A provider turns a topic into an outline and an outline into finished
content. The engine only relies on the :class:`ContentProvider` protocol, so
anything with the two coroutine methods can be registered, including test
doubles.
"""

from __future__ import annotations

import asyncio
import logging
import random
import textwrap
from typing import Any, Dict, Iterable, Mapping, Protocol, Sequence, runtime_checkable

from langchain_core.messages import BaseMessage

from ..llm.cost import CostTracker
from ..llm.providers import LangChainChatProvider, ProviderError
from .models import RunConfig
from .prompts import build_content_messages, build_outline_messages

__all__ = [
    "ContentProvider",
    "LangChainContentProvider",
    "MockContentProvider",
    "ProviderRegistry",
    "UnknownProviderError",
    "extract_text",
]

logger = logging.getLogger(__name__)

OUTLINE_PHASE = "outline"
CONTENT_PHASE = "content"


@runtime_checkable
class ContentProvider(Protocol):
    """Protocol for pluggable outline/content generators."""

    name: str

    async def generate_outline(self, config: RunConfig, topic: str) -> str:  # pragma: no cover - interface
        ...

    async def generate_content(self, config: RunConfig, topic: str, outline: str) -> str:  # pragma: no cover - interface
        ...


class UnknownProviderError(KeyError):
    """Raised when a run names a provider that was never registered."""


class ProviderRegistry:
    """Name → provider lookup handed to the engine."""

    def __init__(self, providers: Iterable[ContentProvider] = ()) -> None:
        self._providers: Dict[str, ContentProvider] = {}
        for provider in providers:
            self.register(provider)

    def register(self, provider: ContentProvider, *, name: str | None = None) -> None:
        key = (name or provider.name).lower()
        self._providers[key] = provider

    def get(self, name: str) -> ContentProvider:
        try:
            return self._providers[name.lower()]
        except KeyError:
            raise UnknownProviderError(
                f"Provider '{name}' is not registered (available: {', '.join(sorted(self._providers)) or 'none'})"
            ) from None

    def require(self, config: RunConfig) -> None:
        self.get(config.outline_provider_name)
        self.get(config.content_provider)

    def names(self) -> list[str]:
        return sorted(self._providers)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._providers


def extract_text(response: Any) -> str:
    """Flatten a chat response into plain text."""

    content = getattr(response, "content", response)
    if isinstance(content, list):
        pieces: list[str] = []
        for segment in content:
            if isinstance(segment, Mapping):
                pieces.append(str(segment.get("text", "")))
            else:
                pieces.append(str(segment))
        return "".join(pieces).strip()
    return str(content or "").strip()


def _usage_of(response: Any) -> tuple[int, int]:
    usage = getattr(response, "usage_metadata", None) or {}
    if not usage:
        response_meta = getattr(response, "response_metadata", None) or {}
        maybe_usage = response_meta.get("token_usage") if isinstance(response_meta, Mapping) else None
        usage = maybe_usage if isinstance(maybe_usage, Mapping) else {}
    prompt_tokens = int(usage.get("input_tokens") or usage.get("prompt_tokens") or 0)
    completion_tokens = int(usage.get("output_tokens") or usage.get("completion_tokens") or 0)
    return prompt_tokens, completion_tokens


class LangChainContentProvider:
    """Generate outlines and content through a LangChain chat model."""

    def __init__(
        self,
        chat: LangChainChatProvider,
        *,
        name: str = "openai",
        cost_tracker: CostTracker | None = None,
        outline_temperature: float = 0.3,
    ) -> None:
        self.name = name
        self._chat = chat
        self._cost_tracker = cost_tracker
        self._outline_temperature = outline_temperature
        self._variants: Dict[tuple[str, float], LangChainChatProvider] = {}

    async def generate_outline(self, config: RunConfig, topic: str) -> str:
        messages = build_outline_messages(topic, instructions=config.outline_instructions)
        chat = self._chat_for(config.outline_model, self._outline_temperature)
        return await self._complete(chat, messages, phase=OUTLINE_PHASE)

    async def generate_content(self, config: RunConfig, topic: str, outline: str) -> str:
        messages = build_content_messages(
            topic,
            outline,
            config.mode,
            instructions=config.content_instructions,
        )
        chat = self._chat_for(config.content_model, self._chat.settings.temperature)
        return await self._complete(chat, messages, phase=CONTENT_PHASE)

    def _chat_for(self, model: str | None, temperature: float) -> LangChainChatProvider:
        resolved_model = model or self._chat.model
        if resolved_model == self._chat.model and temperature == self._chat.settings.temperature:
            return self._chat
        key = (resolved_model, temperature)
        if key not in self._variants:
            self._variants[key] = self._chat.with_model(resolved_model, temperature=temperature)
        return self._variants[key]

    async def _complete(self, chat: LangChainChatProvider, messages: Sequence[BaseMessage], *, phase: str) -> str:
        if self._cost_tracker is not None:
            self._cost_tracker.check_budget()
        response = await chat.ainvoke(messages)
        text = extract_text(response)
        if self._cost_tracker is not None:
            prompt_tokens, completion_tokens = _usage_of(response)
            record = self._cost_tracker.record(phase, chat.model, prompt_tokens, completion_tokens)
            logger.debug(
                "%s call on %s used %d/%d tokens ($%.6f)",
                phase,
                chat.model,
                record.prompt_tokens,
                record.completion_tokens,
                record.cost_usd,
            )
        if not text:
            raise ProviderError(f"Model '{chat.model}' returned an empty {phase}.")
        return text


class MockContentProvider:
    """Deterministic provider used for testing and offline development."""

    def __init__(self, *, name: str = "mock", seed: int | None = None, latency: float = 0.0) -> None:
        self.name = name
        self._rng = random.Random(seed or 0)
        self._latency = latency

    async def generate_outline(self, config: RunConfig, topic: str) -> str:
        await self._simulate_latency()
        concepts = [
            "Why it exists",
            "Core mechanism",
            "Key structures and their jobs",
            "Regulation and control",
            "Failure modes",
            "High-yield connections",
        ]
        picked = concepts[:3] + self._rng.sample(concepts[3:], k=2)
        lines = [f"# {topic}"] + [f"## {idx}. {title}" for idx, title in enumerate(picked, start=1)]
        if config.outline_instructions:
            lines.append(f"<!-- instructions: {config.outline_instructions.strip()} -->")
        return "\n".join(lines)

    async def generate_content(self, config: RunConfig, topic: str, outline: str) -> str:
        await self._simulate_latency()
        headings = [line.lstrip("#").strip() for line in outline.splitlines() if line.startswith("## ")]
        sections = [f"# {topic}", f"_Mode: {config.mode.value}_"]
        for heading in headings or ["Overview"]:
            sections.append(
                textwrap.dedent(
                    f"""
                    ## {heading}

                    {topic} depends on this piece; without it the rest of the system stalls.
                    """
                ).strip()
            )
        return "\n\n".join(sections)

    async def _simulate_latency(self) -> None:
        if self._latency > 0:
            await asyncio.sleep(self._latency)
