"""Shared fixtures for the test suite."""
from __future__ import annotations

from typing import Any, Callable, Iterable

import pytest

from notebatch.llm.cost import CostTracker, ModelPricing
from notebatch.pipeline.models import RunConfig

ENV_VARS = {
    "NOTEBATCH_MODEL",
    "NOTEBATCH_OUTLINE_MODEL",
    "OPENAI_MODEL",
    "NOTEBATCH_API_KEY",
    "OPENAI_API_KEY",
    "GROQ_API_KEY",
    "GEMINI_API_KEY",
    "NOTEBATCH_BASE_URL",
    "OPENAI_BASE_URL",
    "NOTEBATCH_TEMPERATURE",
    "NOTEBATCH_MAX_TOKENS",
    "NOTEBATCH_TIMEOUT",
    "NOTEBATCH_MAX_RETRIES",
    "NOTEBATCH_BASE_DELAY",
    "NOTEBATCH_CIRCUIT_THRESHOLD",
    "NOTEBATCH_COOLDOWN",
    "NOTEBATCH_BUDGET_USD",
    "NOTEBATCH_BUDGET_WARN_RATIO",
    "NOTEBATCH_STATE_DIR",
}


@pytest.fixture(autouse=True)
def _clear_llm_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure configuration environment variables do not leak between tests."""

    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class DummyResponse:
    def __init__(self, content: Any, usage: dict[str, int] | None = None) -> None:
        self.content = content
        self.usage_metadata = usage or {}


@pytest.fixture
def dummy_chat_model(monkeypatch: pytest.MonkeyPatch):
    """Patch the LangChain chat client used by the provider abstraction.

    ``DummyChatModel.replies`` is consumed in order by ``invoke``/``ainvoke``;
    when empty, the last user message is echoed back.
    """

    from notebatch.llm import providers

    class DummyChatModel:
        replies: list[Any] = []
        instances: list["DummyChatModel"] = []

        def __init__(self, **kwargs: Any) -> None:
            self.kwargs = kwargs
            self.invocations: list[tuple[str, tuple[Iterable[Any], dict[str, Any]]]] = []
            DummyChatModel.instances.append(self)

        def _reply(self, messages: tuple[Any, ...]) -> Any:
            if DummyChatModel.replies:
                reply = DummyChatModel.replies.pop(0)
                if isinstance(reply, BaseException):
                    raise reply
                return reply
            last = messages[-1] if messages else ""
            return DummyResponse(getattr(last, "content", last), {"input_tokens": 10, "output_tokens": 20})

        def invoke(self, messages: Iterable[Any], **kwargs: Any) -> Any:
            captured = tuple(messages)
            self.invocations.append(("invoke", (captured, dict(kwargs))))
            return self._reply(captured)

        async def ainvoke(self, messages: Iterable[Any], **kwargs: Any) -> Any:
            captured = tuple(messages)
            self.invocations.append(("ainvoke", (captured, dict(kwargs))))
            return self._reply(captured)

    DummyChatModel.replies = []
    DummyChatModel.instances = []
    monkeypatch.setattr(providers, "ChatOpenAI", DummyChatModel)
    return DummyChatModel


@pytest.fixture
def dummy_cost_tracker() -> CostTracker:
    """Provide a cost tracker with deterministic pricing for tests."""

    pricing = {
        "stub-model": ModelPricing(prompt_per_1k=0.001, completion_per_1k=0.002),
        "alt-model": ModelPricing(prompt_per_1k=0.01, completion_per_1k=0.02),
    }
    return CostTracker(pricing=pricing, budget_limit=5.0, warn_ratio=0.5)


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []
        self.hooks: list[Callable[[float], None]] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        for hook in list(self.hooks):
            hook(delay)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


Step = Any  # a string result, an exception instance, or a callable(topic) -> str


class ScriptedProvider:
    """Content provider whose outline/content results follow a script.

    Each call pops the next step; when a script runs dry the provider
    succeeds with a deterministic text.
    """

    def __init__(
        self,
        name: str = "scripted",
        *,
        outlines: Iterable[Step] = (),
        contents: Iterable[Step] = (),
    ) -> None:
        self.name = name
        self.outline_script = list(outlines)
        self.content_script = list(contents)
        self.outline_calls: list[str] = []
        self.content_calls: list[tuple[str, str]] = []
        self.configs: list[RunConfig] = []

    async def generate_outline(self, config: RunConfig, topic: str) -> str:
        self.outline_calls.append(topic)
        self.configs.append(config)
        return self._play(self.outline_script, topic, f"# {topic}\n## 1. Basics")

    async def generate_content(self, config: RunConfig, topic: str, outline: str) -> str:
        self.content_calls.append((topic, outline))
        self.configs.append(config)
        return self._play(self.content_script, topic, f"Notes on {topic}")

    @staticmethod
    def _play(script: list[Step], topic: str, default: str) -> str:
        if not script:
            return default
        step = script.pop(0)
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            return step(topic)
        return step


class MemoryStore:
    """In-memory ``QueueStore`` recording every persisted snapshot."""

    def __init__(self, initial: list | None = None, *, fail_load: Exception | None = None) -> None:
        self.initial = initial
        self.fail_load = fail_load
        self.fail_save: Exception | None = None
        self.saved: list[list] = []
        self.artifacts: list = []
        self.breaker = None

    def load_queue(self):
        if self.fail_load is not None:
            raise self.fail_load
        return None if self.initial is None else list(self.initial)

    def save_queue(self, items) -> None:
        if self.fail_save is not None:
            raise self.fail_save
        self.saved.append(list(items))

    def save_artifact(self, artifact):
        from pathlib import Path

        self.artifacts.append(artifact)
        return Path(f"/memory/{artifact.id}.md")

    def load_breaker(self):
        return self.breaker

    def save_breaker(self, breaker) -> None:
        from notebatch.pipeline.breaker import CircuitBreaker

        self.breaker = CircuitBreaker(breaker.consecutive_failures, breaker.is_open)

    @property
    def last(self) -> list:
        return self.saved[-1] if self.saved else []


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def scripted_provider() -> type[ScriptedProvider]:
    return ScriptedProvider


@pytest.fixture
def store_factory() -> type[MemoryStore]:
    return MemoryStore
