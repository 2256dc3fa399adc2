"""Dataclass-driven configuration for the notebatch pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Iterable

from .paths import StatePathConfig
from .pipeline.breaker import CircuitBreaker
from .pipeline.policy import (
    DEFAULT_BASE_DELAY,
    DEFAULT_CIRCUIT_THRESHOLD,
    DEFAULT_MAX_ATTEMPTS,
    RetryPolicy,
)

__all__ = [
    "PROVIDER_PRESETS",
    "BudgetConfig",
    "EngineSettings",
    "LLMConfig",
    "NotebatchConfig",
    "ProviderPreset",
]


def _env_float(name: str, default: float | None = None) -> float | None:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:  # pragma: no cover - defensive guard
        return default


def _env_int(name: str, default: int | None = None) -> int | None:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:  # pragma: no cover - defensive guard
        return default


@dataclass(frozen=True, slots=True)
class ProviderPreset:
    """OpenAI-compatible endpoint defaults for a named provider."""

    base_url: str | None
    api_key_env: str
    default_model: str


PROVIDER_PRESETS: dict[str, ProviderPreset] = {
    "openai": ProviderPreset(base_url=None, api_key_env="OPENAI_API_KEY", default_model="gpt-4o-mini"),
    "groq": ProviderPreset(
        base_url="https://api.groq.com/openai/v1",
        api_key_env="GROQ_API_KEY",
        default_model="llama-3.3-70b-versatile",
    ),
    "gemini": ProviderPreset(
        base_url="https://generativelanguage.googleapis.com/v1beta/openai/",
        api_key_env="GEMINI_API_KEY",
        default_model="gemini-2.5-flash",
    ),
}


@dataclass(slots=True)
class LLMConfig:
    """Configuration for LangChain-backed chat providers."""

    model: str | None = field(default_factory=lambda: os.getenv("NOTEBATCH_MODEL"))
    outline_model: str | None = field(default_factory=lambda: os.getenv("NOTEBATCH_OUTLINE_MODEL"))
    base_url: str | None = field(
        default_factory=lambda: os.getenv("NOTEBATCH_BASE_URL") or os.getenv("OPENAI_BASE_URL")
    )
    temperature: float = field(default_factory=lambda: _env_float("NOTEBATCH_TEMPERATURE", 0.7) or 0.0)
    outline_temperature: float = 0.3
    max_tokens: int | None = field(default_factory=lambda: _env_int("NOTEBATCH_MAX_TOKENS"))
    timeout: float | None = field(default_factory=lambda: _env_float("NOTEBATCH_TIMEOUT", 120.0))
    api_key_env: str = "NOTEBATCH_API_KEY"
    fallback_api_key_envs: tuple[str, ...] = ("OPENAI_API_KEY", "GROQ_API_KEY")

    def resolve_api_key(self, override: str | None = None, *, provider: str | None = None) -> str | None:
        if override:
            return override
        preset = PROVIDER_PRESETS.get(provider or "")
        env_candidates: Iterable[str | None] = (
            self.api_key_env,
            preset.api_key_env if preset else None,
            *self.fallback_api_key_envs,
        )
        for name in env_candidates:
            if not name:
                continue
            value = os.getenv(name)
            if value:
                return value
        return None

    def provider_kwargs(
        self,
        *,
        provider: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        api_key: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> dict[str, object | None]:
        preset = PROVIDER_PRESETS.get(provider or "")
        return {
            "model": model or self.model or (preset.default_model if preset else None),
            "base_url": base_url or self.base_url or (preset.base_url if preset else None),
            "api_key": api_key if api_key is not None else self.resolve_api_key(provider=provider),
            "temperature": self.temperature if temperature is None else temperature,
            "max_tokens": self.max_tokens if max_tokens is None else max_tokens,
            "timeout": self.timeout,
        }


@dataclass(slots=True)
class EngineSettings:
    """Retry, breaker and pacing knobs for the batch engine."""

    max_attempts: int = field(
        default_factory=lambda: _env_int("NOTEBATCH_MAX_RETRIES", DEFAULT_MAX_ATTEMPTS) or DEFAULT_MAX_ATTEMPTS
    )
    base_delay: float = field(
        default_factory=lambda: _env_float("NOTEBATCH_BASE_DELAY", DEFAULT_BASE_DELAY) or 0.0
    )
    circuit_threshold: int = field(
        default_factory=lambda: _env_int("NOTEBATCH_CIRCUIT_THRESHOLD", DEFAULT_CIRCUIT_THRESHOLD)
        or DEFAULT_CIRCUIT_THRESHOLD
    )
    cooldown_seconds: float = field(default_factory=lambda: _env_float("NOTEBATCH_COOLDOWN", 1.0) or 0.0)

    def build_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            circuit_threshold=self.circuit_threshold,
        )

    def build_breaker(self) -> CircuitBreaker:
        return CircuitBreaker()


@dataclass(slots=True)
class BudgetConfig:
    """Spend guardrail applied to LLM-backed providers."""

    limit_usd: float | None = field(default_factory=lambda: _env_float("NOTEBATCH_BUDGET_USD"))
    warn_ratio: float = field(default_factory=lambda: _env_float("NOTEBATCH_BUDGET_WARN_RATIO", 0.9) or 0.9)

    def should_warn(self, spent: float) -> bool:
        if self.limit_usd is None:
            return False
        return spent >= self.limit_usd * self.warn_ratio


@dataclass(slots=True)
class NotebatchConfig:
    """Primary configuration entry point."""

    paths: StatePathConfig = field(default_factory=StatePathConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    engine: EngineSettings = field(default_factory=EngineSettings)
    budget: BudgetConfig = field(default_factory=BudgetConfig)

    def with_state_dir(self, state_dir: Path | str | None) -> "NotebatchConfig":
        if state_dir is None:
            return self
        return replace(self, paths=replace(self.paths, state_dir=Path(state_dir)))

    @property
    def state_dir(self) -> Path:
        return self.paths.ensure().state_dir  # type: ignore[return-value]

    def as_provider_kwargs(self, **overrides: object) -> dict[str, object | None]:
        return self.llm.provider_kwargs(**overrides)  # type: ignore[arg-type]
