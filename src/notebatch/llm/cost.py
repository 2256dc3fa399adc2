"""Token accounting and pricing for generation calls."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Dict, Mapping

__all__ = [
    "MODEL_PRICING",
    "ModelPricing",
    "PhaseUsage",
    "UsageRecord",
    "BudgetExceededError",
    "CostTracker",
    "register_model_pricing",
]


@dataclass(frozen=True, slots=True)
class ModelPricing:
    """Price definition expressed in USD per 1K tokens."""

    prompt_per_1k: float
    completion_per_1k: float

    def estimate_cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        return (prompt_tokens / 1000) * self.prompt_per_1k + (completion_tokens / 1000) * self.completion_per_1k


MODEL_PRICING: Dict[str, ModelPricing] = {
    "gpt-4o-mini": ModelPricing(prompt_per_1k=0.00015, completion_per_1k=0.0006),
    "gpt-4o": ModelPricing(prompt_per_1k=0.005, completion_per_1k=0.015),
    "llama-3.3-70b-versatile": ModelPricing(prompt_per_1k=0.00059, completion_per_1k=0.00079),
    "llama-3.1-8b-instant": ModelPricing(prompt_per_1k=0.00005, completion_per_1k=0.00008),
    "gemini-2.5-flash": ModelPricing(prompt_per_1k=0.0003, completion_per_1k=0.0025),
}


@dataclass(slots=True)
class PhaseUsage:
    """Running token tally for one pipeline phase."""

    calls: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost_usd: float = 0.0

    def add(self, prompt: int, completion: int, cost: float) -> None:
        self.calls += 1
        self.prompt_tokens += prompt
        self.completion_tokens += completion
        self.cost_usd += cost

    def to_dict(self) -> dict[str, float | int]:
        return {
            "calls": self.calls,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "cost_usd": round(self.cost_usd, 6),
        }


@dataclass(frozen=True, slots=True)
class UsageRecord:
    """Immutable summary of a single generation call."""

    phase: str
    model: str
    prompt_tokens: int
    completion_tokens: int
    cost_usd: float


class BudgetExceededError(RuntimeError):
    """Raised when recorded spend breaches a configured hard limit."""


@dataclass(slots=True)
class CostTracker:
    """Accumulates usage per phase with optional budget enforcement."""

    pricing: Mapping[str, ModelPricing] = field(default_factory=lambda: MODEL_PRICING)
    budget_limit: float | None = None
    warn_ratio: float = 0.9
    _phases: Dict[str, PhaseUsage] = field(default_factory=dict, init=False, repr=False)
    _total_cost: float = field(default=0.0, init=False, repr=False)

    @property
    def total_cost(self) -> float:
        return self._total_cost

    def check_budget(self) -> None:
        """Raise before a call when the budget is already spent."""

        if self.budget_limit is not None and self._total_cost >= self.budget_limit:
            raise BudgetExceededError(
                f"Budget limit ${self.budget_limit:.2f} exhausted (spent ${self._total_cost:.4f})"
            )

    def record(self, phase: str, model: str, prompt_tokens: int, completion_tokens: int) -> UsageRecord:
        pricing = self.pricing.get(model)
        cost = pricing.estimate_cost(prompt_tokens, completion_tokens) if pricing else 0.0
        self._phases.setdefault(phase, PhaseUsage()).add(prompt_tokens, completion_tokens, cost)
        self._total_cost += cost
        return UsageRecord(
            phase=phase,
            model=model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            cost_usd=cost,
        )

    def should_warn(self) -> bool:
        if self.budget_limit is None:
            return False
        return self._total_cost >= self.budget_limit * self.warn_ratio

    def usage_for(self, phase: str) -> PhaseUsage | None:
        return self._phases.get(phase)

    def remaining_budget(self) -> float | None:
        if self.budget_limit is None:
            return None
        return max(self.budget_limit - self._total_cost, 0.0)

    def to_dict(self) -> dict[str, object]:
        return {
            "total_cost": round(self._total_cost, 6),
            "budget_limit": self.budget_limit,
            "phases": {phase: usage.to_dict() for phase, usage in sorted(self._phases.items())},
        }

    def to_json(self, *, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=indent)


def register_model_pricing(model: str, *, prompt_per_1k: float, completion_per_1k: float) -> None:
    """Register or override pricing details for a model in ``MODEL_PRICING``."""

    MODEL_PRICING[model] = ModelPricing(prompt_per_1k=prompt_per_1k, completion_per_1k=completion_per_1k)
