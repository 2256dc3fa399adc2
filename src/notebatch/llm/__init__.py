"""Language-model plumbing: chat clients and usage accounting."""

from .cost import BudgetExceededError, CostTracker, ModelPricing
from .providers import (
    LangChainChatProvider,
    ProviderDependencyError,
    ProviderError,
    ProviderSettings,
    build_provider,
)

__all__ = [
    "BudgetExceededError",
    "CostTracker",
    "ModelPricing",
    "LangChainChatProvider",
    "ProviderDependencyError",
    "ProviderError",
    "ProviderSettings",
    "build_provider",
]
