"""notebatch: batch outline-then-content generation for lists of topics."""

from .config import BudgetConfig, EngineSettings, LLMConfig, NotebatchConfig
from .io import LoadedDocument, load_syllabus
from .paths import StatePathConfig, resolve_state_dir
from .pipeline import (
    BatchEngine,
    CircuitBreaker,
    ItemStatus,
    JsonQueueStore,
    MockContentProvider,
    NoteMode,
    ProviderRegistry,
    QueueItem,
    RetryPolicy,
    RunConfig,
)

__all__ = [
    "BudgetConfig",
    "EngineSettings",
    "LLMConfig",
    "NotebatchConfig",
    "LoadedDocument",
    "load_syllabus",
    "StatePathConfig",
    "resolve_state_dir",
    "BatchEngine",
    "CircuitBreaker",
    "ItemStatus",
    "JsonQueueStore",
    "MockContentProvider",
    "NoteMode",
    "ProviderRegistry",
    "QueueItem",
    "RetryPolicy",
    "RunConfig",
]
