"""Batch pipeline: queue model, engine, failure handling and persistence."""

from .breaker import CIRCUIT_OPEN_LABEL, CircuitBreaker
from .engine import (
    CIRCUIT_TRIPPED_MESSAGE,
    INTERRUPTED_MESSAGE,
    BatchEngine,
    Subscription,
    UnknownItemError,
)
from .intake import TopicExtractionError, TopicExtractor, parse_topic_lines
from .models import (
    ItemStatus,
    NoteArtifact,
    NoteMode,
    QueueItem,
    RunConfig,
    SavedQueue,
    build_queue,
)
from .policy import RetryDecision, RetryPolicy, is_retryable
from .providers import (
    ContentProvider,
    LangChainContentProvider,
    MockContentProvider,
    ProviderRegistry,
    UnknownProviderError,
)
from .storage import JsonQueueStore, QueueStore, StorageError
from .workflow import NoteWorkflow

__all__ = [
    "CIRCUIT_OPEN_LABEL",
    "CIRCUIT_TRIPPED_MESSAGE",
    "INTERRUPTED_MESSAGE",
    "BatchEngine",
    "CircuitBreaker",
    "ContentProvider",
    "ItemStatus",
    "JsonQueueStore",
    "LangChainContentProvider",
    "MockContentProvider",
    "NoteArtifact",
    "NoteMode",
    "NoteWorkflow",
    "ProviderRegistry",
    "QueueItem",
    "QueueStore",
    "RetryDecision",
    "RetryPolicy",
    "RunConfig",
    "SavedQueue",
    "StorageError",
    "Subscription",
    "TopicExtractionError",
    "TopicExtractor",
    "UnknownItemError",
    "UnknownProviderError",
    "build_queue",
    "is_retryable",
    "parse_topic_lines",
]
