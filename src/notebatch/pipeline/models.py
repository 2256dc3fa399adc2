"""Structured data definitions shared by the batch pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__ = [
    "ACTIVE_STATUSES",
    "ItemStatus",
    "NoteArtifact",
    "NoteMode",
    "QueueItem",
    "RunConfig",
    "SavedQueue",
    "build_queue",
    "new_id",
]


def new_id() -> str:
    return uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ItemStatus(str, Enum):
    """Lifecycle of a queue item across the two generation phases."""

    PENDING = "pending"
    DRAFTING_OUTLINE = "drafting_outline"
    OUTLINE_READY = "outline_ready"
    PAUSED_FOR_REVIEW = "paused_for_review"
    GENERATING_CONTENT = "generating_content"
    DONE = "done"
    ERROR = "error"


# Statuses that only exist while a provider call is in flight.
ACTIVE_STATUSES = frozenset({ItemStatus.DRAFTING_OUTLINE, ItemStatus.GENERATING_CONTENT})


class NoteMode(str, Enum):
    """Instruction preset applied to the content phase."""

    GENERAL = "general"
    CHEAT_CODES = "cheat_codes"
    COMPREHENSIVE = "comprehensive"
    CUSTOM = "custom"


class FrozenBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class QueueItem(FrozenBaseModel):
    """A single topic travelling through the pipeline.

    Items are immutable; the engine replaces them with updated copies so that
    snapshots handed to subscribers never change underneath them.
    """

    id: str = Field(default_factory=new_id, description="Stable identifier, never reused.")
    topic: str = Field(..., description="Subject the outline and content are generated for.")
    status: ItemStatus = Field(default=ItemStatus.PENDING)
    outline: Optional[str] = Field(default=None, description="Phase-1 blueprint text.")
    retry_count: int = Field(default=0, ge=0, description="Failed attempts on the current phase.")
    error_msg: Optional[str] = Field(default=None, description="Last failure, for display.")

    @field_validator("topic")
    @classmethod
    def _topic_not_blank(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("topic must not be empty")
        return cleaned

    @classmethod
    def create(cls, topic: str) -> "QueueItem":
        return cls(id=new_id(), topic=topic)

    def evolve(self, **changes: object) -> "QueueItem":
        """Return a copy with ``changes`` applied."""

        return self.model_copy(update=changes)

    @property
    def has_outline(self) -> bool:
        return bool(self.outline and self.outline.strip())

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class NoteArtifact(FrozenBaseModel):
    """Finished phase-2 output for an item."""

    id: str = Field(default_factory=new_id)
    item_id: str
    topic: str
    content: str
    mode: NoteMode = NoteMode.GENERAL
    provider: str = ""
    created_at: datetime = Field(default_factory=_utcnow)
    tags: List[str] = Field(default_factory=lambda: ["auto-curriculum"])

    def to_markdown(self) -> str:
        header = [
            f"# {self.topic}",
            "",
            f"<!-- item: {self.item_id} | mode: {self.mode.value} | provider: {self.provider} | "
            f"created: {self.created_at.isoformat(timespec='seconds')} -->",
            "",
        ]
        return "\n".join(header) + self.content.strip() + "\n"


class SavedQueue(FrozenBaseModel):
    """Named queue kept in the library for later reuse."""

    id: str = Field(default_factory=new_id)
    name: str
    items: List[QueueItem] = Field(default_factory=list)
    saved_at: datetime = Field(default_factory=_utcnow)


@dataclass(frozen=True, slots=True)
class RunConfig:
    """Settings fixed for the duration of one processing run."""

    auto_approve: bool = False
    mode: NoteMode = NoteMode.GENERAL
    content_provider: str = "mock"
    outline_provider: str | None = None
    content_model: str | None = None
    outline_model: str | None = None
    content_instructions: str | None = None
    outline_instructions: str | None = None

    @property
    def outline_provider_name(self) -> str:
        return self.outline_provider or self.content_provider


def build_queue(topics: Iterable[str]) -> list[QueueItem]:
    """Create fresh pending items for ``topics``, skipping blanks."""

    return [QueueItem.create(topic) for topic in topics if topic and topic.strip()]
