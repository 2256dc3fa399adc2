from __future__ import annotations

import pytest
from pydantic import ValidationError

from notebatch.pipeline.models import ItemStatus, NoteArtifact, QueueItem, RunConfig, build_queue


def test_queue_item_defaults_and_topic_cleanup() -> None:
    item = QueueItem.create("  Acid-base balance  ")

    assert item.topic == "Acid-base balance"
    assert item.status is ItemStatus.PENDING
    assert item.retry_count == 0
    assert item.outline is None
    assert len(item.id) == 32


def test_queue_item_rejects_invalid_values() -> None:
    with pytest.raises(ValidationError):
        QueueItem(topic="   ")
    with pytest.raises(ValidationError):
        QueueItem(topic="A", retry_count=-1)


def test_queue_item_is_immutable() -> None:
    item = QueueItem(topic="A")
    with pytest.raises(ValidationError):
        item.topic = "B"  # type: ignore[misc]

    updated = item.evolve(status=ItemStatus.DONE)
    assert updated.id == item.id
    assert updated.status is ItemStatus.DONE
    assert item.status is ItemStatus.PENDING


def test_queue_item_flags() -> None:
    assert QueueItem(topic="A", outline="  ").has_outline is False
    assert QueueItem(topic="A", outline="# A").has_outline is True
    assert QueueItem(topic="A", status=ItemStatus.DRAFTING_OUTLINE).is_active is True
    assert QueueItem(topic="A", status=ItemStatus.PAUSED_FOR_REVIEW).is_active is False


def test_build_queue_assigns_fresh_ids() -> None:
    items = build_queue(["A", "", "B", "A"])

    assert [item.topic for item in items] == ["A", "B", "A"]
    assert len({item.id for item in items}) == 3


def test_run_config_outline_provider_fallback() -> None:
    assert RunConfig(content_provider="groq").outline_provider_name == "groq"
    assert RunConfig(content_provider="groq", outline_provider="gemini").outline_provider_name == "gemini"


def test_artifact_markdown_rendering() -> None:
    artifact = NoteArtifact(item_id="i", topic="Topic", content="\nBody\n", provider="mock")
    rendered = artifact.to_markdown()

    assert rendered.startswith("# Topic\n\n<!-- item: i | mode: general | provider: mock")
    assert rendered.endswith("Body\n")
