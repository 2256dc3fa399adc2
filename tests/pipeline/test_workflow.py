from __future__ import annotations

import pytest

from notebatch.pipeline.models import NoteMode, RunConfig
from notebatch.pipeline.providers import MockContentProvider
from notebatch.pipeline.storage import JsonQueueStore
from notebatch.pipeline.workflow import NoteWorkflow


def test_workflow_runs_outline_content_and_persist(tmp_path, scripted_provider) -> None:
    provider = scripted_provider()
    store = JsonQueueStore(tmp_path)

    state = NoteWorkflow(provider, store=store).run("Osmosis")

    assert state["outline"] == "# Osmosis\n## 1. Basics"
    assert state["content"] == "Notes on Osmosis"
    assert state["artifact_path"].endswith(f"{state['artifact_id']}.md")
    (artifact,) = store.list_artifacts()
    assert artifact.tags == ["workspace"]
    assert artifact.provider == "scripted"


def test_workflow_skips_drafting_when_outline_given(scripted_provider) -> None:
    provider = scripted_provider()

    state = NoteWorkflow(provider).run("Osmosis", outline="# My outline")

    assert provider.outline_calls == []
    assert provider.content_calls == [("Osmosis", "# My outline")]
    assert state["artifact_path"] is None


def test_workflow_uses_separate_providers_and_mode(scripted_provider) -> None:
    drafter = scripted_provider("drafter", outlines=["# drafted"])
    writer = MockContentProvider(name="writer")
    config = RunConfig(mode=NoteMode.COMPREHENSIVE, content_provider="writer", outline_provider="drafter")

    state = NoteWorkflow(drafter, writer, config=config).run("Diffusion")

    assert drafter.outline_calls == ["Diffusion"]
    assert "_Mode: comprehensive_" in state["content"]


def test_workflow_empty_outline_raises(scripted_provider) -> None:
    provider = scripted_provider(outlines=["   "])

    with pytest.raises(RuntimeError, match="Outline stage"):
        NoteWorkflow(provider).run("Osmosis")


def test_workflow_empty_content_raises(scripted_provider) -> None:
    provider = scripted_provider(contents=[""])

    with pytest.raises(RuntimeError, match="Content stage"):
        NoteWorkflow(provider).run("Osmosis")


def test_workflow_rejects_blank_topic(scripted_provider) -> None:
    with pytest.raises(ValueError):
        NoteWorkflow(scripted_provider()).run("  ")
