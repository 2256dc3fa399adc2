"""LangGraph workflow for generating a single note outside the batch queue."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional, TypedDict

from langgraph.graph import END, START, StateGraph

from .models import NoteArtifact, RunConfig
from .providers import ContentProvider
from .storage import JsonQueueStore

__all__ = ["NoteWorkflow", "NoteWorkflowState"]

logger = logging.getLogger(__name__)


class NoteWorkflowState(TypedDict, total=False):
    """State propagated through the single-topic graph."""

    topic: str
    outline: str
    content: str
    artifact_id: str
    artifact_path: Optional[str]


class NoteWorkflow:
    """Outline → content → persist for one topic, with an optional preset outline."""

    def __init__(
        self,
        outline_provider: ContentProvider,
        content_provider: ContentProvider | None = None,
        *,
        config: RunConfig | None = None,
        store: JsonQueueStore | None = None,
    ) -> None:
        self._outline_provider = outline_provider
        self._content_provider = content_provider or outline_provider
        self._config = config or RunConfig(auto_approve=True, content_provider=self._content_provider.name)
        self._store = store
        self._graph = self._build_graph()

    def _build_graph(self):
        graph = StateGraph(NoteWorkflowState)
        graph.add_node("draft_outline", self._node_draft_outline)
        graph.add_node("generate_content", self._node_generate_content)
        graph.add_node("persist", self._node_persist)

        graph.add_edge(START, "draft_outline")
        graph.add_edge("draft_outline", "generate_content")
        graph.add_edge("generate_content", "persist")
        graph.add_edge("persist", END)
        return graph.compile()

    async def arun(self, topic: str, *, outline: str | None = None) -> NoteWorkflowState:
        if not topic.strip():
            raise ValueError("Topic must not be empty")
        initial_state: NoteWorkflowState = {"topic": topic.strip()}
        if outline and outline.strip():
            initial_state["outline"] = outline.strip()
        return await self._graph.ainvoke(
            initial_state,
            config={"configurable": {"thread_id": f"note-{topic.strip()[:40]}"}},
        )

    def run(self, topic: str, *, outline: str | None = None) -> NoteWorkflowState:
        return asyncio.run(self.arun(topic, outline=outline))

    # LangGraph node implementations ---------------------------------------------

    async def _node_draft_outline(self, state: NoteWorkflowState) -> NoteWorkflowState:
        if state.get("outline"):
            return {}
        outline = (await self._outline_provider.generate_outline(self._config, state["topic"])).strip()
        if not outline:
            raise RuntimeError("Outline stage returned empty content.")
        return {"outline": outline}

    async def _node_generate_content(self, state: NoteWorkflowState) -> NoteWorkflowState:
        outline = state.get("outline")
        if not outline:
            raise RuntimeError("Outline missing before content generation.")
        content = (
            await self._content_provider.generate_content(self._config, state["topic"], outline)
        ).strip()
        if not content:
            raise RuntimeError("Content stage returned empty content.")
        return {"content": content}

    def _node_persist(self, state: NoteWorkflowState) -> NoteWorkflowState:
        artifact = NoteArtifact(
            item_id="workspace",
            topic=state["topic"],
            content=state["content"],
            mode=self._config.mode,
            provider=self._content_provider.name,
            tags=["workspace"],
        )
        path: Path | None = None
        if self._store is not None:
            path = self._store.save_artifact(artifact)
            logger.info("Saved note for %r to %s", artifact.topic, path)
        return {"artifact_id": artifact.id, "artifact_path": str(path) if path else None}
