"""Filesystem persistence for queue snapshots, the queue library and notes."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol, Sequence

from pydantic import TypeAdapter, ValidationError

from .breaker import CircuitBreaker
from .models import NoteArtifact, QueueItem, SavedQueue

__all__ = ["JsonQueueStore", "QueueStore", "StorageError"]

logger = logging.getLogger(__name__)

QUEUE_FILENAME = "queue.json"
LIBRARY_FILENAME = "library.json"
BREAKER_FILENAME = "breaker.json"
ARTIFACT_DIRNAME = "artifacts"
ARTIFACT_INDEX_FILENAME = "index.json"

_QUEUE_ADAPTER = TypeAdapter(list[QueueItem])
_LIBRARY_ADAPTER = TypeAdapter(list[SavedQueue])
_ARTIFACT_INDEX_ADAPTER = TypeAdapter(list[NoteArtifact])


class StorageError(RuntimeError):
    """Raised when a snapshot or artifact cannot be read or written."""


class QueueStore(Protocol):
    """Persistence operations the engine relies on."""

    def load_queue(self) -> list[QueueItem] | None:  # pragma: no cover - interface
        ...

    def save_queue(self, items: Sequence[QueueItem]) -> None:  # pragma: no cover - interface
        ...

    def save_artifact(self, artifact: NoteArtifact) -> Path:  # pragma: no cover - interface
        ...

    def load_breaker(self) -> CircuitBreaker | None:  # pragma: no cover - interface
        ...

    def save_breaker(self, breaker: CircuitBreaker) -> None:  # pragma: no cover - interface
        ...


class JsonQueueStore:
    """JSON-on-disk store rooted at a state directory.

    Layout::

        <root>/queue.json              active queue snapshot
        <root>/library.json            named saved queues
        <root>/breaker.json            circuit breaker state
        <root>/artifacts/<id>.md       generated notes
        <root>/artifacts/index.json    note metadata (content stripped)
    """

    def __init__(self, root: Path | str, *, encoding: str = "utf-8") -> None:
        self.root = Path(root).expanduser()
        self.encoding = encoding

    @property
    def queue_path(self) -> Path:
        return self.root / QUEUE_FILENAME

    @property
    def library_path(self) -> Path:
        return self.root / LIBRARY_FILENAME

    @property
    def breaker_path(self) -> Path:
        return self.root / BREAKER_FILENAME

    @property
    def artifact_dir(self) -> Path:
        return self.root / ARTIFACT_DIRNAME

    # Active queue -----------------------------------------------------------

    def load_queue(self) -> list[QueueItem] | None:
        payload = self._read_json(self.queue_path)
        if payload is None:
            return None
        try:
            return _QUEUE_ADAPTER.validate_python(payload)
        except ValidationError as exc:
            raise StorageError(f"Queue snapshot {self.queue_path} is invalid: {exc}") from exc

    def save_queue(self, items: Sequence[QueueItem]) -> None:
        self._write_json(self.queue_path, _QUEUE_ADAPTER.dump_python(list(items), mode="json"))

    # Circuit breaker ----------------------------------------------------------

    def load_breaker(self) -> CircuitBreaker | None:
        payload = self._read_json(self.breaker_path)
        if payload is None:
            return None
        try:
            return CircuitBreaker(
                consecutive_failures=int(payload.get("consecutive_failures", 0)),
                is_open=bool(payload.get("is_open", False)),
            )
        except (AttributeError, TypeError, ValueError) as exc:
            raise StorageError(f"Breaker state {self.breaker_path} is invalid: {exc}") from exc

    def save_breaker(self, breaker: CircuitBreaker) -> None:
        self._write_json(
            self.breaker_path,
            {"consecutive_failures": breaker.consecutive_failures, "is_open": breaker.is_open},
        )

    # Library ----------------------------------------------------------------

    def list_saved_queues(self) -> list[SavedQueue]:
        payload = self._read_json(self.library_path)
        if payload is None:
            return []
        try:
            saved = _LIBRARY_ADAPTER.validate_python(payload)
        except ValidationError as exc:
            raise StorageError(f"Queue library {self.library_path} is invalid: {exc}") from exc
        return sorted(saved, key=lambda entry: entry.saved_at, reverse=True)

    def save_named_queue(self, saved: SavedQueue) -> SavedQueue:
        entries = [entry for entry in self.list_saved_queues() if entry.id != saved.id]
        entries.append(saved)
        self._write_json(self.library_path, _LIBRARY_ADAPTER.dump_python(entries, mode="json"))
        return saved

    def load_named_queue(self, queue_id: str) -> SavedQueue:
        for entry in self.list_saved_queues():
            if entry.id == queue_id:
                return entry
        raise KeyError(f"No saved queue with id '{queue_id}'")

    def delete_named_queue(self, queue_id: str) -> bool:
        entries = self.list_saved_queues()
        remaining = [entry for entry in entries if entry.id != queue_id]
        if len(remaining) == len(entries):
            return False
        self._write_json(self.library_path, _LIBRARY_ADAPTER.dump_python(remaining, mode="json"))
        return True

    # Artifacts --------------------------------------------------------------

    def save_artifact(self, artifact: NoteArtifact) -> Path:
        path = self.artifact_dir / f"{artifact.id}.md"
        try:
            self.artifact_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(artifact.to_markdown(), encoding=self.encoding)
        except OSError as exc:
            raise StorageError(f"Failed to write artifact {path}: {exc}") from exc

        index = [entry for entry in self.list_artifacts() if entry.id != artifact.id]
        # The index only keeps metadata; bodies live in the markdown files.
        index.append(artifact.model_copy(update={"content": ""}))
        self._write_json(
            self.artifact_dir / ARTIFACT_INDEX_FILENAME,
            _ARTIFACT_INDEX_ADAPTER.dump_python(index, mode="json"),
        )
        return path

    def list_artifacts(self) -> list[NoteArtifact]:
        payload = self._read_json(self.artifact_dir / ARTIFACT_INDEX_FILENAME)
        if payload is None:
            return []
        try:
            return _ARTIFACT_INDEX_ADAPTER.validate_python(payload)
        except ValidationError as exc:
            raise StorageError(f"Artifact index is invalid: {exc}") from exc

    def read_artifact(self, artifact_id: str) -> str:
        path = self.artifact_dir / f"{artifact_id}.md"
        try:
            return path.read_text(encoding=self.encoding)
        except FileNotFoundError as exc:
            raise KeyError(f"No artifact with id '{artifact_id}'") from exc
        except OSError as exc:
            raise StorageError(f"Failed to read artifact {path}: {exc}") from exc

    # Helpers ----------------------------------------------------------------

    def _read_json(self, path: Path) -> Any:
        try:
            raw = path.read_text(encoding=self.encoding)
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Failed to read {path}: {exc}") from exc
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageError(f"{path} is not valid JSON: {exc}") from exc

    def _write_json(self, path: Path, payload: Any) -> None:
        text = json.dumps(payload, ensure_ascii=False, indent=2) + "\n"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding=self.encoding) as handle:
                    handle.write(text)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StorageError(f"Failed to write {path}: {exc}") from exc
        logger.debug("Wrote %s (%d bytes)", path, len(text))
