"""Batch pipeline engine driving queued topics through outline and content phases.

The engine owns the ordered queue and a single cooperative processing loop.
For every eligible item it drafts an outline, optionally pauses for human
review, then generates the content and stores it as an artifact. Each phase
attempt runs under :class:`~notebatch.pipeline.policy.RetryPolicy`; sustained
failure across items opens the :class:`~notebatch.pipeline.breaker.CircuitBreaker`
and halts the run until an operator resets it.

Every mutation is persisted through the injected store and broadcast to
subscribers as an immutable snapshot. Commands (``set_queue``,
``update_outline``, ``stop`` ...) are plain methods that may be called
between any two awaits of the loop; items are tracked by id so a reorder or
manual edit mid-run never points the loop at the wrong item.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Optional, Sequence

from .breaker import CircuitBreaker
from .models import ItemStatus, NoteArtifact, QueueItem, RunConfig, build_queue
from .policy import RetryPolicy
from .providers import ProviderRegistry
from .storage import QueueStore, StorageError

__all__ = [
    "BatchEngine",
    "CIRCUIT_TRIPPED_MESSAGE",
    "INTERRUPTED_MESSAGE",
    "Listener",
    "Subscription",
    "UnknownItemError",
]

logger = logging.getLogger(__name__)

Listener = Callable[[tuple[QueueItem, ...], bool, Optional[str]], None]
SleepFn = Callable[[float], Awaitable[None]]

DEFAULT_COOLDOWN_SECONDS = 1.0
INTERRUPTED_MESSAGE = "Process interrupted (restart). Retry needed."
CIRCUIT_TRIPPED_MESSAGE = "Circuit breaker tripped: provider unstable."
STOPPED_MESSAGE = "Stopped before the phase could finish. Retry needed."
EMPTY_RESULT_MESSAGE = "Provider returned empty text."


class UnknownItemError(KeyError):
    """Raised when a command references an id that is not in the queue."""


class Subscription:
    """Handle returned by :meth:`BatchEngine.subscribe`.

    Removal is by handle identity, so registering the same callable twice
    yields two independent subscriptions.
    """

    __slots__ = ("_engine", "callback")

    def __init__(self, engine: "BatchEngine", callback: Listener) -> None:
        self._engine = engine
        self.callback = callback

    @property
    def active(self) -> bool:
        return any(sub is self for sub in self._engine._listeners)

    def unsubscribe(self) -> None:
        self._engine._listeners = [sub for sub in self._engine._listeners if sub is not self]

    __call__ = unsubscribe


class BatchEngine:
    """Single-worker queue processor with retry, circuit breaking and recovery."""

    def __init__(
        self,
        store: QueueStore,
        providers: ProviderRegistry,
        *,
        policy: RetryPolicy | None = None,
        breaker: CircuitBreaker | None = None,
        cooldown: float = DEFAULT_COOLDOWN_SECONDS,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._store = store
        self._providers = providers
        self._policy = policy or RetryPolicy()
        self._breaker = breaker or CircuitBreaker()
        self._cooldown = cooldown
        self._sleep = sleep

        self._queue: list[QueueItem] = []
        self._config: RunConfig | None = None
        self._processing = False
        self._stop_requested = False
        self._stop_event: asyncio.Event | None = None
        self._failed_this_run: set[str] = set()
        self._listeners: list[Subscription] = []

        self._recover()

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------
    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    @property
    def circuit_open(self) -> bool:
        return self._breaker.is_open

    @property
    def consecutive_failures(self) -> int:
        return self._breaker.consecutive_failures

    @property
    def config(self) -> RunConfig | None:
        return self._config

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def status_label(self) -> str:
        if self._breaker.is_open:
            return "CIRCUIT BREAKER ACTIVE (PAUSED)"
        return "PROCESSING" if self._processing else "IDLE"

    def snapshot(self) -> tuple[QueueItem, ...]:
        return tuple(self._queue)

    def get(self, item_id: str) -> QueueItem:
        item = self._find(item_id)
        if item is None:
            raise UnknownItemError(item_id)
        return item

    # ------------------------------------------------------------------
    # Observer surface
    # ------------------------------------------------------------------
    def subscribe(self, callback: Listener) -> Subscription:
        """Register ``callback`` and immediately deliver the current state."""

        subscription = Subscription(self, callback)
        self._listeners.append(subscription)
        self._deliver(subscription, self.snapshot())
        return subscription

    def close(self) -> None:
        """Tear down at process exit: request a stop and drop all listeners."""

        self.stop()
        self._listeners.clear()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    def set_queue(self, items: Iterable[QueueItem]) -> None:
        """Replace the queue wholesale; also the way callers reorder it."""

        new_queue = list(items)
        seen: set[str] = set()
        for item in new_queue:
            if not isinstance(item, QueueItem):
                raise TypeError(f"Queue entries must be QueueItem instances, got {type(item).__name__}")
            if item.id in seen:
                raise ValueError(f"Duplicate item id in queue: {item.id}")
            seen.add(item.id)
        self._queue = new_queue
        self._commit()

    def add_topics(self, topics: Iterable[str]) -> list[QueueItem]:
        added = build_queue(topics)
        if added:
            self.set_queue([*self._queue, *added])
        return added

    def move_item(self, item_id: str, index: int) -> None:
        item = self.get(item_id)
        reordered = [entry for entry in self._queue if entry.id != item_id]
        index = max(0, min(index, len(reordered)))
        reordered.insert(index, item)
        self.set_queue(reordered)

    def remove_item(self, item_id: str) -> QueueItem:
        item = self.get(item_id)
        self.set_queue(entry for entry in self._queue if entry.id != item_id)
        return item

    def update_outline(self, item_id: str, outline: str) -> QueueItem:
        """Manual review/edit: store ``outline`` and mark the item ready for phase 2."""

        if not outline or not outline.strip():
            raise ValueError("Outline must not be empty")
        index = self._index_of(item_id)
        if index is None:
            raise UnknownItemError(item_id)
        updated = self._queue[index].evolve(
            outline=outline,
            status=ItemStatus.OUTLINE_READY,
            error_msg=None,
            retry_count=0,
        )
        self._queue[index] = updated
        self._commit()
        return updated

    def stop(self) -> None:
        if not self._processing or self._stop_requested:
            return
        logger.info("Stop requested; the run will halt at the next checkpoint")
        self._request_stop()
        self._notify()

    def reset_circuit(self) -> None:
        if not self._breaker.reset():
            return
        self._persist_breaker()
        logger.info("Circuit breaker reset by operator")
        self._notify()

    async def start(self, config: RunConfig) -> bool:
        """Process eligible items until none remain, a stop, or a breaker trip.

        Returns False without doing anything when a run is already active or
        the circuit breaker is open.
        """

        if self._processing:
            logger.warning("Start ignored: a run is already in progress")
            return False
        if self._breaker.is_open:
            logger.warning("Start refused: circuit breaker is open; reset it first")
            return False
        self._providers.require(config)

        self._config = config
        self._processing = True
        self._stop_requested = False
        self._stop_event = asyncio.Event()
        self._failed_this_run = set()
        self._notify()
        logger.info(
            "Run started: %d item(s) queued, auto_approve=%s, providers=%s/%s",
            len(self._queue),
            config.auto_approve,
            config.outline_provider_name,
            config.content_provider,
        )

        processed = 0
        try:
            while not self._stop_requested and not self._breaker.is_open:
                item = self._next_eligible(config)
                if item is None:
                    break
                await self._process_item(item.id, config)
                processed += 1
                if self._stop_requested or self._breaker.is_open:
                    break
                await self._pause(self._cooldown)
        finally:
            self._processing = False
            self._config = None
            self._stop_event = None
            self._persist_breaker()
            self._notify()
            logger.info(
                "Run finished after %d item(s)%s",
                processed,
                " (circuit open)" if self._breaker.is_open else " (stopped)" if self._stop_requested else "",
            )
        return True

    # ------------------------------------------------------------------
    # Processing loop internals
    # ------------------------------------------------------------------
    def _next_eligible(self, config: RunConfig) -> QueueItem | None:
        for item in self._queue:
            if item.id in self._failed_this_run:
                continue
            if item.status in (ItemStatus.PENDING, ItemStatus.ERROR):
                return item
            if item.status is ItemStatus.OUTLINE_READY and (config.auto_approve or item.has_outline):
                return item
        return None

    async def _process_item(self, item_id: str, config: RunConfig) -> None:
        item = self._find(item_id)
        if item is None or self._stop_requested:
            return

        if item.status in (ItemStatus.PENDING, ItemStatus.ERROR) or not item.has_outline:
            outline_provider = self._providers.get(config.outline_provider_name)
            topic = item.topic
            outline = await self._run_phase(
                item_id,
                ItemStatus.DRAFTING_OUTLINE,
                lambda: outline_provider.generate_outline(config, topic),
            )
            if outline is None:
                return
            next_status = ItemStatus.OUTLINE_READY if config.auto_approve else ItemStatus.PAUSED_FOR_REVIEW
            if not self._update(
                item_id,
                expect=ItemStatus.DRAFTING_OUTLINE,
                status=next_status,
                outline=outline,
                retry_count=0,
                error_msg=None,
            ):
                return
            if next_status is ItemStatus.PAUSED_FOR_REVIEW:
                logger.info("Outline for %r is waiting for review", topic)
                return

        if self._stop_requested:
            return
        item = self._find(item_id)
        if item is None or item.status is not ItemStatus.OUTLINE_READY or not item.has_outline:
            return

        content_provider = self._providers.get(config.content_provider)
        topic, outline_text = item.topic, item.outline or ""
        content = await self._run_phase(
            item_id,
            ItemStatus.GENERATING_CONTENT,
            lambda: content_provider.generate_content(config, topic, outline_text),
        )
        if content is None:
            return
        current = self._find(item_id)
        if current is None or current.status is not ItemStatus.GENERATING_CONTENT:
            return
        self._save_artifact(current, content, config)
        self._update(
            item_id,
            expect=ItemStatus.GENERATING_CONTENT,
            status=ItemStatus.DONE,
            retry_count=0,
            error_msg=None,
        )

    async def _run_phase(
        self,
        item_id: str,
        active_status: ItemStatus,
        call: Callable[[], Awaitable[str]],
    ) -> str | None:
        """Run one phase under the retry policy; None means the phase did not succeed."""

        attempt = 0
        while True:
            if self._stop_requested:
                if attempt:
                    self._fail_item(item_id, active_status, attempt, STOPPED_MESSAGE)
                return None
            if attempt == 0:
                entered = self._update(item_id, status=active_status, retry_count=0, error_msg=None)
            else:
                entered = self._update(item_id, expect=active_status)
            if not entered:
                return None

            attempt += 1
            error: BaseException
            try:
                result = await call()
            except Exception as exc:  # provider failures are opaque; the policy classifies them
                error = exc
            else:
                if result and result.strip():
                    self._breaker.record_success()
                    return result
                error = RuntimeError(EMPTY_RESULT_MESSAGE)

            failures = self._breaker.record_failure()
            decision = self._policy.decide(attempt, error, failures)
            item = self._find(item_id)
            topic = item.topic if item is not None else item_id
            logger.warning(
                "Attempt %d/%d (%s) failed for %r: %s",
                attempt,
                self._policy.max_attempts,
                active_status.value,
                topic,
                error,
            )

            if decision.open_circuit:
                self._breaker.trip()
                self._persist_breaker()
                self._request_stop()
                logger.error(
                    "Circuit breaker opened after %d consecutive failures; halting run",
                    failures,
                )
                self._fail_item(item_id, active_status, attempt, CIRCUIT_TRIPPED_MESSAGE)
                return None
            if not decision.retry:
                if decision.fatal:
                    message = f"Fatal: {error}"
                else:
                    message = f"Max retries exceeded ({attempt}/{self._policy.max_attempts}): {error}"
                self._fail_item(item_id, active_status, attempt, message)
                return None

            if not self._update(
                item_id,
                expect=active_status,
                retry_count=attempt,
                error_msg=self._policy.describe_failure(attempt, error),
            ):
                return None
            if self._stop_requested:
                continue
            await self._pause(decision.delay)

    def _fail_item(self, item_id: str, active_status: ItemStatus, attempt: int, message: str) -> None:
        self._failed_this_run.add(item_id)
        self._update(
            item_id,
            expect=active_status,
            status=ItemStatus.ERROR,
            retry_count=attempt,
            error_msg=message,
        )

    async def _pause(self, delay: float) -> None:
        """Wait ``delay`` seconds, returning early if a stop is requested."""

        if delay <= 0:
            return
        event = self._stop_event
        if event is None:
            await self._sleep(delay)
            return
        sleeper = asyncio.ensure_future(self._sleep(delay))
        waiter = asyncio.ensure_future(event.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pending = [task for task in (sleeper, waiter) if not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    def _request_stop(self) -> None:
        self._stop_requested = True
        if self._stop_event is not None:
            self._stop_event.set()

    def _save_artifact(self, item: QueueItem, content: str, config: RunConfig) -> None:
        artifact = NoteArtifact(
            item_id=item.id,
            topic=item.topic,
            content=content,
            mode=config.mode,
            provider=config.content_provider,
        )
        try:
            path = self._store.save_artifact(artifact)
        except StorageError:
            logger.exception("Failed to save artifact for %r; continuing", item.topic)
            return
        logger.info("Saved note for %r to %s", item.topic, path)

    # ------------------------------------------------------------------
    # State plumbing
    # ------------------------------------------------------------------
    def _recover(self) -> None:
        self._recover_breaker()
        try:
            loaded = self._store.load_queue()
        except StorageError:
            logger.exception("Queue recovery failed; starting with an empty queue")
            return
        if loaded is None:
            return

        recovered: list[QueueItem] = []
        seen: set[str] = set()
        for item in loaded:
            if item.id in seen:
                logger.warning("Dropping duplicate item %s from recovered queue", item.id)
                continue
            seen.add(item.id)
            if item.is_active:
                logger.warning("Item %r was %s at shutdown; marking as error", item.topic, item.status.value)
                item = item.evolve(status=ItemStatus.ERROR, error_msg=INTERRUPTED_MESSAGE)
            recovered.append(item)
        self._queue = recovered
        self._persist()

    def _recover_breaker(self) -> None:
        try:
            saved = self._store.load_breaker()
        except StorageError:
            logger.exception("Breaker state could not be read; starting closed")
            return
        if saved is None:
            return
        self._breaker.consecutive_failures = saved.consecutive_failures
        self._breaker.is_open = saved.is_open
        if saved.is_open:
            logger.warning("Circuit breaker was open at shutdown; reset it before the next run")

    def _persist_breaker(self) -> None:
        try:
            self._store.save_breaker(self._breaker)
        except StorageError:
            logger.exception("Failed to persist breaker state")

    def _find(self, item_id: str) -> QueueItem | None:
        index = self._index_of(item_id)
        return self._queue[index] if index is not None else None

    def _index_of(self, item_id: str) -> int | None:
        for index, item in enumerate(self._queue):
            if item.id == item_id:
                return index
        return None

    def _update(self, item_id: str, *, expect: ItemStatus | None = None, **changes: object) -> bool:
        """Apply ``changes`` to an item; False when it is gone or was edited meanwhile."""

        index = self._index_of(item_id)
        if index is None:
            logger.info("Item %s is no longer queued; dropping update", item_id)
            return False
        current = self._queue[index]
        if expect is not None and current.status is not expect:
            logger.info(
                "Item %r moved to %s while %s was running; keeping the newer state",
                current.topic,
                current.status.value,
                expect.value,
            )
            return False
        if changes:
            self._queue[index] = current.evolve(**changes)
            self._commit()
        return True

    def _commit(self) -> None:
        self._notify()
        self._persist()

    def _persist(self) -> None:
        try:
            self._store.save_queue(self._queue)
        except StorageError:
            logger.exception("Failed to persist queue snapshot")

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for subscription in list(self._listeners):
            self._deliver(subscription, snapshot)

    def _deliver(self, subscription: Subscription, snapshot: Sequence[QueueItem]) -> None:
        try:
            subscription.callback(tuple(snapshot), self._processing, self._breaker.label)
        except Exception:
            logger.exception("Queue listener %r raised", subscription.callback)
