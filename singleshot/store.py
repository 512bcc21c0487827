"""Item store and lifecycle controller for SingleShot.

The store owns the ordered collection of :class:`~singleshot.models.AnalysisItem`
records and drives one analysis task per item. Tasks never touch the store
directly: each one produces an :class:`Outcome` on a completion queue, and a
single consumer applies outcomes to the item with the matching id. Outcomes
are therefore applied one at a time and in whatever order they arrive, and
an outcome for a removed item is dropped.

Example:
    >>> store = ItemStore(get_client())
    >>> items = store.add_batch(payloads)   # returns immediately
    >>> await store.join()                  # wait for every result
    >>> store.counts()[AnalysisStatus.SUCCESS]
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Iterator, Protocol

from singleshot.ai.errors import AnalysisError
from singleshot.models import AnalysisItem, AnalysisResult, AnalysisStatus, MediaPayload

logger = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "Analysis failed"


# =============================================================================
# Types
# =============================================================================


class Analyzer(Protocol):
    """Anything that can analyze one encoded payload."""

    async def analyze(self, encoded_payload: str, mime_type: str | None = None) -> AnalysisResult:
        ...


class StoreEvent(str, Enum):
    """Kinds of change reported to subscribers."""

    ADDED = "added"
    UPDATED = "updated"
    REMOVED = "removed"


Listener = Callable[[StoreEvent, AnalysisItem], None]


@dataclass(frozen=True)
class Outcome:
    """Completion of one analysis call, addressed to one item.

    Exactly one of ``result`` and ``error`` is set.
    """

    item_id: str
    result: AnalysisResult | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.result is not None


# =============================================================================
# Item Store
# =============================================================================


class ItemStore:
    """Ordered collection of analysis items with concurrent dispatch.

    All methods must be called from the event loop that runs the analysis
    tasks. Removal never waits for, and by default never cancels, an
    in-flight call.

    Attributes:
        analyzer: Object performing the analysis calls.
        max_concurrency: Maximum simultaneous calls, None or 0 for unbounded.
    """

    def __init__(self, analyzer: Analyzer, max_concurrency: int | None = None) -> None:
        self.analyzer = analyzer
        self.max_concurrency = max_concurrency or None
        self._items: dict[str, AnalysisItem] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._listeners: list[Listener] = []
        self._completions: asyncio.Queue[Outcome] | None = None
        self._consumer: asyncio.Task[None] | None = None
        self._semaphore: asyncio.Semaphore | None = None

    # -------------------------------------------------------------------------
    # Read access
    # -------------------------------------------------------------------------

    @property
    def items(self) -> list[AnalysisItem]:
        """Snapshot of the items in submission order."""
        return list(self._items.values())

    def get(self, item_id: str) -> AnalysisItem | None:
        return self._items.get(item_id)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[AnalysisItem]:
        return iter(self.items)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def counts(self) -> dict[AnalysisStatus, int]:
        """Count items per status, including statuses with no items."""
        counts = {status: 0 for status in AnalysisStatus}
        for item in self._items.values():
            counts[item.status] += 1
        return counts

    @property
    def in_flight(self) -> int:
        """Number of dispatched calls that have not completed."""
        return len(self._tasks)

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener.

        Returns:
            A callable that unregisters the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: StoreEvent, item: AnalysisItem) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, item)
            except Exception:
                logger.exception(f"Store listener failed on {event.value} for item {item.id}")

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def add_batch(self, payloads: Iterable[MediaPayload]) -> list[AnalysisItem]:
        """Append one item per payload and dispatch its analysis.

        Items are created in the ``analyzing`` state, appended after the
        existing items in submission order, and the method returns before
        any analysis completes.

        Args:
            payloads: Ingested payloads in submission order.

        Returns:
            The newly created items.

        Raises:
            RuntimeError: If called with a non-empty batch outside a running event loop.
        """
        payloads = list(payloads)
        if not payloads:
            return []

        loop = asyncio.get_running_loop()
        completions = self._ensure_consumer(loop)

        created: list[AnalysisItem] = []
        for payload in payloads:
            item = AnalysisItem.from_payload(payload)
            self._items[item.id] = item
            created.append(item)
            self._notify(StoreEvent.ADDED, item)

        for item, payload in zip(created, payloads):
            self._tasks[item.id] = loop.create_task(
                self._run(item.id, payload, completions), name=f"singleshot-analyze-{item.id}"
            )

        logger.debug(f"Dispatched {len(created)} analysis task(s), {len(self._items)} item(s) total")
        return created

    def remove(self, item_id: str, cancel: bool = False) -> bool:
        """Remove an item.

        The item's in-flight call, if any, keeps running and its outcome is
        discarded on arrival unless ``cancel`` is True.

        Args:
            item_id: Id of the item to remove.
            cancel: Cancel the in-flight call as well.

        Returns:
            True if an item was removed, False if no such item existed.
        """
        item = self._items.pop(item_id, None)
        if item is None:
            return False

        if cancel:
            task = self._tasks.pop(item_id, None)
            if task is not None:
                task.cancel()
                logger.debug(f"Cancelled in-flight analysis for {item_id}")

        self._notify(StoreEvent.REMOVED, item)
        return True

    async def join(self) -> None:
        """Wait until every dispatched call has completed and been applied."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)
        if self._completions is not None:
            await self._completions.join()

    async def aclose(self) -> None:
        """Cancel outstanding calls and stop the completion consumer."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if self._consumer is not None:
            self._consumer.cancel()
            await asyncio.gather(self._consumer, return_exceptions=True)
            self._consumer = None
            self._completions = None

    # -------------------------------------------------------------------------
    # Dispatch and completion
    # -------------------------------------------------------------------------

    def _ensure_consumer(self, loop: asyncio.AbstractEventLoop) -> asyncio.Queue[Outcome]:
        """Start the completion consumer if needed and return its queue."""
        if self._completions is None or self._consumer is None or self._consumer.done():
            self._completions = asyncio.Queue()
            self._consumer = loop.create_task(
                self._consume(self._completions), name="singleshot-completions"
            )
        if self.max_concurrency and self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrency)
        return self._completions

    async def _call_analyzer(self, payload: MediaPayload) -> AnalysisResult:
        if self._semaphore is None:
            return await self.analyzer.analyze(payload.encoded_payload, payload.mime_type)
        async with self._semaphore:
            return await self.analyzer.analyze(payload.encoded_payload, payload.mime_type)

    async def _run(
        self, item_id: str, payload: MediaPayload, completions: asyncio.Queue[Outcome]
    ) -> None:
        """Perform one call and enqueue its outcome."""
        try:
            result = await self._call_analyzer(payload)
            outcome = Outcome(item_id, result=result)
        except AnalysisError as e:
            logger.info(f"Analysis of {payload.filename} failed: {e.message}")
            outcome = Outcome(item_id, error=e.message)
        except Exception:
            logger.exception(f"Unexpected error analyzing {payload.filename}")
            outcome = Outcome(item_id, error=GENERIC_FAILURE_MESSAGE)
        finally:
            self._tasks.pop(item_id, None)

        completions.put_nowait(outcome)

    async def _consume(self, completions: asyncio.Queue[Outcome]) -> None:
        while True:
            outcome = await completions.get()
            try:
                self._apply(outcome)
            finally:
                completions.task_done()

    def _apply(self, outcome: Outcome) -> None:
        """Apply an outcome to its item, the only writer of terminal states."""
        item = self._items.get(outcome.item_id)
        if item is None:
            logger.debug(f"Discarding outcome for removed item {outcome.item_id}")
            return

        if item.is_terminal:
            logger.debug(f"Ignoring late outcome for {item.status.value} item {item.id}")
            return

        if outcome.succeeded:
            item.mark_success(outcome.result)
        else:
            item.mark_error(outcome.error or GENERIC_FAILURE_MESSAGE)

        self._notify(StoreEvent.UPDATED, item)
