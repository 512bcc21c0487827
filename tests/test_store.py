"""Tests for the item store and its completion handling."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from singleshot.ai.errors import MalformedResponseError, TransportError
from singleshot.ai.parsing import parse_analysis
from singleshot.models import AnalysisResult, AnalysisStatus, MediaPayload
from singleshot.store import ItemStore, Outcome, StoreEvent

from conftest import ControlledAnalyzer, make_payload, settle


def final_state(store: ItemStore) -> list[tuple[str, str, str | None, str | None]]:
    """Comparable summary of the store contents."""
    return [
        (
            item.filename,
            item.status.value,
            item.result.title if item.result else None,
            item.error_message,
        )
        for item in store.items
    ]


class TestAddBatch:
    """Tests for adding items."""

    def test_items_added_in_order_and_analyzing(
        self, analyzer: ControlledAnalyzer, payloads: list[MediaPayload]
    ) -> None:
        async def scenario() -> None:
            store = ItemStore(analyzer)
            items = store.add_batch(payloads)

            assert [item.filename for item in items] == ["a.jpg", "b.jpg", "c.jpg"]
            assert [item.filename for item in store.items] == ["a.jpg", "b.jpg", "c.jpg"]
            assert all(item.status == AnalysisStatus.ANALYZING for item in store)
            assert len(store) == 3
            await store.aclose()

        asyncio.run(scenario())

    def test_one_call_per_item(
        self, analyzer: ControlledAnalyzer, payloads: list[MediaPayload]
    ) -> None:
        async def scenario() -> None:
            store = ItemStore(analyzer)
            store.add_batch(payloads)
            await settle()

            assert sorted(analyzer.calls) == sorted(p.encoded_payload for p in payloads)
            await store.aclose()

        asyncio.run(scenario())

    def test_second_batch_appends_without_touching_existing(
        self, analyzer: ControlledAnalyzer, sample_result: AnalysisResult
    ) -> None:
        first = [make_payload("a.jpg"), make_payload("b.jpg")]
        second = [make_payload("c.jpg")]

        async def scenario() -> None:
            store = ItemStore(analyzer)
            store.add_batch(first)
            await settle()
            analyzer.succeed(first[0], sample_result)
            await settle()
            before = final_state(store)

            store.add_batch(second)

            assert final_state(store)[:2] == before
            assert [item.filename for item in store] == ["a.jpg", "b.jpg", "c.jpg"]
            await store.aclose()

        asyncio.run(scenario())

    def test_empty_batch(self, analyzer: ControlledAnalyzer) -> None:
        store = ItemStore(analyzer)

        assert store.add_batch([]) == []
        assert len(store) == 0

    def test_batch_after_close_gets_fresh_completion_queue(
        self, analyzer: ControlledAnalyzer, sample_result: AnalysisResult
    ) -> None:
        first, second = make_payload("first.jpg"), make_payload("second.jpg")

        async def scenario() -> ItemStore:
            store = ItemStore(analyzer)
            store.add_batch([first])
            await settle()
            await store.aclose()

            store.add_batch([second])
            await settle()
            analyzer.succeed(second, sample_result)
            await store.join()
            await store.aclose()
            return store

        store = asyncio.run(scenario())
        closed, reopened = store.items

        assert closed.status == AnalysisStatus.ANALYZING
        assert reopened.status == AnalysisStatus.SUCCESS
        assert reopened.result == sample_result


class TestCompletion:
    """Tests for applying outcomes."""

    def test_success_and_error_recorded(
        self,
        analyzer: ControlledAnalyzer,
        payloads: list[MediaPayload],
        sample_result: AnalysisResult,
    ) -> None:
        async def scenario() -> ItemStore:
            store = ItemStore(analyzer)
            store.add_batch(payloads)
            await settle()
            analyzer.succeed(payloads[0], sample_result)
            analyzer.fail(payloads[1], TransportError("Gemini unavailable", status_code=503))
            analyzer.fail(payloads[2], RuntimeError("unexpected"))
            await store.join()
            await store.aclose()
            return store

        store = asyncio.run(scenario())
        a, b, c = store.items

        assert a.status == AnalysisStatus.SUCCESS
        assert a.result == sample_result
        assert b.status == AnalysisStatus.ERROR
        assert b.error_message == "Gemini unavailable"
        assert c.status == AnalysisStatus.ERROR
        assert c.error_message == "Analysis failed"

    @pytest.mark.parametrize("order", [(0, 1, 2), (2, 1, 0), (1, 2, 0)])
    def test_final_state_independent_of_completion_order(
        self,
        order: tuple[int, ...],
        payloads: list[MediaPayload],
        sample_result: AnalysisResult,
    ) -> None:
        async def scenario() -> list[Any]:
            analyzer = ControlledAnalyzer()
            store = ItemStore(analyzer)
            store.add_batch(payloads)
            await settle()
            for index in order:
                if index == 1:
                    analyzer.fail(payloads[index], TransportError("bad gateway", status_code=502))
                else:
                    analyzer.succeed(payloads[index], sample_result)
                await settle()
            await store.join()
            await store.aclose()
            return final_state(store)

        assert asyncio.run(scenario()) == [
            ("a.jpg", "success", sample_result.title, None),
            ("b.jpg", "error", None, "bad gateway"),
            ("c.jpg", "success", sample_result.title, None),
        ]

    def test_malformed_response_marks_item_error(
        self, payloads: list[MediaPayload], sample_result_data: dict[str, Any]
    ) -> None:
        del sample_result_data["technicalParams"]

        class ParsingAnalyzer:
            async def analyze(self, encoded_payload: str, mime_type: str | None = None) -> AnalysisResult:
                return parse_analysis(json.dumps(sample_result_data))

        async def scenario() -> ItemStore:
            store = ItemStore(ParsingAnalyzer())
            store.add_batch(payloads[:1])
            await store.join()
            await store.aclose()
            return store

        item = asyncio.run(scenario()).items[0]

        assert item.status == AnalysisStatus.ERROR
        assert "technicalParams" in item.error_message

    def test_late_outcome_for_terminal_item_ignored(
        self, payloads: list[MediaPayload], sample_result: AnalysisResult
    ) -> None:
        async def scenario() -> ItemStore:
            analyzer = ControlledAnalyzer()
            store = ItemStore(analyzer)
            item = store.add_batch(payloads[:1])[0]
            await settle()
            analyzer.fail(payloads[0], MalformedResponseError("bad json"))
            await store.join()
            store._apply(Outcome(item.id, result=sample_result))
            await store.aclose()
            return store

        item = asyncio.run(scenario()).items[0]

        assert item.status == AnalysisStatus.ERROR
        assert item.result is None


class TestRemove:
    """Tests for removing items."""

    def test_remove_in_flight_item_discards_outcome(
        self,
        analyzer: ControlledAnalyzer,
        payloads: list[MediaPayload],
        sample_result: AnalysisResult,
    ) -> None:
        async def scenario() -> ItemStore:
            store = ItemStore(analyzer)
            items = store.add_batch(payloads)
            await settle()

            assert store.remove(items[1].id) is True

            for payload in payloads:
                analyzer.succeed(payload, sample_result)
            await store.join()
            await store.aclose()
            return store

        store = asyncio.run(scenario())

        assert [item.filename for item in store] == ["a.jpg", "c.jpg"]
        assert all(item.status == AnalysisStatus.SUCCESS for item in store)

    def test_remove_with_cancel(
        self, analyzer: ControlledAnalyzer, payloads: list[MediaPayload]
    ) -> None:
        async def scenario() -> tuple[ItemStore, bool]:
            store = ItemStore(analyzer)
            items = store.add_batch(payloads[:1])
            await settle()

            store.remove(items[0].id, cancel=True)
            await settle()
            cancelled = analyzer.futures[payloads[0].encoded_payload].cancelled()
            await store.join()
            await store.aclose()
            return store, cancelled

        store, cancelled = asyncio.run(scenario())

        assert cancelled
        assert len(store) == 0
        assert store.in_flight == 0

    def test_remove_absent_id_is_noop(self, analyzer: ControlledAnalyzer) -> None:
        store = ItemStore(analyzer)

        assert store.remove("does-not-exist") is False


class TestConcurrency:
    """Tests for the optional concurrency cap."""

    def test_unbounded_by_default(self, analyzer: ControlledAnalyzer) -> None:
        payloads = [make_payload(f"{i}.jpg") for i in range(5)]

        async def scenario() -> None:
            store = ItemStore(analyzer)
            store.add_batch(payloads)
            await settle()
            assert analyzer.active == 5
            await store.aclose()

        asyncio.run(scenario())

    def test_cap_limits_simultaneous_calls(
        self, analyzer: ControlledAnalyzer, sample_result: AnalysisResult
    ) -> None:
        payloads = [make_payload(f"{i}.jpg") for i in range(5)]

        async def scenario() -> ItemStore:
            store = ItemStore(analyzer, max_concurrency=2)
            store.add_batch(payloads)
            await settle()
            assert analyzer.active == 2

            while len(analyzer.calls) < len(payloads) or analyzer.active:
                for future in list(analyzer.futures.values()):
                    if not future.done():
                        future.set_result(sample_result)
                await settle()

            await store.join()
            await store.aclose()
            return store

        store = asyncio.run(scenario())

        assert analyzer.peak == 2
        assert store.counts()[AnalysisStatus.SUCCESS] == 5


class TestObservation:
    """Tests for listeners and counters."""

    def test_events_emitted(
        self,
        analyzer: ControlledAnalyzer,
        payloads: list[MediaPayload],
        sample_result: AnalysisResult,
    ) -> None:
        events: list[tuple[StoreEvent, str]] = []

        async def scenario() -> None:
            store = ItemStore(analyzer)
            store.subscribe(lambda event, item: events.append((event, item.filename)))
            items = store.add_batch(payloads[:2])
            await settle()
            analyzer.succeed(payloads[0], sample_result)
            await settle()
            store.remove(items[1].id)
            analyzer.succeed(payloads[1], sample_result)
            await store.join()
            await store.aclose()

        asyncio.run(scenario())

        assert events == [
            (StoreEvent.ADDED, "a.jpg"),
            (StoreEvent.ADDED, "b.jpg"),
            (StoreEvent.UPDATED, "a.jpg"),
            (StoreEvent.REMOVED, "b.jpg"),
        ]

    def test_failing_listener_does_not_break_store(
        self,
        analyzer: ControlledAnalyzer,
        payloads: list[MediaPayload],
        sample_result: AnalysisResult,
    ) -> None:
        def broken(event: StoreEvent, item: Any) -> None:
            raise ValueError("listener bug")

        async def scenario() -> ItemStore:
            store = ItemStore(analyzer)
            store.subscribe(broken)
            store.add_batch(payloads[:1])
            await settle()
            analyzer.succeed(payloads[0], sample_result)
            await store.join()
            await store.aclose()
            return store

        assert asyncio.run(scenario()).items[0].status == AnalysisStatus.SUCCESS

    def test_unsubscribe(self, analyzer: ControlledAnalyzer, payloads: list[MediaPayload]) -> None:
        events: list[StoreEvent] = []

        async def scenario() -> None:
            store = ItemStore(analyzer)
            unsubscribe = store.subscribe(lambda event, item: events.append(event))
            unsubscribe()
            store.add_batch(payloads[:1])
            await store.aclose()

        asyncio.run(scenario())

        assert events == []

    def test_counts(
        self,
        analyzer: ControlledAnalyzer,
        payloads: list[MediaPayload],
        sample_result: AnalysisResult,
    ) -> None:
        async def scenario() -> dict[AnalysisStatus, int]:
            store = ItemStore(analyzer)
            store.add_batch(payloads)
            await settle()
            analyzer.succeed(payloads[0], sample_result)
            analyzer.fail(payloads[1], TransportError("timeout"))
            await settle()
            counts = store.counts()
            await store.aclose()
            return counts

        assert asyncio.run(scenario()) == {
            AnalysisStatus.PENDING: 0,
            AnalysisStatus.ANALYZING: 1,
            AnalysisStatus.SUCCESS: 1,
            AnalysisStatus.ERROR: 1,
        }
