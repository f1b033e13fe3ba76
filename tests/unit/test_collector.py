"""
Unit tests for scroll-based pagination.

The session is scripted: each HARVEST_LINKS_JS evaluate returns the links
"currently in the DOM" for that round, and END_OF_LIST_JS reports markers.
"""

import asyncio
import json

import pytest

from mapsharvest.core.budget import TimeBudget
from mapsharvest.crawler.collector import (
    BASE_PAUSE_MS,
    END_OF_LIST_JS,
    HARVEST_LINKS_JS,
    LONG_PAUSE_MS,
    STALL_PAUSE_MS,
    STOP_DEADLINE,
    STOP_END_MARKER,
    STOP_MAX_ROUNDS,
    STOP_STALLED,
    STOP_TARGET,
    CollectResult,
    PaginationCollector,
)
from tests.fakes import FakeClock, FakeSession, MemoryDebugSink, place_link


def growing_feed(per_round: int):
    """Each harvest call exposes ``per_round`` more links than the last."""
    calls = [0]

    def harvest(selector):
        calls[0] += 1
        return [place_link(i) for i in range(calls[0] * per_round)]

    return harvest


def recording_strategy(name, log, result=True):
    async def strategy(session):
        log.append(name)
        return result
    return strategy


class BrokenDebugSink:
    def save_artifact(self, label, data):
        raise OSError("read-only file system")


def collect(collector, session, target, deadline_hint=None) -> CollectResult:
    return asyncio.run(collector.collect(session, target, deadline_hint=deadline_hint))


class TestStopConditions:
    """Tests for each way collection can end."""

    def test_stops_at_target_without_duplicates(self):
        """Test no more than the target is returned and every link is unique."""
        session = FakeSession()
        session.evaluate_handlers[HARVEST_LINKS_JS] = lambda sel: [place_link(i) for i in range(20)] * 2
        result = collect(PaginationCollector(), session, 7)

        assert result.stop_reason == STOP_TARGET
        assert len(result.links) == 7
        assert len(set(result.links)) == 7
        assert result.rounds == 1

    def test_links_are_canonical_item_links(self):
        """Test non-place hrefs are dropped and tracking params stripped."""
        session = FakeSession()
        session.evaluate_handlers[HARVEST_LINKS_JS] = [
            "https://www.google.com/maps/place/A?authuser=0",
            "https://www.google.com/maps/place/A",
            "https://www.google.com/maps/search/cafe",
            "",
        ]
        session.evaluate_handlers[END_OF_LIST_JS] = "end-element"
        result = collect(PaginationCollector(), session, 10)
        assert result.links == ["https://www.google.com/maps/place/A"]

    def test_end_marker_at_round_k(self):
        """Test an end marker appearing at round k stops collection at round k."""
        session = FakeSession()
        session.evaluate_handlers[HARVEST_LINKS_JS] = growing_feed(5)
        checks = [0]

        def end_marker(cfg):
            checks[0] += 1
            return "end-element" if checks[0] == 4 else ""

        session.evaluate_handlers[END_OF_LIST_JS] = end_marker
        result = collect(PaginationCollector(), session, 100)

        assert result.stop_reason == STOP_END_MARKER
        assert result.end_marker == "end-element"
        assert result.rounds == 4
        assert len(result.links) == 20

    def test_max_rounds(self):
        """Test the round cap ends a feed that never runs dry."""
        session = FakeSession()
        session.evaluate_handlers[HARVEST_LINKS_JS] = growing_feed(2)
        result = collect(PaginationCollector(max_rounds=4), session, 1000)

        assert result.stop_reason == STOP_MAX_ROUNDS
        assert result.rounds == 4
        assert len(result.links) == 8

    def test_deadline(self):
        """Test collection stops once the deadline hint has passed."""
        clock = FakeClock()
        budget = TimeBudget(100_000, clock=clock)
        session = FakeSession()
        session.evaluate_handlers[HARVEST_LINKS_JS] = growing_feed(3)
        clock.advance(50_000)

        result = collect(PaginationCollector(budget=budget), session, 1000, deadline_hint=40_000)
        assert result.stop_reason == STOP_DEADLINE
        assert result.rounds == 1
        assert len(result.links) == 3

    def test_zero_target(self):
        """Test a zero target returns immediately."""
        session = FakeSession()
        result = collect(PaginationCollector(), session, 0)
        assert result.links == []
        assert session.evaluations == []

    def test_rejects_non_positive_max_rounds(self):
        """Test max_rounds must be positive."""
        with pytest.raises(ValueError):
            PaginationCollector(max_rounds=0)


class TestStallRecovery:
    """Tests for the stall ladder and give-up behaviour."""

    def test_ladder_walked_then_gives_up(self):
        """Test rungs fire at 3, 5 and 7 stale rounds and collection stops at 9."""
        session = FakeSession()
        session.evaluate_handlers[HARVEST_LINKS_JS] = [place_link(i) for i in range(3)]
        log = []
        ladder = [
            (3, recording_strategy("last-link", log)),
            (5, recording_strategy("keyboard", log)),
            (7, recording_strategy("show-more", log)),
        ]
        debug = MemoryDebugSink()
        result = collect(PaginationCollector(ladder=ladder, debug_sink=debug), session, 50)

        assert result.stop_reason == STOP_STALLED
        assert result.stale_rounds == 9
        assert result.rounds == 10
        assert len(result.links) == 3
        assert log == ["last-link", "last-link", "keyboard", "keyboard", "show-more", "show-more"]
        assert debug.labels == ["scroll-stale-3"]

    def test_failed_stall_screenshot_logged_with_run_id(self, error_log_dir):
        """Test a stall checkpoint that cannot be saved is logged against the run."""
        session = FakeSession()
        session.evaluate_handlers[HARVEST_LINKS_JS] = [place_link(0)]
        debug = BrokenDebugSink()

        result = collect(PaginationCollector(ladder=[], debug_sink=debug, run_id="run-42"), session, 50)
        assert result.stop_reason == STOP_STALLED
        rows = [json.loads(line) for path in error_log_dir.glob("errors_*.jsonl")
                for line in path.read_text().splitlines() if line]
        stage_rows = [row for row in rows if row["metadata"].get("label", "").startswith("scroll-stale")]
        assert len(stage_rows) == 1
        assert stage_rows[0]["run_id"] == "run-42"

    def test_stall_resets_when_new_links_appear(self):
        """Test a productive round resets the stale counter."""
        session = FakeSession()
        rounds = [0]

        def harvest(selector):
            rounds[0] += 1
            count = 3 if rounds[0] < 5 else 6
            return [place_link(i) for i in range(count)]

        session.evaluate_handlers[HARVEST_LINKS_JS] = harvest
        session.evaluate_handlers[END_OF_LIST_JS] = lambda cfg: "end-element" if rounds[0] == 6 else ""
        log = []
        ladder = [(3, recording_strategy("last-link", log))]
        result = collect(PaginationCollector(ladder=ladder), session, 50)

        assert result.stop_reason == STOP_END_MARKER
        assert len(result.links) == 6
        assert log == ["last-link"]
        assert result.stale_rounds == 1

    def test_failed_rung_falls_back_to_scroll(self):
        """Test a rung that raises is logged and a normal scroll happens instead."""
        session = FakeSession()
        session.evaluate_handlers[HARVEST_LINKS_JS] = [place_link(0)]

        async def broken(session):
            raise RuntimeError("element detached")

        collector = PaginationCollector(ladder=[(1, broken)], give_up_after=3)
        result = collect(collector, session, 50)
        assert result.stop_reason == STOP_STALLED
        assert "End" in session.keys

    def test_harvest_error_counts_as_stale_round(self):
        """Test a failing harvest does not abort collection."""
        session = FakeSession()

        def explode(selector):
            raise RuntimeError("execution context destroyed")

        session.evaluate_handlers[HARVEST_LINKS_JS] = explode
        result = collect(PaginationCollector(ladder=[], give_up_after=2), session, 10)
        assert result.stop_reason == STOP_STALLED
        assert result.links == []


class TestPauses:
    """Tests for inter-round pause lengths."""

    def test_pause_schedule(self):
        """Test the base pause and the longer pause on every fifth round."""
        session = FakeSession()
        session.evaluate_handlers[HARVEST_LINKS_JS] = growing_feed(1)
        collect(PaginationCollector(max_rounds=6), session, 1000)
        assert session.sleeps == [
            BASE_PAUSE_MS, BASE_PAUSE_MS, BASE_PAUSE_MS, BASE_PAUSE_MS, LONG_PAUSE_MS, BASE_PAUSE_MS,
        ]

    def test_stalled_pause(self):
        """Test stalled rounds use the longer pause."""
        session = FakeSession()
        session.evaluate_handlers[HARVEST_LINKS_JS] = [place_link(0)]
        collect(PaginationCollector(give_up_after=5), session, 10)
        assert session.sleeps == [BASE_PAUSE_MS, BASE_PAUSE_MS, BASE_PAUSE_MS, STALL_PAUSE_MS, STALL_PAUSE_MS]
