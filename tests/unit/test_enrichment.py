"""
Unit tests for concurrent enrichment and reconciliation.
"""

import asyncio
import time

import pytest

from mapsharvest.core.budget import TimeBudget
from mapsharvest.core.models import EnrichmentOutcome, ExtractionRecord
from mapsharvest.enrichment.enricher import EnrichmentSubsystem
from tests.fakes import FakeClock, FakeLookupProvider, SlowLogClient


def make_records(n):
    return [
        ExtractionRecord(
            fields={"name": f"Place {i}"},
            source_link=f"https://www.google.com/maps/place/Place+{i}",
            query_label="q",
            lookup_key=f"https://site{i}.example.org",
        )
        for i in range(n)
    ]


class TestWindow:
    """Tests for the reconciliation window."""

    def test_window_capped(self):
        """Test the fixed cap applies when plenty of budget is left."""
        enricher = EnrichmentSubsystem(FakeLookupProvider(), safety_margin_ms=5_000, cap_ms=20_000)
        budget = TimeBudget(200_000, clock=FakeClock())
        assert enricher.window_ms(budget) == 20_000

    def test_window_limited_by_budget(self):
        """Test the remaining budget minus safety wins when it is smaller."""
        clock = FakeClock()
        enricher = EnrichmentSubsystem(FakeLookupProvider(), safety_margin_ms=5_000, cap_ms=20_000)
        budget = TimeBudget(100_000, clock=clock)
        clock.advance(88_000)
        assert enricher.window_ms(budget) == pytest.approx(7_000)
        clock.advance(10_000)
        assert enricher.window_ms(budget) == 0


class TestReconcile:
    """Tests for scheduling and reconciliation."""

    def test_partial_resolution(self):
        """Test J of K lookups finish in the window: exactly J records are patched."""
        slow = {"https://site3.example.org": 30, "https://site4.example.org": 30}
        provider = FakeLookupProvider(delays=slow)
        enricher = EnrichmentSubsystem(provider, safety_margin_ms=0, cap_ms=200)
        records = make_records(5)

        async def scenario():
            for i, record in enumerate(records):
                enricher.schedule(i, record.lookup_key)
            assert enricher.pending == 5
            return await enricher.reconcile(records, TimeBudget(270_000))

        summary = asyncio.run(scenario())
        assert summary.scheduled == 5
        assert summary.resolved == 3
        assert summary.timed_out == 2
        assert [r.emails for r in records] == [
            ["info@site0.example.org"],
            ["info@site1.example.org"],
            ["info@site2.example.org"],
            [],
            [],
        ]
        assert sorted(provider.cancelled) == sorted(slow)

    def test_failed_lookup_leaves_record_untouched(self):
        """Test a lookup that raises counts as failed and never touches its record."""
        provider = FakeLookupProvider(errors=["https://site1.example.org"])
        enricher = EnrichmentSubsystem(provider, safety_margin_ms=0, cap_ms=1_000)
        records = make_records(2)

        async def scenario():
            for i, record in enumerate(records):
                enricher.schedule(i, record.lookup_key)
            return await enricher.reconcile(records, TimeBudget(270_000))

        summary = asyncio.run(scenario())
        assert summary.resolved == 1
        assert summary.failed == 1
        assert records[1].emails == []

    def test_lookups_overlap_with_other_work(self):
        """Test lookups start at schedule time, not at reconcile time."""
        provider = FakeLookupProvider()
        enricher = EnrichmentSubsystem(provider, safety_margin_ms=0, cap_ms=1_000)

        async def scenario():
            enricher.schedule(0, "https://site0.example.org")
            await asyncio.sleep(0)
            return list(provider.calls)

        assert asyncio.run(scenario()) == ["https://site0.example.org"]

    def test_zero_window_abandons_everything(self):
        """Test an exhausted budget gives pending lookups no time at all."""
        clock = FakeClock()
        budget = TimeBudget(10_000, clock=clock)
        clock.advance(10_000)
        provider = FakeLookupProvider(delays={"https://site0.example.org": 30})
        enricher = EnrichmentSubsystem(provider, safety_margin_ms=5_000, cap_ms=20_000)
        records = make_records(1)

        async def scenario():
            job = enricher.schedule(0, records[0].lookup_key)
            summary = await enricher.reconcile(records, budget)
            return job, summary

        job, summary = asyncio.run(scenario())
        assert summary.window_ms == 0
        assert summary.timed_out == 1
        assert job.outcome == EnrichmentOutcome.TIMED_OUT
        assert records[0].emails == []

    def test_reconcile_without_jobs(self):
        """Test reconcile is a no-op when nothing was scheduled."""
        enricher = EnrichmentSubsystem(FakeLookupProvider())
        summary = asyncio.run(enricher.reconcile([], TimeBudget(10_000)))
        assert summary.scheduled == 0

    def test_jobs_cleared_after_reconcile(self):
        """Test a reconciled job is not reconciled again for the next query."""
        provider = FakeLookupProvider()
        enricher = EnrichmentSubsystem(provider, safety_margin_ms=0, cap_ms=1_000)
        records = make_records(1)

        async def scenario():
            enricher.schedule(0, records[0].lookup_key)
            first = await enricher.reconcile(records, TimeBudget(270_000))
            second = await enricher.reconcile(records, TimeBudget(270_000))
            return first, second

        first, second = asyncio.run(scenario())
        assert first.resolved == 1
        assert second.scheduled == 0

    def test_cancel_all(self):
        """Test cancel_all drops every outstanding lookup."""
        provider = FakeLookupProvider(delays={"https://site0.example.org": 30})
        enricher = EnrichmentSubsystem(provider)

        async def scenario():
            enricher.schedule(0, "https://site0.example.org")
            await asyncio.sleep(0)
            await enricher.cancel_all()
            return enricher.pending

        assert asyncio.run(scenario()) == 0
        assert provider.cancelled == ["https://site0.example.org"]

    def test_slow_log_store_does_not_stretch_window(self, isolated_loggers):
        """Test abandoned-lookup log rows shipped to a slow database keep reconcile inside its window."""
        errors, _ = isolated_loggers
        client = SlowLogClient(delay_s=0.3)
        errors._store._client = client
        hung = {f"https://site{i}.example.org": 30 for i in range(4)}
        enricher = EnrichmentSubsystem(FakeLookupProvider(delays=hung), safety_margin_ms=0, cap_ms=200)
        records = make_records(4)

        async def scenario():
            for i, record in enumerate(records):
                enricher.schedule(i, record.lookup_key)
            started = time.monotonic()
            summary = await enricher.reconcile(records, TimeBudget(270_000))
            took = time.monotonic() - started
            await errors.drain(timeout_s=5.0)
            return summary, took

        summary, took = asyncio.run(scenario())
        assert summary.timed_out == 4
        assert took < 0.6
        assert len(client.rows) == 4
