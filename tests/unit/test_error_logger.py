"""
Unit tests for structured error and process logging (file fallback).
"""

import asyncio
import json
import time
from pathlib import Path

from mapsharvest.core.error_logger import ErrorLogger
from mapsharvest.core.error_models import (
    ErrorComponent,
    ErrorRecord,
    ErrorSeverity,
    ErrorStage,
    ErrorType,
)
from mapsharvest.core.errors import (
    ConsentUnresolved,
    EnrichmentTimeout,
    ExtractionFailure,
    NavigationFailed,
    NavigationTimeout,
    SessionConnectionError,
)
from mapsharvest.core.log_store import StructuredLogStore, json_safe
from mapsharvest.core.process_logger import ProcessLogger
from mapsharvest.core.process_models import ProcessStatus, ProcessStep, get_step_description
from tests.fakes import SlowLogClient


def read_jsonl(directory: Path, prefix: str):
    rows = []
    for path in directory.glob(f"{prefix}_*.jsonl"):
        rows.extend(json.loads(line) for line in path.read_text("utf-8").splitlines())
    return rows


class TestErrorTaxonomy:
    """Tests for the exception classes."""

    def test_only_session_and_navigation_are_fatal(self):
        """Test which errors end a run."""
        assert SessionConnectionError("x").fatal
        assert NavigationFailed("x").fatal
        for exc in (NavigationTimeout("x"), ConsentUnresolved("x"), ExtractionFailure("x"), EnrichmentTimeout("x")):
            assert not exc.fatal

    def test_url_kept(self):
        """Test errors carry the URL they relate to."""
        assert NavigationTimeout("x", url="https://www.google.com/maps").url == "https://www.google.com/maps"


class TestErrorRecord:
    """Tests for ErrorRecord classification."""

    def test_classification(self):
        """Test exception types map to error categories."""
        cases = [
            (ConsentUnresolved("gate"), ErrorType.CONSENT_UNRESOLVED),
            (NavigationTimeout("slow"), ErrorType.TIMEOUT),
            (SessionConnectionError("down"), ErrorType.CONNECTION_ERROR),
            (NavigationFailed("stuck"), ErrorType.NAVIGATION_ERROR),
            (ExtractionFailure("no name"), ErrorType.EXTRACTION_ERROR),
            (RuntimeError("weird"), ErrorType.UNKNOWN),
        ]
        for exc, expected in cases:
            record = ErrorRecord.from_exception(
                exc, component=ErrorComponent.SCHEDULER, stage=ErrorStage.EXTRACT_ITEM, domain="www.google.com"
            )
            assert record.error_type == expected.value

    def test_stack_only_for_unexpected_errors(self):
        """Test warnings carry no stack trace, critical errors do."""
        try:
            raise RuntimeError("boom")
        except RuntimeError as e:
            warn = ErrorRecord.from_exception(
                e, component=ErrorComponent.SINK, stage="push", domain="x", severity=ErrorSeverity.WARNING
            )
            crit = ErrorRecord.from_exception(
                e, component=ErrorComponent.SINK, stage="push", domain="x", severity=ErrorSeverity.CRITICAL
            )
        assert warn.stack_trace is None
        assert "RuntimeError" in crit.stack_trace

    def test_empty_domain_defaults(self):
        """Test a missing domain is recorded as unknown."""
        record = ErrorRecord.from_exception(
            RuntimeError("x"), component=ErrorComponent.ENRICHMENT, stage=ErrorStage.LOOKUP, domain=""
        )
        assert record.domain == "unknown"


class TestErrorLogger:
    """Tests for ErrorLogger without Supabase."""

    def test_writes_jsonl_fallback(self, tmp_path: Path):
        """Test errors are appended to the dated JSONL file."""
        error_logger = ErrorLogger(fallback_dir=tmp_path)
        assert error_logger.log_error(
            component=ErrorComponent.NAVIGATION,
            stage=ErrorStage.RESOLVE_CONSENT,
            error_type=ErrorType.CONSENT_UNRESOLVED,
            domain="consent.google.com",
            message="No consent strategy succeeded",
            run_id="run-1",
        )
        rows = read_jsonl(tmp_path, "errors")
        assert len(rows) == 1
        assert rows[0]["component"] == "navigation"
        assert rows[0]["error_type"] == "consent_unresolved"
        assert rows[0]["run_id"] == "run-1"

    def test_log_exception_never_raises(self, tmp_path: Path):
        """Test unserializable metadata is stringified instead of failing."""
        error_logger = ErrorLogger(fallback_dir=tmp_path)
        ok = error_logger.log_exception(
            NavigationTimeout("slow"),
            component=ErrorComponent.SCHEDULER,
            stage=ErrorStage.NAVIGATE_ITEM,
            domain="www.google.com",
            metadata={"obj": object()},
        )
        assert ok
        assert read_jsonl(tmp_path, "errors")[0]["metadata"]["obj"].startswith("<object")


class TestProcessLogger:
    """Tests for ProcessLogger without Supabase."""

    def test_log_step(self, tmp_path: Path):
        """Test steps are written with their metadata."""
        process_logger = ProcessLogger(fallback_dir=tmp_path)
        run_id = ProcessLogger.generate_run_id()
        assert process_logger.log_step(
            run_id, ProcessStep.LINKS_COLLECTED, query="coffee in Berlin",
            metadata={"links": 40, "stop_reason": "end_marker"},
        )
        rows = read_jsonl(tmp_path, "process")
        assert rows[0]["run_id"] == run_id
        assert rows[0]["step"] == "links_collected"
        assert rows[0]["status"] == ProcessStatus.SUCCESS.value

    def test_step_description(self):
        """Test descriptions are formatted from metadata and tolerate missing keys."""
        assert get_step_description(ProcessStep.LINKS_COLLECTED, links=40, stop_reason="stalled") == (
            "Collected 40 links (stalled)"
        )
        assert "{links}" in get_step_description(ProcessStep.LINKS_COLLECTED)


class _FailingTable:
    def insert(self, row):
        return self

    def execute(self):
        raise ConnectionError("supabase unreachable")


class _FailingClient:
    def table(self, name):
        return _FailingTable()


class TestStructuredLogStore:
    """Tests for the shared Supabase/JSONL store."""

    def test_without_credentials_uses_files(self, tmp_path: Path):
        """Test rows land in the dated file when no credentials are given."""
        store = StructuredLogStore("t", tmp_path, "rows")
        assert not store.uses_database
        assert store.append({"a": 1})
        assert store.file_path().name.startswith("rows_")
        assert read_jsonl(tmp_path, "rows") == [{"a": 1}]

    def test_failed_insert_falls_back_to_file(self, tmp_path: Path):
        """Test a database error still stores the row locally."""
        store = StructuredLogStore("t", tmp_path, "rows")
        store._client = _FailingClient()
        assert store.append({"step": "run_start"})
        assert read_jsonl(tmp_path, "rows") == [{"step": "run_start"}]

    def test_json_safe(self):
        """Test unencodable values are stringified and the rest kept."""
        out = json_safe({"n": 3, "path": Path("x")})
        assert out == {"n": 3, "path": "x"}

    def test_insert_outside_event_loop_is_immediate(self, tmp_path: Path):
        """Test synchronous callers get the row inserted before append returns."""
        client = SlowLogClient(delay_s=0)
        store = StructuredLogStore("t", tmp_path, "rows")
        store._client = client
        assert store.append({"a": 1})
        assert client.rows == [("t", {"a": 1})]
        assert store.in_flight == 0

    def test_insert_inside_event_loop_does_not_block(self, tmp_path: Path):
        """Test a slow insert runs off the loop and drain waits for it."""
        client = SlowLogClient(delay_s=0.3)
        store = StructuredLogStore("t", tmp_path, "rows")
        store._client = client

        async def scenario():
            started = time.monotonic()
            assert store.append({"step": "query_start"})
            queued_after = time.monotonic() - started
            in_flight = store.in_flight
            left = await store.drain(timeout_s=5.0)
            return queued_after, in_flight, left

        queued_after, in_flight, left = asyncio.run(scenario())
        assert queued_after < 0.1
        assert in_flight == 1
        assert left == 0
        assert client.rows == [("t", {"step": "query_start"})]
        assert read_jsonl(tmp_path, "rows") == []

    def test_drain_without_pending_rows(self, tmp_path: Path):
        store = StructuredLogStore("t", tmp_path, "rows")
        assert asyncio.run(store.drain()) == 0
