"""
Concurrent enrichment of extracted records.

Lookups are started as background tasks the moment a record is appended, so
they overlap with the browser work on the following items. After a query's
item loop the pending lookups are reconciled inside a window that is capped
both by a fixed ceiling and by what is left of the run's budget. Whatever has
not finished by then is cancelled and the record keeps its empty default.
"""

import asyncio
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from mapsharvest.core.budget import TimeBudget
from mapsharvest.core.errors import EnrichmentTimeout
from mapsharvest.core.error_logger import get_error_logger
from mapsharvest.core.error_models import ErrorComponent, ErrorSeverity, ErrorStage, ErrorType
from mapsharvest.core.logging import get_logger
from mapsharvest.core.models import EnrichmentJob, EnrichmentOutcome, ExtractionRecord
from mapsharvest.crawler.url_utils import domain_of
from mapsharvest.enrichment.email_lookup import DEFAULT_CANDIDATE_PATHS

logger = get_logger(__name__)


class LookupProvider(Protocol):
    async def lookup(self, key: str, candidate_paths: Sequence[str], timeout_ms: int) -> List[str]:
        ...


@dataclass
class EnrichmentSummary:
    scheduled: int = 0
    resolved: int = 0
    timed_out: int = 0
    failed: int = 0
    window_ms: float = 0.0


class EnrichmentSubsystem:
    """
    Schedules lookups and patches their results back by record index.

    Only ``emails`` on the record at a job's own index is ever written, so
    concurrent jobs never touch the same record.
    """

    def __init__(
        self,
        provider: LookupProvider,
        safety_margin_ms: float = 5_000,
        cap_ms: float = 20_000,
        lookup_timeout_ms: int = 5_000,
        candidate_paths: Sequence[str] = DEFAULT_CANDIDATE_PATHS,
        run_id: Optional[str] = None,
    ):
        self.provider = provider
        self.safety_margin_ms = safety_margin_ms
        self.cap_ms = cap_ms
        self.lookup_timeout_ms = lookup_timeout_ms
        self.candidate_paths = tuple(candidate_paths)
        self.run_id = run_id
        self._jobs: List[EnrichmentJob] = []
        self._error_logger = get_error_logger()

    @property
    def pending(self) -> int:
        return sum(1 for j in self._jobs if j.task is not None and not j.task.done())

    def schedule(self, record_index: int, key: str) -> EnrichmentJob:
        """Start the lookup for ``key`` right away; must be called from a running loop."""
        job = EnrichmentJob(record_index=record_index, lookup_key=key)
        job.task = asyncio.create_task(
            self.provider.lookup(key, self.candidate_paths, self.lookup_timeout_ms)
        )
        self._jobs.append(job)
        logger.debug(f"[enrich] scheduled lookup #{record_index} for {key}")
        return job

    def window_ms(self, budget: TimeBudget) -> float:
        return max(min(budget.remaining() - self.safety_margin_ms, self.cap_ms), 0.0)

    async def reconcile(self, records: List[ExtractionRecord], budget: TimeBudget) -> EnrichmentSummary:
        """
        Wait for scheduled lookups up to ``min(remaining - safety, cap)`` and
        patch every record whose lookup resolved in time.
        """
        jobs, self._jobs = self._jobs, []
        summary = EnrichmentSummary(scheduled=len(jobs))
        if not jobs:
            return summary

        summary.window_ms = self.window_ms(budget)
        tasks = [j.task for j in jobs]
        await asyncio.wait(tasks, timeout=summary.window_ms / 1000.0)

        abandoned = []
        for job in jobs:
            task = job.task
            if not task.done():
                task.cancel()
                abandoned.append(task)
                job.outcome = EnrichmentOutcome.TIMED_OUT
                summary.timed_out += 1
                self._log_timeout(job, summary.window_ms)
                continue

            exc = task.exception() if not task.cancelled() else None
            if task.cancelled() or exc is not None:
                job.outcome = EnrichmentOutcome.FAILED
                summary.failed += 1
                logger.warning(f"[enrich] lookup for {job.lookup_key} failed: {exc!r}")
                continue

            job.values = list(task.result() or [])
            job.outcome = EnrichmentOutcome.RESOLVED
            summary.resolved += 1
            if job.values and 0 <= job.record_index < len(records):
                records[job.record_index].emails = job.values

        if abandoned:
            await asyncio.gather(*abandoned, return_exceptions=True)

        logger.info(
            f"[enrich] {summary.resolved}/{summary.scheduled} lookups resolved, "
            f"{summary.timed_out} abandoned, {summary.failed} failed "
            f"(window {summary.window_ms:.0f}ms)"
        )
        return summary

    async def cancel_all(self) -> None:
        """Drop every outstanding lookup (used when a run ends abruptly)."""
        jobs, self._jobs = self._jobs, []
        tasks = [j.task for j in jobs if j.task is not None and not j.task.done()]
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _log_timeout(self, job: EnrichmentJob, window_ms: float) -> None:
        err = EnrichmentTimeout(f"lookup not finished within {window_ms:.0f}ms", url=job.lookup_key)
        self._error_logger.log_exception(
            err,
            component=ErrorComponent.ENRICHMENT,
            stage=ErrorStage.RECONCILE,
            domain=domain_of(job.lookup_key) or "unknown",
            url=job.lookup_key,
            run_id=self.run_id,
            severity=ErrorSeverity.INFO,
            error_type=ErrorType.TIMEOUT,
        )
