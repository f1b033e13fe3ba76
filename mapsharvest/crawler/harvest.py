"""
Run orchestration and CLI.

One run: bootstrap a session, resolve consent on the application root, then
for each query in order navigate, collect candidate links, extract within the
query's share of the time budget, reconcile background enrichment and emit the
records. The session is closed exactly once, whatever happens.

Usage:
    mapsharvest --term coffee --term bakery --location Berlin
    mapsharvest --url "https://www.google.com/maps/search/pizza+in+Rome"
    mapsharvest --queries queries.txt --max-results 40 --min-rating 4.2
"""

import argparse
import asyncio
import json
import sys
import time
import traceback
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from pydantic import ValidationError

from mapsharvest.core.budget import TermPlan, TimeBudget
from mapsharvest.core.config import Config, get_config
from mapsharvest.core.errors import HarvestError, NavigationFailed, SessionConnectionError
from mapsharvest.core.error_logger import get_error_logger
from mapsharvest.core.error_models import ErrorComponent, ErrorSeverity, ErrorStage
from mapsharvest.core.logging import get_logger, init_harvest_logging
from mapsharvest.core.models import ExtractionRecord, Query, QueryOutcome, RunReport, RunStatus
from mapsharvest.core.process_logger import ProcessLogger, get_process_logger
from mapsharvest.core.process_models import ProcessStatus, ProcessStep
from mapsharvest.crawler.collector import PaginationCollector
from mapsharvest.crawler.consent import ConsentNavigator
from mapsharvest.crawler.dedup import DedupLedger
from mapsharvest.crawler.extractor import FieldExtractor, PlaceExtractor
from mapsharvest.crawler.file_manager import (
    EVENT_PLACE_SCRAPED,
    EVENT_REVIEW_SCRAPED,
    EVENT_RUN_STARTED,
    DirectoryDebugSink,
    JsonlResultSink,
    ResultSink,
    capture_checkpoint,
    read_queries_from_file,
)
from mapsharvest.crawler.scheduler import ExtractionScheduler
from mapsharvest.crawler.selectors import RESULTS_SELECTORS
from mapsharvest.crawler.session import PlaywrightLauncher, SessionLauncher, bootstrap
from mapsharvest.crawler.url_utils import canonical_item_link, domain_of, is_item_link, root_url
from mapsharvest.enrichment.email_lookup import EmailLookupProvider
from mapsharvest.enrichment.enricher import EnrichmentSubsystem, LookupProvider
from mapsharvest.utils.filters import VALID_STATUSES, filter_by_rating, filter_by_status

logger = get_logger(__name__)


class _Run:
    """Collaborators and shared state for one harvest run."""

    def __init__(self, config: Config, budget: TimeBudget, run_id: str, sink: ResultSink,
                 debug_sink, enricher: Optional[EnrichmentSubsystem],
                 min_rating: Optional[float], status: Optional[str]):
        self.config = config
        self.settings = config.budget_settings()
        self.budget = budget
        self.run_id = run_id
        self.sink = sink
        self.debug_sink = debug_sink
        self.enricher = enricher
        self.min_rating = min_rating
        self.status = status
        self.ledger = DedupLedger()
        self.error_logger = get_error_logger()
        self.process_logger = get_process_logger()


async def harvest(
    queries: Iterable[Query],
    config: Optional[Config] = None,
    extractor: Optional[FieldExtractor] = None,
    sink: Optional[ResultSink] = None,
    debug_sink=None,
    launcher: Optional[SessionLauncher] = None,
    lookup_provider: Optional[LookupProvider] = None,
    clock=time.monotonic,
    min_rating: Optional[float] = None,
    status: Optional[str] = None,
    run_id: Optional[str] = None,
) -> RunReport:
    """
    Harvest every query in order within one shared time budget.

    Only a bootstrap failure or never reaching the application root fails the
    run; everything else degrades to partial results.
    """
    config = config or get_config()
    queries = list(queries)
    run_id = run_id or ProcessLogger.generate_run_id()
    budget = TimeBudget.from_settings(config.budget_settings(), clock=clock)
    report = RunReport(run_id=run_id)

    if sink is None:
        sink = JsonlResultSink(run_id, config.base_out_dir)
    if debug_sink is None and config.debug_screenshots:
        debug_sink = DirectoryDebugSink(run_id, config.base_out_dir)

    own_launcher = launcher is None
    if launcher is None:
        launcher = PlaywrightLauncher(config.language, config.headless, config.nav_timeout_ms)

    own_provider = False
    if lookup_provider is None and config.scrape_emails:
        lookup_provider = EmailLookupProvider()
        own_provider = True
    enricher = None
    if lookup_provider is not None and config.scrape_emails:
        enricher = EnrichmentSubsystem(
            lookup_provider,
            safety_margin_ms=config.safety_margin_ms,
            cap_ms=config.enrichment_cap_ms,
            lookup_timeout_ms=config.lookup_timeout_ms,
            run_id=run_id,
        )

    run = _Run(config, budget, run_id, sink, debug_sink, enricher, min_rating, status)
    run.process_logger.log_step(
        run_id, ProcessStep.RUN_START, status=ProcessStatus.IN_PROGRESS,
        metadata={"queries": len(queries), "budget_ms": budget.usable_ms},
    )
    _charge(run, EVENT_RUN_STARTED, 1, root_url(config.language))

    session = None
    try:
        session = await bootstrap(
            launcher,
            language=config.language,
            relay_url=config.relay_url,
            relay_ready_timeout_ms=config.relay_ready_timeout_ms,
            direct_ready_timeout_ms=config.direct_ready_timeout_ms,
            direct_retries=config.direct_retries,
        )
        run.process_logger.log_step(run_id, ProcessStep.SESSION_READY, metadata={"mode": session.mode.value})
        await capture_checkpoint(session, debug_sink, "initial-load", run_id)

        navigator = ConsentNavigator(nav_timeout_ms=config.nav_timeout_ms, run_id=run_id)
        nav = await navigator.ensure_ready(session, root_url(config.language))
        if nav.consent_seen:
            await capture_checkpoint(session, debug_sink, "post-consent", run_id)

        collector = PaginationCollector(
            max_rounds=config.max_scroll_rounds, budget=budget, debug_sink=debug_sink, run_id=run_id
        )
        scheduler = ExtractionScheduler(
            run.settings,
            budget,
            extractor or PlaceExtractor(),
            nav_timeout_ms=config.nav_timeout_ms,
            content_ready_timeout_ms=config.content_ready_timeout_ms,
            scrape_opening_hours=config.scrape_opening_hours,
            scrape_reviews=config.scrape_reviews,
            reviews_limit=config.reviews_limit,
            run_id=run_id,
        )

        for index, query in enumerate(queries):
            outcome, records = await _run_query(run, session, navigator, collector, scheduler,
                                                query, index, len(queries))
            report.queries.append(outcome)
            report.records.extend(records)

    except (SessionConnectionError, NavigationFailed) as e:
        logger.error(f"[run] fatal: {e}")
        report.status = RunStatus.FAILED
        report.error = str(e)
    finally:
        if enricher is not None:
            await enricher.cancel_all()
        if session is not None:
            await session.close()
        if own_launcher:
            await launcher.aclose()
        if own_provider:
            await lookup_provider.aclose()

    if report.status != RunStatus.FAILED:
        partial = len(report.queries) < len(queries) or any(q.partial for q in report.queries)
        report.status = RunStatus.COMPLETED_PARTIAL if partial else RunStatus.COMPLETED
    report.elapsed_ms = budget.elapsed()

    run.process_logger.log_step(
        run_id, ProcessStep.RUN_COMPLETE,
        status=_process_status(report.status),
        metadata={"status": report.status.value, "records": len(report.records), "error": report.error},
    )
    write_summary = getattr(sink, "write_summary", None)
    if write_summary is not None:
        try:
            write_summary(report.summary())
        except OSError as e:
            logger.warning(f"[run] could not write summary: {e}")

    await run.error_logger.drain()
    await run.process_logger.drain()
    return report


def _process_status(status: RunStatus) -> ProcessStatus:
    if status == RunStatus.FAILED:
        return ProcessStatus.FAILED
    if status == RunStatus.COMPLETED_PARTIAL:
        return ProcessStatus.PARTIAL
    return ProcessStatus.SUCCESS


async def _run_query(run: _Run, session, navigator: ConsentNavigator, collector: PaginationCollector,
                     scheduler: ExtractionScheduler, query: Query, index: int,
                     total: int) -> Tuple[QueryOutcome, List[ExtractionRecord]]:
    label = query.label
    floor_ms = run.settings.safety_margin_ms + run.settings.per_item_cost_ms
    if run.budget.remaining() < floor_ms:
        logger.warning(f"[run] skipping query {index + 1}/{total} ({label}): budget exhausted")
        return QueryOutcome(label=label, skipped=True, note="budget exhausted"), []

    plan = scheduler.plan(index, total)
    run.process_logger.log_step(
        run.run_id, ProcessStep.QUERY_START, query=label, status=ProcessStatus.IN_PROGRESS,
        metadata={"position": f"{index + 1}/{total}", "allowance_ms": round(plan.allowance_ms),
                  "reserve_ms": round(plan.reserve_ms), "max_items": plan.max_items},
    )

    try:
        links, stop_reason = await _collect_links(run, session, navigator, collector, query, index, plan)
        if links is None:
            return QueryOutcome(label=label, skipped=True, note=stop_reason), []

        run.process_logger.log_step(
            run.run_id, ProcessStep.LINKS_COLLECTED, query=label,
            metadata={"links": len(links), "stop_reason": stop_reason},
        )

        records, outcome = await scheduler.run_query(
            session, index, total, label, links, run.ledger, enricher=run.enricher, plan=plan
        )
    except HarvestError as e:
        if e.fatal:
            raise
        return await _query_failed(run, query, e)
    except Exception as e:
        return await _query_failed(run, query, e)

    outcome.collect_stop_reason = stop_reason
    run.process_logger.log_step(
        run.run_id, ProcessStep.EXTRACTION_COMPLETE, query=label,
        status=ProcessStatus.PARTIAL if outcome.partial else ProcessStatus.SUCCESS,
        metadata={"extracted": outcome.extracted, "attempted": outcome.attempted,
                  "candidates": outcome.candidates, "trimmed_to": outcome.trimmed_to,
                  "failures": outcome.failures, "deadline_hit": outcome.deadline_hit},
    )

    if run.enricher is not None:
        summary = await run.enricher.reconcile(records, run.budget)
        outcome.enriched = summary.resolved
        outcome.enrichment_abandoned = summary.timed_out
        run.process_logger.log_step(
            run.run_id, ProcessStep.ENRICHMENT_COMPLETE, query=label,
            metadata={"resolved": summary.resolved, "timed_out": summary.timed_out,
                      "failed": summary.failed, "window_ms": round(summary.window_ms)},
        )

    records = filter_by_rating(records, run.min_rating)
    records = filter_by_status(records, run.status)
    _emit(run, records)
    return outcome, records


async def _query_failed(run: _Run, query: Query, exc: Exception) -> Tuple[QueryOutcome, List[ExtractionRecord]]:
    """Skip a query whose navigation or collection blew up; lookups it started are dropped."""
    logger.warning(f"[run] query {query.label} aborted: {exc}")
    target = query.target_url(run.config.language)
    run.error_logger.log_exception(
        exc,
        component=ErrorComponent.NAVIGATION,
        stage=ErrorStage.NAVIGATE_QUERY,
        domain=domain_of(target),
        url=target,
        run_id=run.run_id,
        severity=ErrorSeverity.ERROR,
    )
    if run.enricher is not None:
        await run.enricher.cancel_all()
    return QueryOutcome(label=query.label, skipped=True, note=str(exc)), []


async def _collect_links(run: _Run, session, navigator: ConsentNavigator, collector: PaginationCollector,
                         query: Query, index: int, plan: TermPlan) -> Tuple[Optional[List[str]], str]:
    """Navigate to the query and gather candidate links. ``(None, reason)`` means skip the query."""
    target = query.target_url(run.config.language)
    nav = await navigator.navigate_query(session, target)
    if not nav.ready:
        return None, "navigation failed"

    if is_item_link(target):
        return [canonical_item_link(target)], "single_place"

    found = await session.wait_for_selector(RESULTS_SELECTORS.item_link, run.config.results_wait_timeout_ms)
    # The application jumps straight to the place page when a search has one hit.
    if not found and is_item_link(session.current_url()):
        logger.info(f"[run] query {query.label} resolved to a single place")
        return [canonical_item_link(session.current_url())], "single_place"

    if not found:
        logger.warning(f"[run] no results for {query.label}")
        await capture_checkpoint(session, run.debug_sink, f"no-results-{index + 1}", run.run_id)
        return [], "no_results"

    deadline_hint = plan.deadline_ms - run.settings.per_item_cost_ms - run.settings.safety_margin_ms
    result = await collector.collect(session, run.config.max_results, deadline_hint=deadline_hint)
    return result.links, result.stop_reason


def _emit(run: _Run, records: List[ExtractionRecord]) -> None:
    """Push records and charge metered events. Sink failures are logged, never raised."""
    for record in records:
        try:
            run.sink.push(record)
        except Exception as e:
            _sink_failed(run, e, ErrorStage.PUSH_RECORD, record.source_link)
            continue
        _charge(run, EVENT_PLACE_SCRAPED, 1, record.source_link)
        if record.review_count:
            _charge(run, EVENT_REVIEW_SCRAPED, record.review_count, record.source_link)


def _charge(run: _Run, name: str, count: int, url: str) -> None:
    try:
        run.sink.charge_event(name, count)
    except Exception as e:
        _sink_failed(run, e, ErrorStage.CHARGE_EVENT, url)


def _sink_failed(run: _Run, exc: Exception, stage: str, url: str) -> None:
    logger.warning(f"[sink] {stage} failed for {url}: {exc}")
    run.error_logger.log_exception(
        exc,
        component=ErrorComponent.SINK,
        stage=stage,
        domain=domain_of(url),
        url=url,
        run_id=run.run_id,
        severity=ErrorSeverity.WARNING,
    )


# -------------------
# CLI
# -------------------
def parse_query_line(line: str) -> Query:
    """
    ``term | location`` or a maps URL.

    Example:
        >>> parse_query_line("coffee | Berlin").label
        'coffee in Berlin'
    """
    s = line.strip()
    if s.startswith(("http://", "https://")):
        return Query(url=s)
    term, sep, location = s.partition("|")
    if not sep:
        raise ValueError(f"expected 'term | location' or a URL, got {line!r}")
    return Query(term=term, location=location)


def build_queries(terms: Optional[List[str]], location: Optional[str], urls: Optional[List[str]],
                  queries_file: Optional[Path] = None) -> List[Query]:
    queries: List[Query] = []
    for term in terms or []:
        queries.append(Query(term=term, location=location))
    for url in urls or []:
        queries.append(Query(url=url))
    if queries_file is not None:
        queries.extend(parse_query_line(line) for line in read_queries_from_file(queries_file))
    return queries


def build_arg_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Deadline-aware map listing harvester.")
    ap.add_argument("--term", action="append", help="Search term (repeatable); needs --location")
    ap.add_argument("--location", help="Location hint for --term searches")
    ap.add_argument("--url", action="append", help="Direct maps URL (repeatable)")
    ap.add_argument("--queries", help="File with one 'term | location' or URL per line")
    ap.add_argument("--max-results", type=int, help="Max links collected per query")
    ap.add_argument("--time-budget-ms", type=int, help="Total wall-clock budget for the run")
    ap.add_argument("--relay-url", help="Relay (proxy) URL to try before a direct connection")
    ap.add_argument("--headed", action="store_true", default=False, help="Show the browser window")
    ap.add_argument("--headless", action="store_true", default=False, help="Force headless (overrides --headed)")
    ap.add_argument("--min-rating", type=float, help="Drop places rated below this")
    ap.add_argument("--status", choices=sorted(VALID_STATUSES), help="Keep only places with this status")
    ap.add_argument("--no-emails", action="store_true", help="Skip website email lookups")
    ap.add_argument("--no-reviews", action="store_true", help="Skip the reviews pass")
    ap.add_argument("--debug-screenshots", action="store_true", help="Save checkpoint screenshots")
    ap.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return ap


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    if args.max_results is not None:
        config.max_results = args.max_results
    if args.time_budget_ms is not None:
        config.time_budget_ms = args.time_budget_ms
    if args.relay_url:
        config.relay_url = args.relay_url
    if args.headed:
        config.headless = False
    if args.headless:
        config.headless = True
    if args.no_emails:
        config.scrape_emails = False
    if args.no_reviews:
        config.scrape_reviews = False
    if args.debug_screenshots:
        config.debug_screenshots = True
    return config


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)

    try:
        config = apply_overrides(get_config(), args)
        config.validate()
    except ValueError as e:
        print(f"[error] {e}", file=sys.stderr)
        return 1

    init_harvest_logging(verbose=args.verbose, log_dir=config.log_dir, level=config.log_level)

    try:
        queries = build_queries(args.term, args.location, args.url, Path(args.queries) if args.queries else None)
    except (ValidationError, ValueError, OSError) as e:
        print(f"[error] invalid query input: {e}", file=sys.stderr)
        return 1
    if not queries:
        print("[error] no queries given (use --term/--location, --url or --queries)", file=sys.stderr)
        return 1

    try:
        report = asyncio.run(harvest(queries, config, min_rating=args.min_rating, status=args.status))
    except KeyboardInterrupt:
        print("\n[abort] KeyboardInterrupt - stopping harvest.")
        return 1
    except Exception as e:
        print(f"[fatal] uncaught error during harvest: {e}")
        traceback.print_exc()
        return 1

    print(json.dumps(report.summary(), indent=2))
    return 1 if report.status == RunStatus.FAILED else 0


if __name__ == "__main__":
    sys.exit(main())
