"""
Deadline-aware extraction for one query's candidate links.

Before a query starts, its share of the run's remaining time is computed
(holding back a reserve for queries still to come) and the candidate list is
trimmed to what that share can realistically cover. The item loop then
refuses to start an item once ``now + safety`` would cross the query's
deadline. A failure on one item never aborts the query.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

from mapsharvest.core.budget import BudgetSettings, TermPlan, TimeBudget, max_items, plan_term, pretrim
from mapsharvest.core.errors import ExtractionFailure, HarvestError
from mapsharvest.core.error_logger import get_error_logger
from mapsharvest.core.error_models import ErrorComponent, ErrorSeverity, ErrorStage, ErrorType
from mapsharvest.core.logging import get_logger
from mapsharvest.core.models import ExtractionRecord, QueryOutcome
from mapsharvest.crawler.dedup import DedupLedger
from mapsharvest.crawler.extractor import FieldExtractor
from mapsharvest.crawler.url_utils import domain_of

logger = get_logger(__name__)

REQUIRED_FIELD = "name"


class ExtractionScheduler:
    """
    Runs the per-item extraction loop for each query of a run.

    Example:
        >>> scheduler = ExtractionScheduler(settings, budget, PlaceExtractor())
        >>> # records, outcome = await scheduler.run_query(session, 0, 3, "coffee in Berlin", links, ledger)
        >>> # outcome.attempted <= plan.max_items
    """

    def __init__(
        self,
        settings: BudgetSettings,
        budget: TimeBudget,
        extractor: FieldExtractor,
        nav_timeout_ms: int = 45_000,
        content_ready_selector: str = "h1",
        content_ready_timeout_ms: int = 8_000,
        scrape_opening_hours: bool = True,
        scrape_reviews: bool = True,
        reviews_limit: int = 5,
        hours_pass_factor: float = 1.25,
        reviews_pass_factor: float = 1.5,
        run_id: Optional[str] = None,
    ):
        self.settings = settings
        self.budget = budget
        self.extractor = extractor
        self.nav_timeout_ms = nav_timeout_ms
        self.content_ready_selector = content_ready_selector
        self.content_ready_timeout_ms = content_ready_timeout_ms
        self.scrape_opening_hours = scrape_opening_hours
        self.scrape_reviews = scrape_reviews
        self.reviews_limit = reviews_limit
        self.hours_pass_factor = hours_pass_factor
        self.reviews_pass_factor = reviews_pass_factor
        self.run_id = run_id
        self._error_logger = get_error_logger()

    def plan(self, query_index: int, total: int) -> TermPlan:
        return plan_term(self.budget, self.settings, query_index, total)

    async def run_query(
        self,
        session,
        query_index: int,
        total: int,
        query_label: str,
        links: Sequence[str],
        ledger: DedupLedger,
        enricher=None,
        plan: Optional[TermPlan] = None,
    ) -> Tuple[List[ExtractionRecord], QueryOutcome]:
        """
        Extract records for one query's candidate links.

        Returns the records in collection order and the query's counters.
        Records are emitted by the caller once enrichment has been reconciled.
        """
        plan = plan or self.plan(query_index, total)
        outcome = QueryOutcome(label=query_label, candidates=len(links))

        fresh = [link for link in links if not ledger.seen(link)]
        outcome.skipped_duplicates = len(links) - len(fresh)
        # Collection already spent part of the allowance.
        limit = min(plan.max_items, max_items(self.budget.time_until(plan.deadline_ms), self.settings.per_item_cost_ms))
        work = pretrim(fresh, limit)
        outcome.trimmed_to = len(work)
        if len(work) < len(fresh):
            logger.info(
                f"[schedule] {query_label}: trimmed {len(fresh)} -> {len(work)} items "
                f"(allowance {plan.allowance_ms:.0f}ms, {self.settings.per_item_cost_ms}ms/item)"
            )

        records: List[ExtractionRecord] = []
        for pos, link in enumerate(work):
            if self.budget.is_past(plan.deadline_ms, self.settings.safety_margin_ms):
                outcome.deadline_hit = True
                logger.warning(
                    f"[schedule] {query_label}: term deadline reached after {pos}/{len(work)} items"
                )
                break

            if ledger.seen(link):
                outcome.skipped_duplicates += 1
                continue

            outcome.attempted += 1
            try:
                record = await self._extract_item(session, link, query_label, len(work) - pos - 1, plan)
            except Exception as e:
                outcome.failures += 1
                self._item_failed(e, link, pos, len(work))
                continue

            ledger.mark(link)
            records.append(record)
            outcome.extracted += 1
            logger.info(f"[schedule] [{pos + 1}/{len(work)}] {record.name}")

            if enricher is not None and record.needs_enrichment:
                enricher.schedule(len(records) - 1, record.lookup_key)

        return records, outcome

    async def _extract_item(self, session, link: str, query_label: str, items_left: int,
                            plan: TermPlan) -> ExtractionRecord:
        await session.navigate(link, wait_until="commit", timeout_ms=self.nav_timeout_ms)
        if not await session.wait_for_selector(self.content_ready_selector, self.content_ready_timeout_ms):
            logger.debug(f"[schedule] content-ready signal missing for {link}, extracting anyway")

        fields = await self.extractor.extract(session)
        if not fields or not fields.get(REQUIRED_FIELD):
            raise ExtractionFailure(f"missing required field '{REQUIRED_FIELD}'", url=link)

        await self._secondary_passes(session, fields, items_left, plan, link)

        email = fields.get("email")
        return ExtractionRecord(
            fields=fields,
            source_link=link,
            query_label=query_label,
            emails=[email] if email else [],
            lookup_key=fields.get("website") or None,
        )

    def _pass_allowed(self, items_left: int, plan: TermPlan, factor: float) -> bool:
        remaining_for_term = self.budget.time_until(plan.deadline_ms) - self.settings.safety_margin_ms
        needed = items_left * self.settings.per_item_cost_ms * factor
        return remaining_for_term > 0 and remaining_for_term >= needed

    async def _secondary_passes(self, session, fields: Dict[str, Any], items_left: int,
                                plan: TermPlan, link: str) -> None:
        hours_pass = getattr(self.extractor, "extract_opening_hours", None)
        if (self.scrape_opening_hours and hours_pass is not None
                and fields.get("opening_hours") and not isinstance(fields.get("opening_hours"), dict)):
            if self._pass_allowed(items_left, plan, self.hours_pass_factor):
                try:
                    schedule = await hours_pass(session)
                    if schedule:
                        fields["opening_hours"] = schedule
                except Exception as e:
                    self._pass_failed(e, "opening_hours", link)
            else:
                logger.debug(f"[schedule] skipping hours pass, {items_left} items left")

        reviews_pass = getattr(self.extractor, "extract_reviews", None)
        if self.scrape_reviews and self.reviews_limit > 0 and reviews_pass is not None:
            if self._pass_allowed(items_left, plan, self.reviews_pass_factor):
                try:
                    fields["reviews"] = await reviews_pass(session, self.reviews_limit)
                except Exception as e:
                    fields["reviews"] = []
                    self._pass_failed(e, "reviews", link)
            else:
                logger.debug(f"[schedule] skipping reviews pass, {items_left} items left")

    def _item_failed(self, exc: Exception, link: str, pos: int, total: int) -> None:
        logger.warning(f"[schedule] [{pos + 1}/{total}] skipped {link}: {exc}")
        if isinstance(exc, ExtractionFailure):
            stage, error_type = ErrorStage.EXTRACT_ITEM, ErrorType.MISSING_FIELD
        elif isinstance(exc, HarvestError):
            stage, error_type = ErrorStage.NAVIGATE_ITEM, None
        else:
            stage, error_type = ErrorStage.EXTRACT_ITEM, ErrorType.EXTRACTION_ERROR
        self._error_logger.log_exception(
            exc,
            component=ErrorComponent.SCHEDULER,
            stage=stage,
            domain=domain_of(link),
            url=link,
            run_id=self.run_id,
            severity=ErrorSeverity.WARNING,
            error_type=error_type,
        )

    def _pass_failed(self, exc: Exception, name: str, link: str) -> None:
        logger.warning(f"[schedule] {name} pass failed for {link}: {exc}")
        self._error_logger.log_exception(
            exc,
            component=ErrorComponent.SCHEDULER,
            stage=ErrorStage.SECONDARY_PASS,
            domain=domain_of(link),
            url=link,
            run_id=self.run_id,
            severity=ErrorSeverity.INFO,
            metadata={"pass": name},
        )
