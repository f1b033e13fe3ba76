"""
Scroll-based pagination over the results feed.

Each round harvests the item links currently in the DOM, checks for an
end-of-list marker, and either advances the feed with a normal scroll or,
once rounds stop producing new links, walks a ladder of progressively more
disruptive recovery steps.
"""

from dataclasses import dataclass, field
from functools import partial
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from mapsharvest.core.budget import TimeBudget
from mapsharvest.core.error_logger import get_error_logger
from mapsharvest.core.error_models import ErrorComponent, ErrorSeverity, ErrorStage
from mapsharvest.core.logging import get_logger
from mapsharvest.crawler.file_manager import capture_checkpoint
from mapsharvest.crawler.selectors import RESULTS_SELECTORS, ResultsSelectors
from mapsharvest.crawler.url_utils import canonical_item_link, domain_of, is_item_link

logger = get_logger(__name__)

STOP_TARGET = "target"
STOP_END_MARKER = "end_marker"
STOP_STALLED = "stalled"
STOP_MAX_ROUNDS = "max_rounds"
STOP_DEADLINE = "deadline"

BASE_PAUSE_MS = 1_500
LONG_PAUSE_MS = 2_500
STALL_PAUSE_MS = 2_500
LONG_PAUSE_EVERY = 5

HARVEST_LINKS_JS = """
(sel) => Array.from(document.querySelectorAll(sel))
  .map(a => a.href)
  .filter(h => !!h)
"""

END_OF_LIST_JS = """
(cfg) => {
  const hasEndText = (t) => cfg.texts.some(x => (t || '').includes(x));
  for (const sel of cfg.markers) {
    const el = document.querySelector(sel);
    if (el && hasEndText(el.textContent)) return 'end-element';
  }
  const feed = document.querySelector('[role="feed"]');
  if (feed && feed.lastElementChild && hasEndText(feed.lastElementChild.textContent)) {
    return 'feed-last-child';
  }
  for (const sel of cfg.noResults) {
    if (document.querySelector(sel)) return 'no-results';
  }
  return '';
}
"""

SCROLL_CONTAINER_JS = """
(cfg) => {
  for (const sel of cfg.containers) {
    const c = document.querySelector(sel);
    if (c && c.scrollHeight > c.clientHeight) {
      c.scrollBy(0, cfg.step);
      return sel;
    }
  }
  const main = document.querySelector('[role="main"]');
  if (main) {
    for (const d of main.querySelectorAll('div')) {
      if (d.scrollHeight > d.clientHeight + 100) {
        d.scrollBy(0, cfg.step);
        return 'main-div';
      }
    }
  }
  return null;
}
"""

SCROLL_LAST_LINK_JS = """
(sel) => {
  const links = document.querySelectorAll(sel);
  if (!links.length) return false;
  links[links.length - 1].scrollIntoView({block: 'end'});
  return true;
}
"""

FIND_CONTAINER_JS = """
(containers) => {
  for (const sel of containers) {
    const c = document.querySelector(sel);
    if (c && c.scrollHeight > c.clientHeight) return sel;
  }
  return null;
}
"""


@dataclass
class CollectResult:
    """Links gathered for one query and why collection stopped."""

    links: List[str] = field(default_factory=list)
    rounds: int = 0
    stop_reason: str = ""
    end_marker: str = ""
    stale_rounds: int = 0

    def __len__(self) -> int:
        return len(self.links)


StallStrategy = Callable[..., Awaitable[bool]]


async def scroll_last_link_into_view(session, selectors: ResultsSelectors = RESULTS_SELECTORS) -> bool:
    return bool(await session.evaluate(SCROLL_LAST_LINK_JS, selectors.item_link))


async def keyboard_advance(session, selectors: ResultsSelectors = RESULTS_SELECTORS) -> bool:
    """Focus the scroll container, then press End and PageDown."""
    container = await session.evaluate(FIND_CONTAINER_JS, list(selectors.containers))
    pressed = False
    for key in ("End", "PageDown", "PageDown"):
        pressed = await session.press_key(key, focus_selector=container) or pressed
    return pressed


async def click_show_more(session, selectors: ResultsSelectors = RESULTS_SELECTORS) -> bool:
    clicked = await session.click_first_visible(selectors.show_more, probe_ms=500)
    if clicked:
        logger.info(f"[collect] clicked show-more control {clicked}")
    return clicked is not None


def default_stall_ladder(selectors: ResultsSelectors = RESULTS_SELECTORS) -> List[Tuple[int, StallStrategy]]:
    """(stale-round threshold, strategy) pairs, lowest threshold first."""
    return [
        (3, partial(scroll_last_link_into_view, selectors=selectors)),
        (5, partial(keyboard_advance, selectors=selectors)),
        (7, partial(click_show_more, selectors=selectors)),
    ]


class PaginationCollector:
    """
    Collect up to ``target_count`` unique, canonical item links.

    Example:
        >>> collector = PaginationCollector(max_rounds=80)
        >>> # result = await collector.collect(session, 120, deadline_hint=plan.deadline_ms)
        >>> # result.stop_reason in ("target", "end_marker", "stalled", "max_rounds", "deadline")
    """

    def __init__(
        self,
        selectors: ResultsSelectors = RESULTS_SELECTORS,
        max_rounds: int = 80,
        ladder: Optional[Sequence[Tuple[int, StallStrategy]]] = None,
        give_up_after: int = 9,
        scroll_step: int = 2_000,
        budget: Optional[TimeBudget] = None,
        debug_sink=None,
        run_id: Optional[str] = None,
    ):
        if max_rounds <= 0:
            raise ValueError("max_rounds must be positive")
        self.selectors = selectors
        self.max_rounds = max_rounds
        self.ladder = sorted(ladder if ladder is not None else default_stall_ladder(selectors), key=lambda r: r[0])
        self.give_up_after = give_up_after
        self.scroll_step = scroll_step
        self.budget = budget
        self.debug_sink = debug_sink
        self.run_id = run_id
        self._error_logger = get_error_logger()

    async def collect(self, session, target_count: int, deadline_hint: Optional[float] = None) -> CollectResult:
        result = CollectResult()
        if target_count <= 0:
            result.stop_reason = STOP_TARGET
            return result

        seen = set()
        stale = 0

        for round_no in range(1, self.max_rounds + 1):
            result.rounds = round_no

            added = 0
            for link in await self._harvest(session):
                if len(result.links) >= target_count:
                    break
                if link in seen:
                    continue
                seen.add(link)
                result.links.append(link)
                added += 1

            stale = 0 if added else stale + 1
            result.stale_rounds = stale

            if len(result.links) >= target_count:
                result.stop_reason = STOP_TARGET
                break

            marker = await self._end_marker(session)
            if marker:
                logger.info(f"[collect] end of results ({marker}) at {len(result.links)} links, round {round_no}")
                result.stop_reason = STOP_END_MARKER
                result.end_marker = marker
                break

            if stale >= self.give_up_after:
                logger.info(f"[collect] no new links after {stale} rounds, stopping at {len(result.links)}")
                await capture_checkpoint(
                    session, self.debug_sink, f"scroll-stale-{len(result.links)}", self.run_id
                )
                result.stop_reason = STOP_STALLED
                break

            if self._deadline_passed(deadline_hint):
                logger.info(f"[collect] deadline reached at {len(result.links)} links, round {round_no}")
                result.stop_reason = STOP_DEADLINE
                break

            rung = self._rung_for(stale)
            handled = False
            if rung is not None:
                threshold, strategy = rung
                handled = await self._recover(session, strategy, threshold, stale)
            if not handled:
                await self._scroll(session, round_no)

            if round_no % LONG_PAUSE_EVERY == 0:
                logger.info(f"[collect] progress: {len(result.links)} links after {round_no} rounds (stale={stale})")
            await session.sleep(self._pause_ms(round_no, stale))
        else:
            result.stop_reason = STOP_MAX_ROUNDS

        logger.info(f"[collect] done: {len(result.links)} links in {result.rounds} rounds ({result.stop_reason})")
        return result

    def _rung_for(self, stale: int) -> Optional[Tuple[int, StallStrategy]]:
        current = None
        for rung in self.ladder:
            if stale >= rung[0]:
                current = rung
        return current

    def _pause_ms(self, round_no: int, stale: int) -> int:
        if stale >= (self.ladder[0][0] if self.ladder else self.give_up_after):
            return STALL_PAUSE_MS
        if round_no % LONG_PAUSE_EVERY == 0:
            return LONG_PAUSE_MS
        return BASE_PAUSE_MS

    def _deadline_passed(self, deadline_hint: Optional[float]) -> bool:
        if deadline_hint is None or self.budget is None:
            return False
        return self.budget.is_past(deadline_hint)

    async def _harvest(self, session) -> List[str]:
        try:
            hrefs = await session.evaluate(HARVEST_LINKS_JS, self.selectors.item_link) or []
        except Exception as e:
            logger.warning(f"[collect] link harvest failed: {e}")
            self._log(e, ErrorStage.HARVEST_LINKS, session)
            return []
        links = []
        for href in hrefs:
            canon = canonical_item_link(href)
            if canon and is_item_link(canon):
                links.append(canon)
        return links

    async def _end_marker(self, session) -> str:
        cfg = {
            "markers": list(self.selectors.end_markers),
            "texts": list(self.selectors.end_texts),
            "noResults": list(self.selectors.no_results),
        }
        try:
            return await session.evaluate(END_OF_LIST_JS, cfg) or ""
        except Exception as e:
            logger.debug(f"[collect] end-marker check failed: {e}")
            return ""

    async def _scroll(self, session, round_no: int) -> None:
        cfg = {"containers": list(self.selectors.containers), "step": self.scroll_step}
        try:
            scrolled = await session.evaluate(SCROLL_CONTAINER_JS, cfg)
            if round_no == 1:
                logger.info(f"[collect] scroll container: {scrolled or 'not found'}")
            if round_no % 2 == 0:
                await session.press_key("End")
        except Exception as e:
            logger.warning(f"[collect] scroll failed: {e}")
            self._log(e, ErrorStage.SCROLL_ADVANCE, session)

    async def _recover(self, session, strategy: StallStrategy, threshold: int, stale: int) -> bool:
        name = getattr(getattr(strategy, "func", strategy), "__name__", "strategy")
        logger.info(f"[collect] stalled for {stale} rounds, trying {name} (threshold {threshold})")
        try:
            return bool(await strategy(session))
        except Exception as e:
            logger.warning(f"[collect] recovery step {name} failed: {e}")
            self._log(e, ErrorStage.STALL_RECOVERY, session)
            return False

    def _log(self, exc: Exception, stage: str, session) -> None:
        url = session.current_url()
        self._error_logger.log_exception(
            exc,
            component=ErrorComponent.COLLECTOR,
            stage=stage,
            domain=domain_of(url),
            url=url,
            run_id=self.run_id,
            severity=ErrorSeverity.WARNING,
        )
