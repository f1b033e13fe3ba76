"""
Navigation and consent handling.

Drives a Session from wherever it landed to a verified "ready" state on the
listing application. Consent gates come in two shapes: a redirect to a
separate consent host, and an in-app overlay dialog. Both are resolved by an
ordered list of strategies, each an async ``(session) -> bool`` that reports
whether it handled the gate.
"""

import re
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Awaitable, Callable, List, Optional, Sequence

from mapsharvest.core.errors import ConsentUnresolved, HarvestError, NavigationFailed
from mapsharvest.core.error_logger import get_error_logger
from mapsharvest.core.error_models import ErrorComponent, ErrorSeverity, ErrorStage, ErrorType
from mapsharvest.core.logging import get_logger
from mapsharvest.crawler.selectors import CONSENT_SELECTORS, ConsentSelectors
from mapsharvest.crawler.url_utils import domain_of

logger = get_logger(__name__)

ConsentStrategy = Callable[..., Awaitable[bool]]

HEURISTIC_MAX_CLICKS = 5


class ConsentState(str, Enum):
    ENTERING = "entering"
    CONSENT_REDIRECT = "consent_redirect"
    CONSENT_OVERLAY = "consent_overlay"
    READY = "ready"
    FAILED = "failed"


@dataclass
class NavigationResult:
    state: ConsentState
    url: str
    consent_seen: bool = False
    consent_resolved: bool = True
    navigations: int = 0
    strategy: Optional[str] = None

    @property
    def ready(self) -> bool:
        return self.state == ConsentState.READY


def is_consent_url(url: str, selectors: ConsentSelectors = CONSENT_SELECTORS) -> bool:
    """
    Example:
        >>> is_consent_url("https://consent.google.com/ml?continue=https://www.google.com/maps")
        True
    """
    return any(marker in (url or "") for marker in selectors.redirect_url_markers)


def is_app_url(url: str, selectors: ConsentSelectors = CONSENT_SELECTORS) -> bool:
    """
    Example:
        >>> is_app_url("https://www.google.de/maps/search/pizza")
        True
        >>> is_app_url("https://consent.google.com/ml?continue=https://www.google.com/maps")
        False
    """
    if is_consent_url(url, selectors):
        return False
    return re.match(selectors.app_url_pattern, url or "") is not None


async def accept_selector_strategy(session, selectors: ConsentSelectors = CONSENT_SELECTORS,
                                   probe_ms: int = 1000) -> bool:
    """Click the first localized accept/agree control that becomes visible."""
    clicked = await session.click_first_visible(selectors.accept_buttons, probe_ms=probe_ms)
    if clicked:
        logger.info(f"[consent] clicked {clicked}")
        return True
    return False


async def heuristic_button_strategy(session, selectors: ConsentSelectors = CONSENT_SELECTORS,
                                    max_clicks: int = HEURISTIC_MAX_CLICKS, settle_ms: int = 1500) -> bool:
    """
    Click visible buttons with text one at a time until the consent URL is gone.

    Bounded to ``max_clicks`` buttons.
    """
    buttons = await session.visible_button_texts(limit=max_clicks)
    for index, text in buttons[:max_clicks]:
        if not await session.click_button(index):
            continue
        logger.info(f"[consent] heuristic click on button {index} ({text[:40]!r})")
        await session.sleep(settle_ms)
        if not is_consent_url(session.current_url(), selectors):
            return True
    return False


def default_redirect_strategies(selectors: ConsentSelectors = CONSENT_SELECTORS) -> List[ConsentStrategy]:
    return [
        partial(accept_selector_strategy, selectors=selectors),
        partial(heuristic_button_strategy, selectors=selectors),
    ]


def _strategy_name(strategy: ConsentStrategy) -> str:
    func = getattr(strategy, "func", strategy)
    return getattr(func, "__name__", repr(func))


class ConsentNavigator:
    """
    State machine: ENTERING -> (CONSENT_REDIRECT | CONSENT_OVERLAY | READY) -> READY.

    The root navigation is issued at most ``max_navigations`` times. Landing
    on the application with consent still unresolved is logged and tolerated;
    never reaching the application raises NavigationFailed.
    """

    def __init__(
        self,
        selectors: ConsentSelectors = CONSENT_SELECTORS,
        redirect_strategies: Optional[Sequence[ConsentStrategy]] = None,
        nav_timeout_ms: int = 45_000,
        return_timeout_ms: int = 10_000,
        overlay_probe_ms: int = 1_500,
        settle_ms: int = 1_500,
        max_navigations: int = 2,
        run_id: Optional[str] = None,
    ):
        self.selectors = selectors
        self.redirect_strategies = list(redirect_strategies or default_redirect_strategies(selectors))
        self.nav_timeout_ms = nav_timeout_ms
        self.return_timeout_ms = return_timeout_ms
        self.overlay_probe_ms = overlay_probe_ms
        self.settle_ms = settle_ms
        self.max_navigations = max_navigations
        self.run_id = run_id
        self._error_logger = get_error_logger()

    async def ensure_ready(self, session, root: str) -> NavigationResult:
        """Navigate to ``root`` and resolve any consent gate on the way."""
        result = NavigationResult(state=ConsentState.ENTERING, url="")
        await self._drive(session, root, result, stage=ErrorStage.NAVIGATE_ROOT)
        return result

    async def navigate_query(self, session, url: str) -> NavigationResult:
        """
        Navigate to a query URL, handling a consent redirect that shows up mid-run.

        Unlike ``ensure_ready`` this never raises NavigationFailed; the caller
        decides what a failed query navigation means.
        """
        result = NavigationResult(state=ConsentState.ENTERING, url="")
        try:
            await self._drive(session, url, result, stage=ErrorStage.NAVIGATE_QUERY)
        except NavigationFailed as e:
            logger.warning(f"[nav] query navigation failed: {e}")
        return result

    async def _drive(self, session, target: str, result: NavigationResult, stage: str) -> None:
        while True:
            if result.state == ConsentState.ENTERING:
                if result.navigations >= self.max_navigations:
                    result.state = ConsentState.FAILED
                    continue
                result.navigations += 1
                result.state = await self._enter(session, target, stage)

            elif result.state == ConsentState.CONSENT_REDIRECT:
                result.consent_seen = True
                handled = await self._run_redirect_strategies(session, result)
                if handled and await session.wait_for_url(self.selectors.app_url_pattern, self.return_timeout_ms):
                    result.state = await self._classify_app(session)
                elif is_app_url(session.current_url(), self.selectors):
                    result.state = await self._classify_app(session)
                else:
                    if not handled:
                        self._consent_unresolved(session, result, "no consent strategy succeeded")
                    logger.info("[consent] still off the application, re-issuing navigation")
                    result.state = ConsentState.ENTERING

            elif result.state == ConsentState.CONSENT_OVERLAY:
                result.consent_seen = True
                try:
                    clicked = await session.click_first_visible(
                        self.selectors.overlay_buttons, probe_ms=self.overlay_probe_ms
                    )
                except Exception as e:
                    logger.warning(f"[consent] overlay click raised {type(e).__name__}: {e}")
                    clicked = None
                if clicked:
                    logger.info(f"[consent] dismissed overlay via {clicked}")
                    result.strategy = result.strategy or "overlay"
                    await session.sleep(self.settle_ms)
                else:
                    self._consent_unresolved(session, result, "overlay could not be dismissed")
                result.state = ConsentState.READY

            elif result.state == ConsentState.READY:
                result.url = session.current_url()
                logger.info(f"[nav] ready at {result.url}")
                return

            else:
                result.url = session.current_url()
                msg = f"application never reached after {result.navigations} navigation(s), stuck at {result.url}"
                if stage == ErrorStage.NAVIGATE_ROOT:
                    logger.error(f"[nav] {msg}")
                    self._error_logger.log_error(
                        component=ErrorComponent.NAVIGATION,
                        stage=stage,
                        error_type=ErrorType.NAVIGATION_ERROR,
                        domain=domain_of(target),
                        message=msg,
                        url=target,
                        run_id=self.run_id,
                        severity=ErrorSeverity.CRITICAL,
                    )
                raise NavigationFailed(msg, url=target)

    async def _enter(self, session, target: str, stage: str) -> ConsentState:
        try:
            await session.navigate(target, wait_until="domcontentloaded", timeout_ms=self.nav_timeout_ms)
        except HarvestError as e:
            logger.warning(f"[nav] navigation to {target} failed: {e}")
            self._error_logger.log_exception(
                e,
                component=ErrorComponent.NAVIGATION,
                stage=stage,
                domain=domain_of(target),
                url=target,
                run_id=self.run_id,
                severity=ErrorSeverity.WARNING,
            )
            return ConsentState.ENTERING
        await session.sleep(self.settle_ms)

        url = session.current_url()
        if is_consent_url(url, self.selectors):
            logger.info(f"[consent] redirected to consent page: {url}")
            return ConsentState.CONSENT_REDIRECT
        if is_app_url(url, self.selectors):
            return await self._classify_app(session)
        logger.warning(f"[nav] landed off the application: {url}")
        return ConsentState.ENTERING

    async def _classify_app(self, session) -> ConsentState:
        """On the application: either an overlay blocks it or it is ready."""
        probe = ", ".join(self.selectors.overlay_buttons)
        try:
            overlay = await session.wait_for_selector(probe, timeout_ms=self.overlay_probe_ms)
        except Exception as e:
            logger.warning(f"[consent] overlay check raised {type(e).__name__}: {e}, treating page as ready")
            return ConsentState.READY
        return ConsentState.CONSENT_OVERLAY if overlay else ConsentState.READY

    async def _run_redirect_strategies(self, session, result: NavigationResult) -> bool:
        """First strategy reporting success wins; one that raises counts as not handled."""
        for strategy in self.redirect_strategies:
            name = _strategy_name(strategy)
            try:
                handled = await strategy(session)
            except Exception as e:
                self._strategy_raised(session, name, e)
                continue
            if handled:
                result.strategy = name
                return True
            logger.debug(f"[consent] strategy {name} did not handle the gate")
        return False

    def _strategy_raised(self, session, name: str, exc: Exception) -> None:
        url = session.current_url()
        logger.warning(f"[consent] strategy {name} raised {type(exc).__name__}: {exc}")
        self._error_logger.log_exception(
            exc,
            component=ErrorComponent.NAVIGATION,
            stage=ErrorStage.RESOLVE_CONSENT,
            domain=domain_of(url),
            url=url,
            run_id=self.run_id,
            severity=ErrorSeverity.WARNING,
            error_type=ErrorType.CONSENT_UNRESOLVED,
            metadata={"strategy": name},
        )

    def _consent_unresolved(self, session, result: NavigationResult, reason: str) -> None:
        result.consent_resolved = False
        url = session.current_url()
        err = ConsentUnresolved(reason, url=url)
        logger.warning(f"[consent] {reason} (continuing)")
        self._error_logger.log_exception(
            err,
            component=ErrorComponent.NAVIGATION,
            stage=ErrorStage.RESOLVE_CONSENT,
            domain=domain_of(url),
            url=url,
            run_id=self.run_id,
            severity=ErrorSeverity.WARNING,
            error_type=ErrorType.CONSENT_UNRESOLVED,
        )
