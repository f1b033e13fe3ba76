"""
Browser session handle and the bootstrapper that opens it.

The Session class is the only place that talks to Playwright directly. The
rest of the harvester uses its narrow surface (navigate, evaluate,
wait_for_selector, screenshot, current_url and a few interaction helpers), so
tests can substitute an in-memory fake.
"""

import asyncio
import random
import re
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, TimeoutError as PlaywrightTimeoutError, async_playwright

from mapsharvest.core.errors import NavigationTimeout, SessionConnectionError
from mapsharvest.core.error_logger import get_error_logger
from mapsharvest.core.error_models import ErrorComponent, ErrorSeverity, ErrorStage
from mapsharvest.core.logging import get_logger
from mapsharvest.crawler.url_utils import domain_of, parse_relay_url, redact_relay_url, root_url
from mapsharvest.utils.retry import RetryConfig, retry_async_with_backoff

logger = get_logger(__name__)

UA_POOL = [
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_6) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/127 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/126 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/125 Safari/537.36",
]

# Extra seconds allowed on top of a readiness timeout before the whole
# attempt (launch + navigate) is abandoned.
READINESS_SLACK_S = 5.0


class ConnectionMode(str, Enum):
    DIRECT = "direct"
    RELAYED = "relayed"


class Session:
    """
    One browser page owned by the orchestrator for the whole run.

    Closed exactly once; further ``close()`` calls are no-ops.
    """

    def __init__(self, page: Page, mode: ConnectionMode, locale: str, timeout_ms: int, resources: Sequence[Any] = ()):
        self._page = page
        self.mode = mode
        self.locale = locale
        self.timeout_ms = timeout_ms
        self._resources = list(resources)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def navigate(self, url: str, wait_until: str = "domcontentloaded", timeout_ms: Optional[int] = None) -> None:
        try:
            await self._page.goto(url, wait_until=wait_until, timeout=timeout_ms or self.timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationTimeout(f"navigation to {url} timed out", url=url) from e
        except PlaywrightError as e:
            raise NavigationTimeout(f"navigation to {url} failed: {e}", url=url) from e

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        if arg is None:
            return await self._page.evaluate(script)
        return await self._page.evaluate(script, arg)

    async def wait_for_selector(self, selector: str, timeout_ms: int) -> bool:
        try:
            await self._page.wait_for_selector(selector, timeout=timeout_ms)
            return True
        except (PlaywrightTimeoutError, PlaywrightError):
            return False

    async def wait_for_url(self, pattern: str, timeout_ms: int) -> bool:
        try:
            await self._page.wait_for_url(re.compile(pattern), timeout=timeout_ms)
            return True
        except (PlaywrightTimeoutError, PlaywrightError):
            return False

    async def screenshot(self) -> bytes:
        return await self._page.screenshot(full_page=True)

    def current_url(self) -> str:
        return self._page.url

    async def title(self) -> str:
        try:
            return await self._page.title()
        except PlaywrightError:
            return ""

    async def click_first_visible(self, selectors: Sequence[str], probe_ms: int = 1000) -> Optional[str]:
        """Click the first selector whose element becomes visible within ``probe_ms``."""
        for sel in selectors:
            try:
                loc = self._page.locator(sel).first
                await loc.wait_for(state="visible", timeout=probe_ms)
                await loc.click()
                return sel
            except (PlaywrightTimeoutError, PlaywrightError):
                continue
        return None

    async def visible_button_texts(self, limit: int = 5) -> List[Tuple[int, str]]:
        """(index, text) for visible buttons with non-empty text among the first ``limit``."""
        out: List[Tuple[int, str]] = []
        buttons = self._page.locator("button")
        try:
            count = await buttons.count()
        except PlaywrightError as e:
            logger.debug(f"[session] could not list buttons: {e}")
            return out
        for i in range(min(count, limit)):
            btn = buttons.nth(i)
            try:
                if not await btn.is_visible():
                    continue
                text = ((await btn.text_content(timeout=500)) or "").strip()
            except (PlaywrightTimeoutError, PlaywrightError):
                continue
            if text:
                out.append((i, text))
        return out

    async def click_button(self, index: int) -> bool:
        try:
            await self._page.locator("button").nth(index).click(timeout=2000)
            return True
        except (PlaywrightTimeoutError, PlaywrightError):
            return False

    async def press_key(self, key: str, focus_selector: Optional[str] = None) -> bool:
        try:
            if focus_selector:
                await self._page.focus(focus_selector, timeout=1000)
            await self._page.keyboard.press(key)
            return True
        except (PlaywrightTimeoutError, PlaywrightError):
            return False

    async def sleep(self, ms: int) -> None:
        await asyncio.sleep(ms / 1000.0)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for res in self._resources:
            try:
                await res.close()
            except PlaywrightError as e:
                logger.warning(f"[session] close failed for {type(res).__name__}: {e}")
        logger.info(f"[session] closed ({self.mode.value})")


class SessionLauncher(Protocol):
    async def open(self, mode: ConnectionMode, proxy: Optional[Dict[str, str]]) -> Session:
        ...


class PlaywrightLauncher:
    """
    Launches one chromium browser + context + page per call.

    The Playwright driver is started lazily and stopped by ``aclose()``.
    """

    def __init__(self, language: str = "en", headless: bool = True, timeout_ms: int = 45_000):
        self.language = language
        self.headless = headless
        self.timeout_ms = timeout_ms
        self._pw = None

    async def open(self, mode: ConnectionMode, proxy: Optional[Dict[str, str]]) -> Session:
        if self._pw is None:
            self._pw = await async_playwright().start()

        launch_kwargs: Dict[str, Any] = {
            "headless": self.headless,
            "args": ["--disable-blink-features=AutomationControlled"],
        }
        if proxy:
            launch_kwargs["proxy"] = proxy
        browser = await self._pw.chromium.launch(**launch_kwargs)
        try:
            context = await browser.new_context(
                user_agent=random.choice(UA_POOL),
                viewport={"width": 1280, "height": 720},
                locale=self.language,
            )
            await context.add_init_script("Object.defineProperty(navigator, 'webdriver', {get: () => undefined});")
            page = await context.new_page()
            page.set_default_timeout(self.timeout_ms)
            page.set_default_navigation_timeout(self.timeout_ms)
        except PlaywrightError:
            await browser.close()
            raise
        return Session(page, mode, self.language, self.timeout_ms, resources=(context, browser))

    async def aclose(self) -> None:
        if self._pw is not None:
            await self._pw.stop()
            self._pw = None


async def _open_and_check(
    launcher: SessionLauncher,
    mode: ConnectionMode,
    proxy: Optional[Dict[str, str]],
    target: str,
    timeout_ms: int,
    settle_ms: int,
) -> Session:
    session = await launcher.open(mode, proxy)
    try:
        await asyncio.wait_for(
            session.navigate(target, wait_until="domcontentloaded", timeout_ms=timeout_ms),
            timeout=timeout_ms / 1000.0 + READINESS_SLACK_S,
        )
        await session.sleep(settle_ms)
        logger.info(f"[{mode.value}] landed on {session.current_url()} (title: {await session.title()!r})")
        return session
    except BaseException:
        await session.close()
        raise


async def bootstrap(
    launcher: SessionLauncher,
    language: str = "en",
    relay_url: Optional[str] = None,
    relay_ready_timeout_ms: int = 15_000,
    direct_ready_timeout_ms: int = 30_000,
    direct_retries: int = 1,
    retry_base_delay_s: float = 2.0,
    settle_ms: int = 1_500,
) -> Session:
    """
    Open exactly one ready Session.

    With a relay configured, the relayed session gets one short readiness
    check; any failure discards it and the run continues on a direct session.
    The relay is never tried again. If the direct path also fails (after its
    own bounded retries), SessionConnectionError is raised and no session is
    held.
    """
    target = root_url(language)
    error_logger = get_error_logger()

    if relay_url:
        proxy = parse_relay_url(relay_url)
        if proxy is None:
            logger.warning(f"[relay] could not parse relay url {redact_relay_url(relay_url)}, using direct")
        else:
            logger.info(f"[relay] trying {redact_relay_url(relay_url)} (timeout {relay_ready_timeout_ms}ms)")
            try:
                session = await _open_and_check(
                    launcher, ConnectionMode.RELAYED, proxy, target, relay_ready_timeout_ms, settle_ms
                )
                logger.info("[relay] connection successful")
                return session
            except Exception as e:
                logger.warning(f"[relay] failed ({type(e).__name__}: {e}), falling back to direct connection")
                error_logger.log_exception(
                    e,
                    component=ErrorComponent.BOOTSTRAP,
                    stage=ErrorStage.RELAY_READINESS,
                    domain=domain_of(target),
                    url=target,
                    severity=ErrorSeverity.WARNING,
                    metadata={"relay": redact_relay_url(relay_url), "timeout_ms": relay_ready_timeout_ms},
                )

    async def _open_direct() -> Session:
        return await _open_and_check(
            launcher, ConnectionMode.DIRECT, None, target, direct_ready_timeout_ms, settle_ms
        )

    retrying = retry_async_with_backoff(
        _open_direct,
        RetryConfig(max_retries=direct_retries, base_delay=retry_base_delay_s, max_delay=max(retry_base_delay_s, 30.0)),
    )
    try:
        session = await retrying()
    except Exception as e:
        error_logger.log_exception(
            e,
            component=ErrorComponent.BOOTSTRAP,
            stage=ErrorStage.DIRECT_READINESS,
            domain=domain_of(target),
            url=target,
            severity=ErrorSeverity.CRITICAL,
        )
        raise SessionConnectionError(f"could not open a session: {e}", url=target) from e

    logger.info("[direct] connection successful")
    return session
