"""Playwright-backed :class:`~automation.driver.protocol.PageDriver`.

One driver owns one Chromium browser, one context and one page. Checks never
raise: Playwright errors are logged at debug level and reported as ``False``.
"""

from __future__ import annotations
from tracking import t

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from automation.driver.human_behaviors import HumanBehavior
from infrastructure.constants import (
    CONTACT_CONFIRM_SELECTORS,
    EMAIL_FIELD_SELECTORS,
    GROUP_SIZE_CONFIRM_SELECTORS,
    NAME_FIELD_SELECTORS,
    NUMBER_OF_PEOPLE_SELECTORS,
    PHONE_FIELD_SELECTORS,
    RETRY_TEXTS,
    VERIFICATION_FAILURE_TEXTS,
    VERIFICATION_INPUT_SELECTORS,
    VERIFICATION_TEXTS,
)

DEFAULT_TIMEOUTS: Dict[str, int] = {
    "navigation": 30000,
    "action": 8000,
    "verification_settle": 2000,
}

LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-sandbox",
    "--disable-setuid-sandbox",
]


class PlaywrightPageDriver:
    """Drive the facility booking pages with a dedicated Chromium instance."""

    def __init__(
        self,
        instance_id: str,
        *,
        headless: bool = True,
        screenshots_dir: str = "data/screenshots",
        behavior: Optional[HumanBehavior] = None,
        timeouts: Optional[Dict[str, int]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.__init__')
        self.instance_id = instance_id
        self.headless = headless
        self.screenshots_dir = Path(screenshots_dir)
        self.behavior = behavior or HumanBehavior()
        self.timeouts = {**DEFAULT_TIMEOUTS, **(timeouts or {})}
        self.logger = logger or logging.getLogger("PlaywrightPageDriver")
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    async def connect(self) -> None:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.connect')
        if self._page is not None and not self._page.is_closed():
            return

        if self._playwright is None:
            self._playwright = await async_playwright().start()

        self._browser = await self._playwright.chromium.launch(
            headless=self.headless,
            args=LAUNCH_ARGS,
        )
        self._context = await self._browser.new_context(
            viewport={"width": 1280, "height": 800},
            user_agent=(
                "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
                "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
            ),
            locale="en-CA",
            timezone_id="America/Toronto",
        )
        self._context.set_default_timeout(self.timeouts["action"])
        self._context.set_default_navigation_timeout(self.timeouts["navigation"])
        self._page = await self._context.new_page()
        self.logger.info("[%s] 🌐 Browser session started (headless=%s)", self.instance_id, self.headless)

    async def disconnect(self, close_window: bool = True) -> None:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.disconnect')
        if not close_window and not self.headless:
            self.logger.info("[%s] 🪟 Leaving browser window open for inspection", self.instance_id)
            return

        try:
            if self._context:
                await self._context.close()
        except PlaywrightError as exc:
            self.logger.debug("[%s] Context close failed: %s", self.instance_id, exc)
        finally:
            self._context = None
            self._page = None

        try:
            if self._browser:
                await self._browser.close()
        except PlaywrightError as exc:
            self.logger.debug("[%s] Browser close failed: %s", self.instance_id, exc)
        finally:
            self._browser = None

        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
        self.logger.info("[%s] 🔌 Browser session closed", self.instance_id)

    async def is_session_valid(self) -> bool:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.is_session_valid')
        if self._page is None:
            # Nothing started yet; connect() creates a fresh session.
            return self._browser is None
        return (
            not self._page.is_closed()
            and self._browser is not None
            and self._browser.is_connected()
        )

    async def reset(self) -> None:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.reset')
        self.logger.warning("[%s] ♻️ Resetting stale browser session", self.instance_id)
        await self.disconnect(close_window=True)

    async def navigate(self, url: str) -> None:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.navigate')
        page = self._require_page()
        await page.goto(url, wait_until="domcontentloaded")
        self.logger.info("[%s] ➡️ Navigated to %s", self.instance_id, url)

    # ------------------------------------------------------------------
    # Readiness checks
    # ------------------------------------------------------------------
    async def is_dom_ready(self) -> bool:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.is_dom_ready')
        state = await self._evaluate("document.readyState")
        return state == "complete"

    async def is_group_size_page_ready(self) -> bool:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.is_group_size_page_ready')
        return await self._first_match(NUMBER_OF_PEOPLE_SELECTORS) is not None

    async def is_contact_info_page_ready(self) -> bool:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.is_contact_info_page_ready')
        return await self._first_match(PHONE_FIELD_SELECTORS) is not None

    async def is_verification_page_ready(self) -> bool:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.is_verification_page_ready')
        if await self._first_match(VERIFICATION_INPUT_SELECTORS[:5]) is not None:
            return True
        return await self._contains_any(VERIFICATION_TEXTS)

    async def page_contains_text(self, text: str) -> bool:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.page_contains_text')
        body = await self._evaluate("document.body ? document.body.innerText : ''")
        return bool(body) and text.lower() in str(body).lower()

    # ------------------------------------------------------------------
    # Interactions
    # ------------------------------------------------------------------
    async def find_and_click_element(self, text: str) -> bool:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.find_and_click_element')
        page = self._require_page()
        try:
            locator = page.get_by_text(text, exact=False).first
            if await locator.count() == 0:
                self.logger.warning("[%s] No element with text %r", self.instance_id, text)
                return False
            handle = await locator.element_handle()
            if handle is None:
                return False
            await self.behavior.click_naturally(page, handle)
            return True
        except PlaywrightError as exc:
            self.logger.debug("[%s] Click on %r failed: %s", self.instance_id, text, exc)
            return False

    async def fill_field(self, selector: str, value: str) -> bool:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.fill_field')
        page = self._require_page()
        try:
            element = await page.query_selector(selector)
            if element is None:
                return False
            await self.behavior.type_text(element, value)
            return True
        except PlaywrightError as exc:
            self.logger.debug("[%s] Fill %s failed: %s", self.instance_id, selector, exc)
            return False

    async def fill_number_of_people(self, count: int) -> bool:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.fill_number_of_people')
        return await self._fill_first(NUMBER_OF_PEOPLE_SELECTORS, str(count))

    async def click_confirm_button(self) -> bool:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.click_confirm_button')
        return await self._click_first(GROUP_SIZE_CONFIRM_SELECTORS)

    async def select_time_slot(self, day: str, time: str) -> bool:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.select_time_slot')
        page = self._require_page()
        try:
            header = page.locator(".header-text", has_text=day).first
            if await header.count() > 0:
                await header.click()
                await self.behavior.pause(0.3, 0.6)

            slot = page.get_by_text(time, exact=False).first
            if await slot.count() == 0:
                self.logger.warning("[%s] No time slot %s on %s", self.instance_id, time, day)
                return False
            await slot.click()
            return True
        except PlaywrightError as exc:
            self.logger.debug("[%s] Time slot selection failed: %s", self.instance_id, exc)
            return False

    async def autofill_contact_fields(self, phone: str, email: str, name: str) -> bool:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.autofill_contact_fields')
        results = [
            await self._fill_first(PHONE_FIELD_SELECTORS, phone),
            await self._fill_first(EMAIL_FIELD_SELECTORS, email),
            await self._fill_first(NAME_FIELD_SELECTORS, name),
        ]
        return all(results)

    async def click_contact_confirm_button(self) -> bool:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.click_contact_confirm_button')
        return await self._click_first(CONTACT_CONFIRM_SELECTORS)

    async def detect_retry_text(self) -> bool:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.detect_retry_text')
        return await self._contains_any(RETRY_TEXTS)

    async def add_quick_pause(self) -> None:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.add_quick_pause')
        await self.behavior.quick_pause()

    async def is_verification_challenge_present(self) -> bool:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.is_verification_challenge_present')
        return await self._contains_any(VERIFICATION_TEXTS)

    async def submit_verification_code(self, code: str) -> bool:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.submit_verification_code')
        page = self._require_page()
        if not await self._fill_first(VERIFICATION_INPUT_SELECTORS, code):
            self.logger.warning("[%s] Verification input not found", self.instance_id)
            return False
        if not await self._click_first(CONTACT_CONFIRM_SELECTORS):
            return False
        try:
            await page.wait_for_timeout(self.timeouts["verification_settle"])
        except PlaywrightError:
            return False
        if await self._contains_any(VERIFICATION_FAILURE_TEXTS):
            self.logger.info("[%s] Code %s rejected by the site", self.instance_id, code)
            return False
        return not await self.is_verification_challenge_present()

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------
    async def take_screenshot(self) -> Optional[str]:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.take_screenshot')
        if self._page is None or self._page.is_closed():
            return None
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        path = self.screenshots_dir / f"{self.instance_id}_{stamp}.png"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await self._page.screenshot(path=str(path), full_page=True)
        except (PlaywrightError, OSError) as exc:
            self.logger.warning("[%s] Screenshot failed: %s", self.instance_id, exc)
            return None
        self.logger.info("[%s] 📸 Screenshot saved to %s", self.instance_id, path)
        return str(path)

    async def get_page_source(self) -> Optional[str]:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.get_page_source')
        if self._page is None or self._page.is_closed():
            return None
        try:
            return await self._page.content()
        except PlaywrightError:
            return None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _require_page(self) -> Page:
        if self._page is None:
            raise ConnectionError(f"Driver {self.instance_id} is not connected")
        return self._page

    async def _evaluate(self, expression: str) -> Any:
        if self._page is None or self._page.is_closed():
            return None
        try:
            return await self._page.evaluate(expression)
        except PlaywrightError as exc:
            self.logger.debug("[%s] Evaluate failed: %s", self.instance_id, exc)
            return None

    async def _first_match(self, selectors: Iterable[str]) -> Any:
        if self._page is None or self._page.is_closed():
            return None
        for selector in selectors:
            try:
                element = await self._page.query_selector(selector)
            except PlaywrightError:
                continue
            if element is not None:
                return element
        return None

    async def _fill_first(self, selectors: Iterable[str], value: str) -> bool:
        element = await self._first_match(selectors)
        if element is None:
            return False
        try:
            await self.behavior.type_text(element, value)
            return True
        except PlaywrightError as exc:
            self.logger.debug("[%s] Typing failed: %s", self.instance_id, exc)
            return False

    async def _click_first(self, selectors: Iterable[str]) -> bool:
        element = await self._first_match(selectors)
        if element is None:
            return False
        try:
            await self.behavior.click_naturally(self._require_page(), element)
            return True
        except PlaywrightError as exc:
            self.logger.debug("[%s] Click failed: %s", self.instance_id, exc)
            return False

    async def _contains_any(self, texts: Iterable[str]) -> bool:
        for text in texts:
            if await self.page_contains_text(text):
                return True
        return False
