"""Playwright-backed Page Source for the floor-sheet page.

Workflow:

- Launch headless Chromium with a rotated user agent and heavy resources
  (images, stylesheets, fonts, media) blocked.
- Open the floor-sheet page, pick the largest page size from the filter
  dropdown and click search, then wait for the table to fill.
- ``fetch_page`` reads the rendered table; ``has_next`` inspects the
  pagination ``li``; ``advance`` clicks "next" and waits for the first row's
  contract number to change.

Timeouts surface as :class:`TransientFetchFault` so the controller can retry.
"""
from __future__ import annotations

import random
from typing import Optional

from playwright.sync_api import (
    Browser,
    BrowserContext,
    Error as PWError,
    Page,
    Playwright,
    Route,
    TimeoutError as PWTimeout,
    sync_playwright,
)

from . import config
from .error_codes import ErrorCode
from .faults import TransientFetchFault
from .logging_utils import _harvest_event
from .page_source import ConfigureStatus, PageSource, RawPage
from .parser import next_page_state, parse_table_rows
from .selectors import FLOOR_SHEET_SELECTORS, FloorSheetSelectors
from .utils import log_line

_FIRST_CELL_JS = """
([rowSel, col]) => {
    const cell = document.querySelector(`${rowSel} td:nth-child(${col})`);
    return cell ? cell.textContent.trim() : null;
}
"""

_CHANGED_JS = """
([rowSel, col, previous]) => {
    const cell = document.querySelector(`${rowSel} td:nth-child(${col})`);
    return !!cell && cell.textContent.trim() !== previous;
}
"""

_ROW_COUNT_JS = """
([rowSel, wanted]) => document.querySelectorAll(rowSel).length >= wanted
"""


def wait_seconds(page: Optional[Page], seconds: float) -> None:
    """Wait safely for ``seconds`` only if *page* remains open."""

    if page is None:
        return

    if seconds is None or seconds <= 0:
        return

    if not page.is_closed():
        page.wait_for_timeout(int(seconds * 1000))


def _is_target_closed_error(exc: Exception) -> bool:
    message = str(exc).lower()
    return "target closed" in message or "has been closed" in message


class PlaywrightPageSource(PageSource):
    """Live Page Source; owns one browser session for the whole run."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        headless: Optional[bool] = None,
        selectors: Optional[FloorSheetSelectors] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        self.base_url = (base_url or config.DEFAULT_BASE_URL).strip()
        self.headless = config.HEADLESS if headless is None else headless
        self.selectors = selectors or FLOOR_SHEET_SELECTORS
        self.user_agent = user_agent or (
            random.choice(config.USER_AGENTS) if config.ROTATE_USER_AGENT else config.USER_AGENTS[0]
        )
        self._pw: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self._last_first_contract: Optional[str] = None

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    @property
    def page(self) -> Page:
        if self._page is None:
            self.open()
        assert self._page is not None
        return self._page

    def open(self) -> None:
        if self._page is not None:
            return
        self._pw = sync_playwright().start()
        self._browser = self._pw.chromium.launch(
            headless=self.headless,
            args=["--no-sandbox", "--disable-setuid-sandbox"],
        )
        self._context = self._browser.new_context(user_agent=self.user_agent, locale="en-US")
        page = self._context.new_page()
        if config.BLOCK_RESOURCES:
            page.route("**/*", self._block_heavy_resources)
        self._page = page
        _harvest_event("nav", step="launch", headless=self.headless, user_agent=self.user_agent)
        self._goto()

    @staticmethod
    def _block_heavy_resources(route: Route) -> None:
        if route.request.resource_type in config.BLOCKED_RESOURCE_TYPES:
            route.abort()
        else:
            route.continue_()

    def _goto(self) -> None:
        assert self._page is not None
        try:
            _harvest_event("nav", step="goto", url=self.base_url)
            self._page.goto(
                self.base_url,
                wait_until="networkidle",
                timeout=config.NAV_TIMEOUT_SECONDS * 1000,
            )
        except PWTimeout as exc:
            raise TransientFetchFault(
                f"goto({self.base_url!r}) timed out: {exc}", error_code=ErrorCode.FETCH_TIMEOUT
            ) from exc
        except PWError as exc:
            raise TransientFetchFault(f"goto({self.base_url!r}) failed: {exc}") from exc

    def close(self) -> None:
        for closer in (self._context, self._browser):
            if closer is None:
                continue
            try:
                closer.close()
            except PWError as exc:
                log_line(f"[PLAYWRIGHT][WARN] Error closing browser: {exc}")
        if self._pw is not None:
            self._pw.stop()
        self._page = self._context = self._browser = self._pw = None

    # ------------------------------------------------------------------
    # PageSource
    # ------------------------------------------------------------------

    def configure(self, page_size: int) -> ConfigureStatus:
        page = self.page
        sel = self.selectors
        timeout_ms = config.SELECTOR_TIMEOUT_SECONDS * 1000
        try:
            page.wait_for_selector(sel.page_size_select, timeout=timeout_ms)
            page.select_option(sel.page_size_select, str(page_size))
            page.wait_for_selector(sel.search_button, timeout=timeout_ms).click()
            page.wait_for_function(
                _ROW_COUNT_JS,
                arg=[sel.row_selector, page_size],
                timeout=config.ROWS_TIMEOUT_SECONDS * 1000,
            )
        except PWTimeout as exc:
            rows = self._row_count()
            _harvest_event("error", phase="configure", step="timeout", page_size=page_size, rows=rows, error=str(exc))
            return ConfigureStatus.DEGRADED
        except PWError as exc:
            if _is_target_closed_error(exc):
                raise TransientFetchFault(f"browser closed during configure: {exc}") from exc
            _harvest_event("error", phase="configure", step="error", page_size=page_size, error=str(exc))
            return ConfigureStatus.DEGRADED
        _harvest_event("nav", step="configured", page_size=page_size)
        return ConfigureStatus.OK

    def _row_count(self) -> int:
        try:
            return self.page.locator(self.selectors.row_selector).count()
        except PWError:
            return 0

    def fetch_page(self, index: int) -> RawPage:
        page = self.page
        sel = self.selectors
        try:
            page.wait_for_selector(sel.row_selector, timeout=config.SELECTOR_TIMEOUT_SECONDS * 1000)
        except PWTimeout as exc:
            if page.locator(sel.table_selector).count() > 0:
                log_line(f"[PLAYWRIGHT] Page {index}: table rendered without rows.")
                return []
            raise TransientFetchFault(
                f"rows did not render on page {index}: {exc}", error_code=ErrorCode.FETCH_TIMEOUT
            ) from exc
        except PWError as exc:
            raise TransientFetchFault(f"fetch failed on page {index}: {exc}") from exc

        try:
            table_html = page.locator(sel.table_selector).first.evaluate("el => el.outerHTML")
            self._last_first_contract = page.evaluate(
                _FIRST_CELL_JS, [sel.row_selector, sel.contract_column]
            )
        except PWError as exc:
            raise TransientFetchFault(f"table read failed on page {index}: {exc}") from exc
        return parse_table_rows(table_html, sel)

    def has_next(self) -> Optional[bool]:
        try:
            html = self.page.content()
        except PWError as exc:
            raise TransientFetchFault(f"pagination read failed: {exc}") from exc
        return next_page_state(html, self.selectors)

    def advance(self) -> None:
        page = self.page
        sel = self.selectors
        previous = self._last_first_contract
        if previous is None:
            previous = page.evaluate(_FIRST_CELL_JS, [sel.row_selector, sel.contract_column])
        try:
            link = page.locator(sel.next_link)
            if link.count() == 0:
                raise TransientFetchFault("next control not found", error_code=ErrorCode.ADVANCE_FAULT)
            wait_seconds(page, config.PRE_CLICK_SLEEP_SECONDS)
            link.first.click(timeout=config.SELECTOR_TIMEOUT_SECONDS * 1000)
        except PWTimeout as exc:
            raise TransientFetchFault(f"next click timed out: {exc}", error_code=ErrorCode.FETCH_TIMEOUT) from exc
        except PWError as exc:
            raise TransientFetchFault(f"next click failed: {exc}", error_code=ErrorCode.ADVANCE_FAULT) from exc

        try:
            page.wait_for_function(
                _CHANGED_JS,
                arg=[sel.row_selector, sel.contract_column, previous],
                timeout=config.ROWS_TIMEOUT_SECONDS * 1000,
            )
        except PWTimeout:
            # A pager that does not change content is reported by the overlap check.
            _harvest_event("nav", step="advance_unchanged", previous_first=previous)
        except PWError as exc:
            raise TransientFetchFault(f"waiting for next page failed: {exc}", error_code=ErrorCode.ADVANCE_FAULT) from exc
        self._last_first_contract = None


__all__ = ["PlaywrightPageSource", "wait_seconds"]
