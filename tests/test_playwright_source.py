from typing import Any, List, Optional

import pytest
from playwright.sync_api import TimeoutError as PWTimeout

from app.harvester import config
from app.harvester.error_codes import ErrorCode
from app.harvester.faults import TransientFetchFault
from app.harvester.page_source import ConfigureStatus
from app.harvester.playwright_source import PlaywrightPageSource, wait_seconds

TABLE_HTML = (
    '<table class="table table-striped"><tbody>'
    "<tr><td>1</td><td>2024010203040506</td><td>NABIL</td><td>21</td><td>42</td>"
    "<td>100</td><td>1,200.00</td><td>120,000.00</td></tr>"
    "</tbody></table>"
)


class FakeLocator:
    def __init__(self, page: "FakePage", selector: str) -> None:
        self.page = page
        self.selector = selector

    def count(self) -> int:
        return self.page.counts.get(self.selector, 0)

    @property
    def first(self) -> "FakeLocator":
        return self

    def evaluate(self, script: str) -> str:
        return self.page.table_html

    def click(self, timeout: Optional[int] = None) -> None:
        self.page.clicks.append(self.selector)


class FakePage:
    def __init__(self) -> None:
        self.counts: dict = {}
        self.table_html = TABLE_HTML
        self.first_contract = "2024010203040506"
        self.clicks: List[str] = []
        self.waits: List[int] = []
        self.row_wait_error: Optional[Exception] = None
        self.function_error: Optional[Exception] = None
        self.html = ""

    def is_closed(self) -> bool:
        return False

    def wait_for_timeout(self, ms: int) -> None:
        self.waits.append(ms)

    def wait_for_selector(self, selector: str, timeout: Optional[int] = None) -> FakeLocator:
        if self.row_wait_error is not None:
            raise self.row_wait_error
        return FakeLocator(self, selector)

    def select_option(self, selector: str, value: str) -> None:
        self.selected = value

    def wait_for_function(self, script: str, arg: Any = None, timeout: Optional[int] = None) -> None:
        if self.function_error is not None:
            raise self.function_error

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    def evaluate(self, script: str, arg: Any = None) -> Optional[str]:
        return self.first_contract

    def content(self) -> str:
        return self.html


@pytest.fixture
def source_and_page(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(config, "PRE_CLICK_SLEEP_SECONDS", 0.5)
    source = PlaywrightPageSource("https://example.test/floor-sheet", user_agent="test-agent")
    page = FakePage()
    source._page = page
    return source, page


def test_configure_ok_and_degraded(source_and_page) -> None:
    source, page = source_and_page
    assert source.configure(500) is ConfigureStatus.OK
    assert page.selected == "500"

    page.function_error = PWTimeout("rows never reached 500")
    page.counts[source.selectors.row_selector] = 100
    assert source.configure(500) is ConfigureStatus.DEGRADED


def test_fetch_page_parses_rendered_table(source_and_page) -> None:
    source, _ = source_and_page
    rows = source.fetch_page(1)
    assert rows == [["1", "2024010203040506", "NABIL", "21", "42", "100", "1,200.00", "120,000.00"]]


def test_fetch_page_timeout_without_table_is_transient(source_and_page) -> None:
    source, page = source_and_page
    page.row_wait_error = PWTimeout("no rows")

    with pytest.raises(TransientFetchFault) as excinfo:
        source.fetch_page(2)
    assert excinfo.value.error_code == ErrorCode.FETCH_TIMEOUT

    page.counts[source.selectors.table_selector] = 1
    assert source.fetch_page(2) == []


def test_has_next_reads_pagination(source_and_page) -> None:
    source, page = source_and_page
    page.html = '<ul class="pagination"><li class="pagination-next disabled"><a>Next</a></li></ul>'
    assert source.has_next() is False


def test_advance_clicks_next_and_tolerates_unchanged_content(source_and_page) -> None:
    source, page = source_and_page
    page.counts[source.selectors.next_link] = 1
    page.function_error = PWTimeout("first row unchanged")

    source.advance()

    assert page.clicks == [source.selectors.next_link]
    assert page.waits == [500]


def test_advance_without_next_control_is_a_fault(source_and_page) -> None:
    source, _ = source_and_page
    with pytest.raises(TransientFetchFault) as excinfo:
        source.advance()
    assert excinfo.value.error_code == ErrorCode.ADVANCE_FAULT


def test_wait_seconds_ignores_missing_page() -> None:
    wait_seconds(None, 5)
    page = FakePage()
    wait_seconds(page, 0)
    wait_seconds(page, 1.5)
    assert page.waits == [1500]
