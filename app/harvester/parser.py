"""Extraction of raw text rows from rendered floor-sheet table HTML."""
from __future__ import annotations

from typing import List, Optional

from bs4 import BeautifulSoup

from .selectors import FLOOR_SHEET_SELECTORS, FloorSheetSelectors


def parse_table_rows(html: str, selectors: Optional[FloorSheetSelectors] = None) -> List[List[str]]:
    """Return the cell texts of every non-empty body row in ``html``.

    Cell text is returned raw (only surrounding whitespace trimmed); cleaning
    is the normaliser's job.
    """

    selectors = selectors or FLOOR_SHEET_SELECTORS
    soup = BeautifulSoup(html or "", "html.parser")
    rows = soup.select(selectors.row_selector) or soup.select("tbody tr")

    out: List[List[str]] = []
    for tr in rows:
        cells = [td.get_text(" ", strip=True) for td in tr.find_all(selectors.cell_selector)]
        if cells:
            out.append(cells)
    return out


def next_page_state(html: str, selectors: Optional[FloorSheetSelectors] = None) -> Optional[bool]:
    """Read the "next page" affordance from the pagination markup.

    Returns ``False`` when the next control is missing, disabled or has no
    anchor, ``True`` when it is clickable, and ``None`` when the page has no
    pagination markup at all.
    """

    selectors = selectors or FLOOR_SHEET_SELECTORS
    soup = BeautifulSoup(html or "", "html.parser")
    item = soup.select_one(selectors.next_item)
    if item is None:
        return False if soup.select_one("ul.pagination, .pagination") is not None else None
    classes = item.get("class") or []
    if selectors.disabled_class in classes:
        return False
    return item.find("a") is not None


__all__ = ["next_page_state", "parse_table_rows"]
