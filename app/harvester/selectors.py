from __future__ import annotations

"""Selectors for the floor-sheet page."""

from dataclasses import dataclass


@dataclass(frozen=True)
class FloorSheetSelectors:
    """Selector hints for the floor-sheet table and its pagination controls.

    The page size is chosen from a ``<select>`` in the filter bar and applied
    with the search button. The "next" control is an ``li`` that either carries
    a ``disabled`` class or loses its anchor on the last page.
    """

    page_size_select: str = "div.box__filter--field select"
    search_button: str = "button.box__filter--search"
    table_selector: str = "table.table-striped"
    row_selector: str = "table.table-striped tbody tr"
    cell_selector: str = "td"
    next_item: str = "li.pagination-next"
    next_link: str = "li.pagination-next > a"
    disabled_class: str = "disabled"
    # 1-based column holding the contract number, used to detect re-renders.
    contract_column: int = 2


FLOOR_SHEET_SELECTORS = FloorSheetSelectors()

__all__ = ["FloorSheetSelectors", "FLOOR_SHEET_SELECTORS"]
