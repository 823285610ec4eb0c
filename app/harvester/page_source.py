"""Page Source contract and the offline replay source.

A Page Source owns one stateful browsing session. The controller calls it
strictly sequentially: ``configure`` once, then ``fetch_page``/``has_next``/
``advance`` in turn. ``has_next`` may return ``None`` when the source has no
reliable "more pages" signal.
"""
from __future__ import annotations

import json
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .logging_utils import _harvest_event

RawRow = List[str]
RawPage = List[RawRow]


class ConfigureStatus(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"


class PageSource(ABC):
    """Provider of one batch of raw rows per pagination step."""

    @abstractmethod
    def configure(self, page_size: int) -> ConfigureStatus:
        """Request ``page_size`` rows per page; report whether it was honoured."""

    @abstractmethod
    def fetch_page(self, index: int) -> RawPage:
        """Return the rows currently rendered for 1-based page ``index``."""

    @abstractmethod
    def has_next(self) -> Optional[bool]:
        """``True``/``False`` when the source knows, ``None`` when it cannot tell."""

    @abstractmethod
    def advance(self) -> None:
        """Move to the next page; raise :class:`TransientFetchFault` on failure."""

    def close(self) -> None:
        return None

    def __enter__(self) -> "PageSource":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class ReplayPageSource(PageSource):
    """Serve pre-recorded pages without a browser.

    Pages are replayed in order; ``advance`` moves to the next one and a fetch
    beyond the last page returns an empty page. When ``signal_end`` is set,
    ``has_next`` reports the end explicitly on the last page, otherwise it is
    unknown unless the fixture page carries its own ``has_next`` value.
    """

    def __init__(
        self,
        pages: Sequence[Any],
        *,
        page_size: Optional[int] = None,
        signal_end: bool = False,
    ) -> None:
        self._pages: List[RawPage] = []
        self._has_next: List[Optional[bool]] = []
        for item in pages:
            if isinstance(item, dict):
                rows = item.get("rows") or []
                flag = item.get("has_next")
            else:
                rows, flag = item, None
            self._pages.append([[str(cell) for cell in row] for row in rows])
            self._has_next.append(flag if isinstance(flag, bool) else None)
        self.page_size = page_size
        self.signal_end = signal_end
        self.position = 0
        self.configured_with: Optional[int] = None
        self.fetches: List[int] = []

    @classmethod
    def from_fixture(cls, path: Path) -> "ReplayPageSource":
        """Load a fixture ``{"page_size": n, "signal_end": bool, "pages": [...]}``."""

        payload: Dict[str, Any] = json.loads(Path(path).read_text(encoding="utf-8"))
        if isinstance(payload, list):
            payload = {"pages": payload}
        source = cls(
            payload.get("pages") or [],
            page_size=payload.get("page_size"),
            signal_end=bool(payload.get("signal_end", False)),
        )
        _harvest_event("replay", phase="load", fixture=str(path), pages=len(source._pages))
        return source

    def configure(self, page_size: int) -> ConfigureStatus:
        self.configured_with = page_size
        if self.page_size is not None and self.page_size != page_size:
            return ConfigureStatus.DEGRADED
        return ConfigureStatus.OK

    def fetch_page(self, index: int) -> RawPage:
        self.fetches.append(index)
        if self.position >= len(self._pages):
            return []
        return [list(row) for row in self._pages[self.position]]

    def has_next(self) -> Optional[bool]:
        if self.position < len(self._has_next) and self._has_next[self.position] is not None:
            return self._has_next[self.position]
        if not self.signal_end:
            return None
        return self.position < len(self._pages) - 1

    def advance(self) -> None:
        self.position += 1


__all__ = ["ConfigureStatus", "PageSource", "RawPage", "RawRow", "ReplayPageSource"]
