"""Termination policy for the pagination loop.

The evaluator folds the explicit end signal, the short-page heuristic and the
overlap heuristic into one continue/stop decision. Rules are evaluated in
priority order; the first one that fires wins.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from . import config
from .checkpoint import Checkpoint
from .logging_utils import _harvest_event


class TerminationKind(str, Enum):
    CONTINUE = "continue"
    STOP_NORMAL = "stop_normal"
    STOP_SUSPECTED_LOOP = "stop_suspected_loop"
    STOP_ERROR = "stop_error"


class Reason:
    EMPTY_PAGE = "empty_page"
    EXPLICIT_END = "explicit_end"
    SHORT_PAGE = "short_page"
    PAGER_STUCK = "pager_not_advancing"
    NEXT_PAGE = "next_page"


@dataclass(frozen=True)
class TerminationState:
    kind: TerminationKind
    reason: str
    detail: str = ""

    @property
    def is_stop(self) -> bool:
        return self.kind is not TerminationKind.CONTINUE

    @classmethod
    def proceed(cls) -> "TerminationState":
        return cls(TerminationKind.CONTINUE, Reason.NEXT_PAGE)

    @classmethod
    def error(cls, reason: str, detail: str = "") -> "TerminationState":
        return cls(TerminationKind.STOP_ERROR, reason, detail)


@dataclass(frozen=True)
class PageOutcome:
    """What one processed page looked like.

    ``overlap_count`` counts distinct keys on the page that were already in the
    ledger before the page was ingested; ``key_count`` is the number of
    distinct keys the page produced.
    """

    page_index: int
    row_count: int
    key_count: int
    overlap_count: int
    first_key: Optional[str] = None
    has_next: Optional[bool] = None
    dropped_count: int = 0

    @property
    def overlap_ratio(self) -> float:
        if self.key_count <= 0:
            return 0.0
        return self.overlap_count / self.key_count


class TerminationEvaluator:
    """Stateless decision policy; the strike counter lives on the Checkpoint."""

    def __init__(
        self,
        *,
        page_size: Optional[int] = None,
        overlap_threshold: Optional[float] = None,
        loop_strikes: Optional[int] = None,
    ) -> None:
        self.page_size = page_size if page_size is not None else config.PAGE_SIZE
        self.overlap_threshold = (
            overlap_threshold if overlap_threshold is not None else config.OVERLAP_THRESHOLD
        )
        self.loop_strikes = max(1, loop_strikes if loop_strikes is not None else config.LOOP_STRIKES)

    def is_stagnant(self, outcome: PageOutcome) -> bool:
        """Return ``True`` when the page is mostly keys the ledger already holds."""

        return outcome.key_count > 0 and outcome.overlap_ratio >= self.overlap_threshold

    def evaluate(self, outcome: PageOutcome, checkpoint: Checkpoint) -> TerminationState:
        state = self._decide(outcome, checkpoint)
        _harvest_event(
            "decision",
            page_index=outcome.page_index,
            rows=outcome.row_count,
            keys=outcome.key_count,
            overlap=round(outcome.overlap_ratio, 4),
            has_next=outcome.has_next,
            stagnation=checkpoint.stagnation_count,
            kind=state.kind.value,
            reason=state.reason,
        )
        return state

    def _decide(self, outcome: PageOutcome, checkpoint: Checkpoint) -> TerminationState:
        if outcome.row_count == 0:
            return TerminationState(TerminationKind.STOP_NORMAL, Reason.EMPTY_PAGE, "empty page, end of data")

        if outcome.has_next is False:
            return TerminationState(TerminationKind.STOP_NORMAL, Reason.EXPLICIT_END, "source reports no further page")

        # A short first page usually means the page size was not honoured.
        if outcome.page_index > 1 and outcome.row_count < self.page_size:
            return TerminationState(
                TerminationKind.STOP_NORMAL,
                Reason.SHORT_PAGE,
                f"{outcome.row_count} < {self.page_size} rows",
            )

        if self.is_stagnant(outcome) and checkpoint.stagnation_count + 1 >= self.loop_strikes:
            return TerminationState(
                TerminationKind.STOP_SUSPECTED_LOOP,
                Reason.PAGER_STUCK,
                f"overlap {outcome.overlap_ratio:.2%} on {checkpoint.stagnation_count + 1} consecutive pages",
            )

        return TerminationState.proceed()


__all__ = ["PageOutcome", "Reason", "TerminationEvaluator", "TerminationKind", "TerminationState"]
