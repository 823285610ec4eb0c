import pytest

from app.harvester.checkpoint import Checkpoint
from app.harvester.termination import (
    PageOutcome,
    Reason,
    TerminationEvaluator,
    TerminationKind,
)


@pytest.fixture
def evaluator() -> TerminationEvaluator:
    return TerminationEvaluator(page_size=500, overlap_threshold=0.9, loop_strikes=2)


def _outcome(**overrides) -> PageOutcome:
    values = dict(page_index=2, row_count=500, key_count=500, overlap_count=0, has_next=None)
    values.update(overrides)
    return PageOutcome(**values)


def test_full_fresh_page_continues(evaluator: TerminationEvaluator) -> None:
    state = evaluator.evaluate(_outcome(), Checkpoint(run_key="k"))
    assert state.kind is TerminationKind.CONTINUE
    assert state.is_stop is False


def test_empty_page_wins_over_everything(evaluator: TerminationEvaluator) -> None:
    state = evaluator.evaluate(
        _outcome(row_count=0, key_count=0, has_next=True), Checkpoint(run_key="k", stagnation_count=5)
    )
    assert (state.kind, state.reason) == (TerminationKind.STOP_NORMAL, Reason.EMPTY_PAGE)


def test_explicit_end_beats_loop_heuristic(evaluator: TerminationEvaluator) -> None:
    state = evaluator.evaluate(
        _outcome(overlap_count=500, has_next=False), Checkpoint(run_key="k", stagnation_count=1)
    )
    assert (state.kind, state.reason) == (TerminationKind.STOP_NORMAL, Reason.EXPLICIT_END)


def test_short_page_stops_after_first_page(evaluator: TerminationEvaluator) -> None:
    state = evaluator.evaluate(_outcome(row_count=137, key_count=137), Checkpoint(run_key="k"))
    assert state.reason == Reason.SHORT_PAGE


def test_short_first_page_does_not_stop(evaluator: TerminationEvaluator) -> None:
    state = evaluator.evaluate(_outcome(page_index=1, row_count=20, key_count=20), Checkpoint(run_key="k"))
    assert state.kind is TerminationKind.CONTINUE


def test_one_stagnant_page_is_not_a_loop(evaluator: TerminationEvaluator) -> None:
    state = evaluator.evaluate(_outcome(overlap_count=450), Checkpoint(run_key="k", stagnation_count=0))
    assert state.kind is TerminationKind.CONTINUE
    assert evaluator.is_stagnant(_outcome(overlap_count=450)) is True


def test_second_consecutive_stagnant_page_is_a_loop(evaluator: TerminationEvaluator) -> None:
    state = evaluator.evaluate(_outcome(overlap_count=450), Checkpoint(run_key="k", stagnation_count=1))
    assert (state.kind, state.reason) == (TerminationKind.STOP_SUSPECTED_LOOP, Reason.PAGER_STUCK)


def test_overlap_below_threshold_is_not_stagnant(evaluator: TerminationEvaluator) -> None:
    outcome = _outcome(overlap_count=449)
    assert evaluator.is_stagnant(outcome) is False
    assert evaluator.evaluate(outcome, Checkpoint(run_key="k", stagnation_count=1)).kind is TerminationKind.CONTINUE


def test_page_with_no_valid_keys_is_not_stagnant(evaluator: TerminationEvaluator) -> None:
    outcome = _outcome(key_count=0, overlap_count=0)
    assert outcome.overlap_ratio == 0.0
    assert evaluator.is_stagnant(outcome) is False
