"""Pagination controller: the state machine that drives one harvest run.

Workflow per page:

- FETCHING: read the rows the Page Source currently renders (plus its
  "has next" signal), retrying once with backoff.
- NORMALIZING: turn raw rows into Records; bad rows are dropped and counted.
- DEDUP_AND_SINK: update the ledger synchronously, then hand records to the
  sink writer (duplicates are suppressed for append-only sinks).
- EVALUATING: ask the termination evaluator whether to stop.
- ADVANCING: move the Page Source on, sleep a jittered delay, bump and
  persist the checkpoint.

All Page Source calls happen on the calling thread, one at a time. The
cancellation signal is honoured at the top of every transition.
"""
from __future__ import annotations

import random
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, TypeVar

from . import config, db
from .checkpoint import Checkpoint, CheckpointStore
from .error_codes import ErrorCode
from .faults import ConfigurationFault, NormalizationError
from .ledger import FingerprintLedger
from .logging_utils import _harvest_event
from .page_source import ConfigureStatus, PageSource, RawPage
from .records import KeyStrategy, Record, normalize, resolve_key_strategy
from .retry_policy import compute_backoff_seconds, decide_retry
from .sinks import SinkWriter
from .telemetry import RunTelemetry
from .termination import PageOutcome, TerminationEvaluator, TerminationKind, TerminationState
from .utils import log_line

T = TypeVar("T")


class HarvestPhase(str, Enum):
    INITIALIZING = "initializing"
    FETCHING = "fetching"
    NORMALIZING = "normalizing"
    DEDUP_AND_SINK = "dedup_and_sink"
    EVALUATING = "evaluating"
    ADVANCING = "advancing"
    TERMINATED = "terminated"


RUN_STATUS = {
    TerminationKind.STOP_NORMAL: "completed_normal",
    TerminationKind.STOP_SUSPECTED_LOOP: "completed_suspected_loop",
    TerminationKind.STOP_ERROR: "failed",
}

EXIT_CODES = {
    TerminationKind.STOP_NORMAL: 0,
    TerminationKind.STOP_ERROR: 1,
    TerminationKind.STOP_SUSPECTED_LOOP: 2,
}


@dataclass
class HarvestSettings:
    page_size: int = 500
    configure_attempts: int = 2
    overlap_threshold: float = 0.9
    loop_strikes: int = 2
    delay_min_seconds: float = 2.0
    delay_max_seconds: float = 10.0
    fetch_retries: int = 1

    @classmethod
    def from_config(cls, **overrides: Any) -> "HarvestSettings":
        values = dict(
            page_size=config.PAGE_SIZE,
            configure_attempts=config.CONFIGURE_ATTEMPTS,
            overlap_threshold=config.OVERLAP_THRESHOLD,
            loop_strikes=config.LOOP_STRIKES,
            delay_min_seconds=config.DELAY_MIN_SECONDS,
            delay_max_seconds=config.DELAY_MAX_SECONDS,
            fetch_retries=config.FETCH_RETRIES,
        )
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)


@dataclass
class HarvestResult:
    """Final outcome of a run, including the checkpoint needed to resume it."""

    termination: TerminationState
    checkpoint: Checkpoint
    fault: Optional[BaseException] = None
    error_code: Optional[str] = None
    configure_status: Optional[ConfigureStatus] = None
    ledger_size: int = 0
    sink_stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def status(self) -> str:
        return RUN_STATUS.get(self.termination.kind, "failed")

    @property
    def exit_code(self) -> int:
        return EXIT_CODES.get(self.termination.kind, 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "termination": self.termination.kind.value,
            "reason": self.termination.reason,
            "detail": self.termination.detail,
            "error_code": self.error_code,
            "fault": repr(self.fault) if self.fault is not None else None,
            "configure_status": self.configure_status.value if self.configure_status else None,
            "ledger_size": self.ledger_size,
            "sink": dict(self.sink_stats),
            "checkpoint": self.checkpoint.to_dict(),
        }


class _FatalFault(Exception):
    """Retry budget exhausted for a Page Source operation."""

    def __init__(self, cause: BaseException, error_code: str) -> None:
        super().__init__(str(cause))
        self.cause = cause
        self.error_code = error_code


class PaginationController:
    """Drive a Page Source to exhaustion, ingesting every record exactly once."""

    def __init__(
        self,
        source: PageSource,
        writer: SinkWriter,
        *,
        run_key: str,
        checkpoint_store: Optional[CheckpointStore] = None,
        settings: Optional[HarvestSettings] = None,
        ledger: Optional[FingerprintLedger] = None,
        persist_ledger: bool = True,
        start_page: Optional[int] = None,
        resume: bool = True,
        key_strategy: Optional[KeyStrategy] = None,
        cancel_event: Optional[threading.Event] = None,
        sleep: Optional[Callable[[float], Any]] = None,
        rng: Optional[random.Random] = None,
        telemetry: Optional[RunTelemetry] = None,
        output_path: Optional[str] = None,
    ) -> None:
        self.source = source
        self.writer = writer
        self.run_key = run_key
        self.store = checkpoint_store or CheckpointStore()
        self.settings = settings or HarvestSettings.from_config()
        self.persist_ledger = persist_ledger
        self.start_page = start_page
        self.resume = resume
        self.key_strategy = key_strategy or resolve_key_strategy()
        self.cancel_event = cancel_event or threading.Event()
        self._sleep = sleep or self.cancel_event.wait
        self._rng = rng or random.Random()
        self.telemetry = telemetry
        self.output_path = output_path
        self.evaluator = TerminationEvaluator(
            page_size=self.settings.page_size,
            overlap_threshold=self.settings.overlap_threshold,
            loop_strikes=self.settings.loop_strikes,
        )

        self.ledger: FingerprintLedger = ledger if ledger is not None else FingerprintLedger()
        self._ledger_given = ledger is not None
        self.checkpoint: Checkpoint = Checkpoint(run_key=run_key)
        self.phase = HarvestPhase.INITIALIZING
        self.history: List[HarvestPhase] = []
        self.configure_status: Optional[ConfigureStatus] = None
        self.termination: Optional[TerminationState] = None
        self.fault: Optional[BaseException] = None
        self.error_code: Optional[str] = None

        self._page_size_learned = False
        self._resumed_at: Optional[int] = None
        self._raw_page: RawPage = []
        self._has_next: Optional[bool] = None
        self._records: List[Record] = []
        self._dropped = 0
        self._outcome: Optional[PageOutcome] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        self.cancel_event.set()

    def run(self) -> HarvestResult:
        handlers: Dict[HarvestPhase, Callable[[], HarvestPhase]] = {
            HarvestPhase.INITIALIZING: self._initialize,
            HarvestPhase.FETCHING: self._fetch,
            HarvestPhase.NORMALIZING: self._normalize,
            HarvestPhase.DEDUP_AND_SINK: self._dedup_and_sink,
            HarvestPhase.EVALUATING: self._evaluate,
            HarvestPhase.ADVANCING: self._advance,
        }

        phase = HarvestPhase.INITIALIZING
        try:
            while phase is not HarvestPhase.TERMINATED:
                if self.cancel_event.is_set():
                    phase = self._stop_error(ErrorCode.CANCELLED, "cancellation requested")
                    break
                if self.writer.outage:
                    phase = self._stop_error(
                        ErrorCode.SINK_OUTAGE,
                        f"{self.writer.consecutive_failures} consecutive sink failures: {self.writer.last_error}",
                    )
                    break
                self._enter(phase)
                phase = handlers[phase]()
        except _FatalFault as exc:
            self.fault = exc.cause
            self._stop_error(exc.error_code, str(exc.cause))
        except Exception as exc:  # noqa: BLE001
            log_line(f"[HARVEST][ERROR] Unexpected failure in phase {self.phase.value}: {exc!r}")
            self.fault = exc
            self._stop_error(ErrorCode.INTERNAL, repr(exc))

        return self._finish()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _enter(self, phase: HarvestPhase) -> None:
        self.phase = phase
        self.history.append(phase)
        _harvest_event(
            "state",
            phase="transition",
            to=phase.value,
            page_index=self.checkpoint.page_index,
        )

    def _stop_error(self, error_code: str, detail: str) -> HarvestPhase:
        self.error_code = error_code
        self.termination = TerminationState.error(error_code, detail)
        return HarvestPhase.TERMINATED

    def _initialize(self) -> HarvestPhase:
        existing = self.store.load(self.run_key) if self.resume else None
        if existing is not None:
            self.checkpoint = existing
            if existing.status == TerminationKind.STOP_SUSPECTED_LOOP.value:
                self.checkpoint.stagnation_count = 0
            self.checkpoint.status = "running"
            if not self._ledger_given and self.persist_ledger:
                self.ledger = FingerprintLedger.load(self.run_key)
        else:
            self.checkpoint = Checkpoint(run_key=self.run_key, output_path=self.output_path)
            if not self._ledger_given and self.persist_ledger:
                db.clear_ledger_keys(self.run_key)
        if self.start_page is not None:
            self.checkpoint.page_index = max(1, int(self.start_page))
            self.checkpoint.stagnation_count = 0

        _harvest_event(
            "state",
            phase="init",
            run_key=self.run_key,
            resumed=existing is not None,
            page_index=self.checkpoint.page_index,
            records_ingested=self.checkpoint.records_ingested,
            ledger_size=len(self.ledger),
        )

        self._configure_page_size()

        if self.checkpoint.page_index > 1:
            return self._drive_to_start()
        return HarvestPhase.FETCHING

    def _configure_page_size(self) -> None:
        attempts = max(1, self.settings.configure_attempts)
        status = ConfigureStatus.DEGRADED
        for attempt in range(1, attempts + 1):
            try:
                status = self.source.configure(self.settings.page_size)
            except Exception as exc:  # noqa: BLE001
                status = ConfigureStatus.DEGRADED
                _harvest_event(
                    "error",
                    phase="configure",
                    attempt=attempt,
                    max_attempts=attempts,
                    error=str(exc),
                )
            if status is ConfigureStatus.OK:
                break
        self.configure_status = status
        if status is not ConfigureStatus.OK:
            fault = ConfigurationFault(
                f"page size {self.settings.page_size} not confirmed after {attempts} attempt(s)"
            )
            log_line(f"[HARVEST][WARN] {fault}; continuing with a degraded page size.")
            _harvest_event(
                "state",
                phase="configure",
                kind="degraded",
                error_code=fault.error_code,
                page_size=self.settings.page_size,
            )
            if self.telemetry is not None:
                self.telemetry.add_event("configuration_degraded")

    def _drive_to_start(self) -> HarvestPhase:
        """Advance a fresh session to the checkpoint's page before the loop starts."""

        target = self.checkpoint.page_index
        log_line(f"[HARVEST] Resuming at page {target}; advancing source from page 1.")
        for current in range(1, target):
            if self.cancel_event.is_set():
                return self._stop_error(ErrorCode.CANCELLED, "cancellation requested while resuming")
            if self.source.has_next() is False:
                return self._stop_error(
                    ErrorCode.RESUME_OUT_OF_RANGE,
                    f"resume index {target} exceeds available pages (source ended at page {current})",
                )
            self._call_source(self.source.advance, ErrorCode.ADVANCE_FAULT, label="resume_advance")
            _harvest_event("state", phase="resume", reached=current + 1, target=target)
            self._delay()
        self._resumed_at = target
        return HarvestPhase.FETCHING

    def _fetch(self) -> HarvestPhase:
        index = self.checkpoint.page_index

        def _read() -> tuple[RawPage, Optional[bool]]:
            rows = self.source.fetch_page(index)
            return list(rows or []), self.source.has_next()

        self._raw_page, self._has_next = self._call_source(_read, ErrorCode.FETCH_FAULT, label="fetch")
        log_line(f"[HARVEST] Page {index}: fetched {len(self._raw_page)} row(s).")
        return HarvestPhase.NORMALIZING

    def _normalize(self) -> HarvestPhase:
        records: List[Record] = []
        dropped = 0
        for position, row in enumerate(self._raw_page):
            try:
                records.append(normalize(row, key_strategy=self.key_strategy))
            except NormalizationError as exc:
                dropped += 1
                _harvest_event(
                    "error",
                    phase="normalize",
                    page_index=self.checkpoint.page_index,
                    row=position,
                    error_code=exc.error_code,
                    error=str(exc),
                )
        self._records = records
        self._dropped = dropped
        self.checkpoint.rows_dropped += dropped
        return HarvestPhase.DEDUP_AND_SINK

    def _dedup_and_sink(self) -> HarvestPhase:
        page_index = self.checkpoint.page_index
        distinct = {record.identity_key for record in self._records}
        overlap = sum(1 for key in distinct if self.ledger.contains(key))

        new_count = 0
        suppressed = 0
        for record in self._records:
            is_new = self.ledger.add(record.identity_key, page_index)
            if is_new:
                new_count += 1
            if is_new or self.writer.idempotent:
                self.writer.submit(record)
            else:
                suppressed += 1

        if self.persist_ledger:
            # Persisted keys never run ahead of completed sink writes.
            self.writer.drain()
            self.ledger.persist(self.run_key)
        self.checkpoint.records_ingested += new_count

        first_key = self._records[0].identity_key if self._records else None
        if first_key is not None and first_key == self.checkpoint.last_first_key:
            _harvest_event("state", phase="content_check", kind="first_row_unchanged", page_index=page_index)
        if first_key is not None:
            self.checkpoint.last_first_key = first_key

        self._outcome = PageOutcome(
            page_index=page_index,
            row_count=len(self._raw_page),
            key_count=len(distinct),
            overlap_count=overlap,
            first_key=first_key,
            has_next=self._has_next,
            dropped_count=self._dropped,
        )
        _harvest_event(
            "page",
            page_index=page_index,
            rows=len(self._raw_page),
            new=new_count,
            suppressed=suppressed,
            dropped=self._dropped,
            ledger_size=len(self.ledger),
        )
        return HarvestPhase.EVALUATING

    def _evaluate(self) -> HarvestPhase:
        outcome = self._outcome
        assert outcome is not None
        if self._resumed_at is not None:
            resumed_at, self._resumed_at = self._resumed_at, None
            if outcome.row_count == 0:
                return self._stop_error(
                    ErrorCode.RESUME_OUT_OF_RANGE,
                    f"resume index {resumed_at} exceeds available pages (page {resumed_at} is empty)",
                )
        self._learn_page_size(outcome)

        state = self.evaluator.evaluate(outcome, self.checkpoint)
        if self.evaluator.is_stagnant(outcome):
            self.checkpoint.stagnation_count += 1
        else:
            self.checkpoint.stagnation_count = 0
        self.checkpoint.pages_processed += 1

        if self.telemetry is not None:
            self.telemetry.add_page(
                {
                    "page_index": outcome.page_index,
                    "rows": outcome.row_count,
                    "new": outcome.key_count - outcome.overlap_count,
                    "overlap_ratio": round(outcome.overlap_ratio, 4),
                    "dropped": outcome.dropped_count,
                    "has_next": outcome.has_next,
                    "decision": state.kind.value,
                    "reason": state.reason,
                }
            )

        if state.is_stop:
            self.termination = state
            if state.kind is TerminationKind.STOP_SUSPECTED_LOOP:
                self.error_code = ErrorCode.LOOP_SUSPECTED
            return HarvestPhase.TERMINATED
        return HarvestPhase.ADVANCING

    def _learn_page_size(self, outcome: PageOutcome) -> None:
        """With an unconfirmed page size, trust the first non-empty page's length."""

        if self.configure_status is ConfigureStatus.OK or self._page_size_learned:
            return
        if outcome.row_count <= 0:
            return
        self._page_size_learned = True
        if outcome.row_count < self.evaluator.page_size:
            _harvest_event(
                "state",
                phase="configure",
                kind="page_size_learned",
                requested=self.evaluator.page_size,
                observed=outcome.row_count,
            )
            self.evaluator.page_size = outcome.row_count

    def _advance(self) -> HarvestPhase:
        self._call_source(self.source.advance, ErrorCode.ADVANCE_FAULT, label="advance")
        self._delay()
        self.checkpoint.page_index += 1
        self.store.save(self.checkpoint)
        return HarvestPhase.FETCHING

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _delay(self) -> None:
        low = max(0.0, self.settings.delay_min_seconds)
        high = max(low, self.settings.delay_max_seconds)
        seconds = self._rng.uniform(low, high) if high > 0 else 0.0
        if seconds > 0:
            _harvest_event("state", phase="delay", seconds=round(seconds, 2))
            self._sleep(seconds)

    def _call_source(self, operation: Callable[[], T], default_code: str, *, label: str) -> T:
        max_attempts = 1 + max(0, self.settings.fetch_retries)
        attempt = 0
        while True:
            attempt += 1
            try:
                return operation()
            except Exception as exc:  # noqa: BLE001
                code = getattr(exc, "error_code", None) or default_code
                _harvest_event(
                    "error",
                    phase=label,
                    page_index=self.checkpoint.page_index,
                    attempt=attempt,
                    error_code=code,
                    error=str(exc),
                )
                if not decide_retry(attempt, max_attempts, exc, error_code=code):
                    raise _FatalFault(exc, code) from exc
                self._sleep(compute_backoff_seconds(attempt))

    def _finish(self) -> HarvestResult:
        self.phase = HarvestPhase.TERMINATED
        self.history.append(HarvestPhase.TERMINATED)
        termination = self.termination or TerminationState.error(ErrorCode.INTERNAL, "no terminal state")

        self.writer.drain()
        if self.persist_ledger:
            try:
                self.ledger.persist(self.run_key)
            except Exception as exc:  # noqa: BLE001
                log_line(f"[HARVEST][WARN] Unable to persist ledger for {self.run_key}: {exc}")

        self.checkpoint.status = termination.kind.value
        try:
            self.store.save(self.checkpoint)
            if termination.kind is TerminationKind.STOP_NORMAL:
                self.store.archive(self.run_key)
        except OSError as exc:
            log_line(f"[HARVEST][WARN] Unable to persist final checkpoint: {exc}")

        _harvest_event(
            "state",
            phase="terminated",
            kind=termination.kind.value,
            reason=termination.reason,
            detail=termination.detail,
            error_code=self.error_code,
            page_index=self.checkpoint.page_index,
            records_ingested=self.checkpoint.records_ingested,
            ledger_size=len(self.ledger),
        )
        return HarvestResult(
            termination=termination,
            checkpoint=self.checkpoint,
            fault=self.fault,
            error_code=self.error_code,
            configure_status=self.configure_status,
            ledger_size=len(self.ledger),
            sink_stats=self.writer.stats(),
        )


__all__ = ["HarvestPhase", "HarvestResult", "HarvestSettings", "PaginationController"]
