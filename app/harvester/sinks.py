"""Record sinks and the write path between the controller and them.

Two sink flavours exist. Append-only sinks (``write``) rely on the
controller's ledger to suppress duplicates; idempotent sinks (``upsert``)
enforce exactly-once persistence themselves by identity key.
"""
from __future__ import annotations

import csv
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import Callable, List, Optional

from . import config, db
from .error_codes import ErrorCode
from .faults import SinkFault
from .logging_utils import _harvest_event
from .records import FIELD_NAMES, Record
from .retry_policy import compute_backoff_seconds, decide_retry


class UpsertResult(str, Enum):
    INSERTED = "inserted"
    ALREADY_PRESENT = "already_present"


class AppendOnlySink(ABC):
    """Durable destination that stores every record it is handed."""

    idempotent = False

    @abstractmethod
    def write(self, record: Record) -> None:
        """Persist ``record``; raise :class:`SinkFault` on failure."""

    def close(self) -> None:
        return None


class IdempotentSink(ABC):
    """Durable destination keyed by identity; repeated upserts are no-ops."""

    idempotent = True

    @abstractmethod
    def upsert(self, key: str, record: Record) -> UpsertResult:
        """Store ``record`` under ``key`` unless the key is already present."""

    def close(self) -> None:
        return None


class CsvFileSink(AppendOnlySink):
    """Append records to a CSV file, quoting every data field.

    The header line is written only when the file is new or empty, so a
    resumed run keeps appending to the same output.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fresh = not self.path.exists() or self.path.stat().st_size == 0
        self._handle = self.path.open("a", encoding="utf-8", newline="")
        self._writer = csv.writer(self._handle, quoting=csv.QUOTE_ALL, lineterminator="\n")
        self._lock = Lock()
        if fresh:
            self._handle.write(",".join(FIELD_NAMES) + "\n")
            self._handle.flush()

    def write(self, record: Record) -> None:
        with self._lock:
            try:
                self._writer.writerow(record.as_row())
                self._handle.flush()
            except (OSError, ValueError) as exc:
                raise SinkFault(f"CSV write failed for {self.path.name}: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            if not self._handle.closed:
                self._handle.close()


class SqliteRecordSink(IdempotentSink):
    """Upsert records into the ``records`` table keyed by identity key."""

    def __init__(self, run_key: str) -> None:
        self.run_key = run_key
        db.initialize_schema()

    def upsert(self, key: str, record: Record) -> UpsertResult:
        try:
            inserted = db.insert_record_if_absent(key, record.as_row(), run_key=self.run_key)
        except Exception as exc:  # noqa: BLE001
            raise SinkFault(f"SQLite upsert failed: {exc}") from exc
        return UpsertResult.INSERTED if inserted else UpsertResult.ALREADY_PRESENT


WriteFn = Callable[[], None]


class WriteExecutor:
    """
    Thin concurrency wrapper around sink writes.

    IMPORTANT:
    - Default max_workers is 1, so writes run inline on the harvest thread.
    - Only sink writes are offloaded, never Page Source navigation.
    - Ledger updates happen on the harvest thread before a write is queued.
    """

    def __init__(self, max_workers: int) -> None:
        self._max_workers = max(1, max_workers)
        self._executor: Optional[ThreadPoolExecutor] = (
            ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="sink")
            if self._max_workers > 1 and config.ENABLE_WRITE_EXECUTOR
            else None
        )
        self._lock = Lock()
        self._in_flight: int = 0
        self._peak_in_flight: int = 0

    def submit(self, key: str, fn: WriteFn) -> Future:
        """Run ``fn`` inline or on the pool; always returns a ``Future``."""

        if self._executor is None:
            return self._run_inline(fn)

        max_pending = max(1, config.MAX_PENDING_WRITES)
        with self._lock:
            if self._in_flight >= max_pending:
                _harvest_event(
                    "state",
                    phase="write_executor",
                    kind="queue_overflow",
                    key=key,
                    in_flight=self._in_flight,
                    max_pending=max_pending,
                )
                overflow = True
            else:
                overflow = False
                self._in_flight += 1
                self._peak_in_flight = max(self._peak_in_flight, self._in_flight)
        if overflow:
            return self._run_inline(fn)

        def _wrapped() -> None:
            try:
                fn()
            finally:
                with self._lock:
                    self._in_flight -= 1

        return self._executor.submit(_wrapped)

    @staticmethod
    def _run_inline(fn: WriteFn) -> Future:
        future: Future = Future()
        try:
            fn()
        except BaseException as exc:  # noqa: BLE001
            future.set_exception(exc)
        else:
            future.set_result(None)
        return future

    @property
    def peak_in_flight(self) -> int:
        with self._lock:
            return self._peak_in_flight

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)


class SinkWriter:
    """Retrying write path in front of a sink.

    Each record gets up to ``max_attempts`` tries with backoff. A record that
    still fails is surfaced and counted; ``outage_threshold`` failed records in
    a row flag a systemic sink outage, which the controller turns into a
    failed run.
    """

    def __init__(
        self,
        sink: AppendOnlySink | IdempotentSink,
        *,
        executor: Optional[WriteExecutor] = None,
        max_attempts: Optional[int] = None,
        outage_threshold: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.sink = sink
        self.executor = executor or WriteExecutor(config.MAX_PARALLEL_WRITES)
        self.max_attempts = max(1, max_attempts if max_attempts is not None else config.SINK_MAX_ATTEMPTS)
        self.outage_threshold = max(
            1, outage_threshold if outage_threshold is not None else config.SINK_OUTAGE_THRESHOLD
        )
        self._sleep = sleep
        self._lock = threading.Lock()
        self._pending: List[Future] = []
        self.written = 0
        self.inserted = 0
        self.already_present = 0
        self.failed = 0
        self.consecutive_failures = 0
        self.last_error: Optional[str] = None

    @property
    def idempotent(self) -> bool:
        return bool(getattr(self.sink, "idempotent", False))

    @property
    def outage(self) -> bool:
        with self._lock:
            return self.consecutive_failures >= self.outage_threshold

    def submit(self, record: Record) -> Future:
        future = self.executor.submit(record.identity_key, lambda: self._write_with_retry(record))
        with self._lock:
            self._pending = [item for item in self._pending if not item.done()]
            self._pending.append(future)
        return future

    def _apply(self, record: Record) -> None:
        if isinstance(self.sink, IdempotentSink):
            result = self.sink.upsert(record.identity_key, record)
            with self._lock:
                if result is UpsertResult.INSERTED:
                    self.inserted += 1
                else:
                    self.already_present += 1
        else:
            self.sink.write(record)

    def _write_with_retry(self, record: Record) -> None:
        attempt = 0
        while True:
            attempt += 1
            try:
                self._apply(record)
            except Exception as exc:  # noqa: BLE001
                code = getattr(exc, "error_code", ErrorCode.SINK_FAULT)
                if decide_retry(attempt, self.max_attempts, exc, error_code=code):
                    self._sleep(compute_backoff_seconds(attempt))
                    continue
                self._record_failure(record, exc, attempt)
                return
            with self._lock:
                self.written += 1
                self.consecutive_failures = 0
            return

    def _record_failure(self, record: Record, exc: Exception, attempts: int) -> None:
        with self._lock:
            self.failed += 1
            self.consecutive_failures += 1
            self.last_error = str(exc)
            consecutive = self.consecutive_failures
        _harvest_event(
            "error",
            phase="sink",
            error_code=ErrorCode.SINK_FAULT,
            identity_key=record.identity_key,
            contract_no=record.contract_no,
            attempts=attempts,
            consecutive_failures=consecutive,
            error=str(exc),
        )

    def drain(self) -> None:
        """Block until every queued write has completed."""

        with self._lock:
            pending, self._pending = self._pending, []
        for future in pending:
            try:
                future.result()
            except Exception as exc:  # noqa: BLE001
                # _write_with_retry records sink failures itself; anything here escaped it.
                with self._lock:
                    self.failed += 1
                    self.consecutive_failures += 1
                    self.last_error = str(exc)
                _harvest_event("error", phase="sink", kind="unhandled", error=repr(exc))

    def close(self) -> None:
        self.drain()
        self.executor.shutdown()
        self.sink.close()

    def stats(self) -> dict:
        with self._lock:
            return {
                "written": self.written,
                "inserted": self.inserted,
                "already_present": self.already_present,
                "failed": self.failed,
                "consecutive_failures": self.consecutive_failures,
                "peak_in_flight": self.executor.peak_in_flight,
            }


def build_sink(kind: str, *, run_key: str, output_path: Path) -> AppendOnlySink | IdempotentSink:
    """Return the configured sink implementation."""

    if config.use_idempotent_sink(kind):
        return SqliteRecordSink(run_key)
    return CsvFileSink(output_path)


__all__ = [
    "AppendOnlySink",
    "CsvFileSink",
    "IdempotentSink",
    "SinkWriter",
    "SqliteRecordSink",
    "UpsertResult",
    "WriteExecutor",
    "build_sink",
]
