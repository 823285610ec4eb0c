import csv
import threading
from pathlib import Path

import pytest

from app.harvester import config, db, sinks
from app.harvester.faults import SinkFault
from app.harvester.records import contract_key, normalize
from app.harvester.sinks import (
    CsvFileSink,
    SinkWriter,
    SqliteRecordSink,
    UpsertResult,
    WriteExecutor,
    build_sink,
)
from tests.test_controller import ListSink, make_row
from tests.test_runs_api import _configure_temp_paths


def _record(n: int):
    return normalize(make_row(n), key_strategy=contract_key)


def test_csv_sink_writes_header_once_and_quotes_fields(tmp_path: Path) -> None:
    path = tmp_path / "out.csv"
    sink = CsvFileSink(path)
    sink.write(_record(1))
    sink.close()

    reopened = CsvFileSink(path)
    reopened.write(_record(2))
    reopened.close()

    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "SN,ContractNo,Symbol,Buyer,Seller,Quantity,Rate,Amount"
    assert lines[1] == '"1","20240000000001","NABIL","21","42","100","1,200","120,000"'
    assert len(lines) == 3
    with path.open(encoding="utf-8", newline="") as handle:
        assert len(list(csv.reader(handle))) == 3


def test_csv_sink_wraps_io_errors(tmp_path: Path) -> None:
    sink = CsvFileSink(tmp_path / "out.csv")
    sink.close()
    with pytest.raises(SinkFault):
        sink.write(_record(1))


def test_sqlite_sink_upsert_is_idempotent(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _configure_temp_paths(tmp_path, monkeypatch)
    sink = SqliteRecordSink("floorsheet_db")
    record = _record(7)

    assert sink.upsert(record.identity_key, record) is UpsertResult.INSERTED
    assert sink.upsert(record.identity_key, record) is UpsertResult.ALREADY_PRESENT
    assert db.count_records() == 1
    stored = db.get_record(record.identity_key)
    assert stored["contract_no"] == "20240000000007"
    assert stored["rate"] == "1,200"


def test_build_sink_picks_kind(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _configure_temp_paths(tmp_path, monkeypatch)
    csv_sink = build_sink("csv", run_key="k", output_path=tmp_path / "x.csv")
    assert isinstance(csv_sink, CsvFileSink)
    assert csv_sink.idempotent is False
    csv_sink.close()
    assert isinstance(build_sink("sqlite", run_key="k", output_path=tmp_path / "x.csv"), SqliteRecordSink)


class FlakySink(ListSink):
    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.calls = 0

    def write(self, record) -> None:
        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise SinkFault("locked")
        super().write(record)


def test_writer_retries_with_backoff() -> None:
    sleeps: list[float] = []
    sink = FlakySink(failures=2)
    writer = SinkWriter(sink, executor=WriteExecutor(1), max_attempts=3, sleep=sleeps.append)

    writer.submit(_record(1))
    writer.drain()

    assert len(sink.records) == 1
    assert sink.calls == 3
    assert sleeps == [1.0, 2.0]
    assert writer.stats()["written"] == 1
    assert writer.outage is False


def test_writer_flags_outage_after_consecutive_failures(monkeypatch: pytest.MonkeyPatch) -> None:
    events: list[dict] = []
    monkeypatch.setattr(sinks, "_harvest_event", lambda *args, **kwargs: events.append(kwargs))
    sink = FlakySink(failures=100)
    writer = SinkWriter(sink, executor=WriteExecutor(1), max_attempts=1, outage_threshold=3, sleep=lambda s: None)

    for n in range(1, 3):
        writer.submit(_record(n))
    assert writer.outage is False
    writer.submit(_record(3))

    assert writer.outage is True
    assert writer.failed == 3
    assert [event["identity_key"] for event in events if event.get("phase") == "sink"] == [
        "20240000000001",
        "20240000000002",
        "20240000000003",
    ]


def test_successful_write_resets_consecutive_failures() -> None:
    sink = FlakySink(failures=2)
    writer = SinkWriter(sink, executor=WriteExecutor(1), max_attempts=1, outage_threshold=3, sleep=lambda s: None)

    for n in range(1, 4):
        writer.submit(_record(n))

    assert writer.failed == 2
    assert writer.consecutive_failures == 0


def test_single_worker_runs_inline() -> None:
    calls = []
    executor = WriteExecutor(1)

    future = executor.submit("key", lambda: calls.append("called"))
    executor.shutdown()

    assert future.done()
    assert future.result() is None
    assert calls == ["called"]
    assert executor.peak_in_flight == 0


def test_peak_in_flight_tracks(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "ENABLE_WRITE_EXECUTOR", True)
    executor = WriteExecutor(2)
    started = threading.Event()
    release = threading.Event()

    def blocking() -> None:
        started.set()
        release.wait(timeout=5)

    first = executor.submit("one", blocking)
    assert started.wait(timeout=5)
    second = executor.submit("two", lambda: None)
    second.result(timeout=5)
    release.set()
    first.result(timeout=5)
    executor.shutdown()

    assert executor.peak_in_flight >= 2


def test_queue_overflow_runs_inline(monkeypatch: pytest.MonkeyPatch) -> None:
    events: list[dict] = []
    monkeypatch.setattr(config, "ENABLE_WRITE_EXECUTOR", True)
    monkeypatch.setattr(config, "MAX_PENDING_WRITES", 1)
    monkeypatch.setattr(sinks, "_harvest_event", lambda *args, **kwargs: events.append(kwargs))

    executor = WriteExecutor(2)
    started = threading.Event()
    release = threading.Event()

    def blocking() -> None:
        started.set()
        release.wait(timeout=5)

    first = executor.submit("one", blocking)
    assert started.wait(timeout=5)
    ran_on: list[str] = []
    overflow = executor.submit("two", lambda: ran_on.append(threading.current_thread().name))
    release.set()
    first.result(timeout=5)
    executor.shutdown()

    assert overflow.done()
    assert ran_on == [threading.current_thread().name]
    assert any(event.get("kind") == "queue_overflow" for event in events)


def test_inline_failure_is_captured_on_future() -> None:
    executor = WriteExecutor(1)

    def boom() -> None:
        raise SinkFault("nope")

    future = executor.submit("key", boom)
    assert isinstance(future.exception(), SinkFault)
