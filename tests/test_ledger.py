from pathlib import Path

import pytest

from app.harvester import db
from app.harvester.ledger import FingerprintLedger
from tests.test_runs_api import _configure_temp_paths


def test_add_is_idempotent_and_tracks_first_page() -> None:
    ledger = FingerprintLedger()

    assert ledger.add("a", 1) is True
    assert ledger.add("a", 2) is False
    assert ledger.add("b", 2) is True

    assert len(ledger) == 2
    assert "a" in ledger
    assert ledger.contains("b")
    assert ledger.first_seen("a") == 1
    assert ledger.first_seen("missing") is None


def test_overlap_ratio_counts_distinct_keys() -> None:
    ledger = FingerprintLedger({"a": 1, "b": 1})

    assert ledger.overlap_ratio([]) == 0.0
    assert ledger.overlap_ratio(["a", "a", "c", "d"]) == pytest.approx(1 / 3)
    assert ledger.overlap_ratio(["a", "b"]) == 1.0


def test_persist_and_load_round_trip_per_run_key(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _configure_temp_paths(tmp_path, monkeypatch)
    db.initialize_schema()

    ledger = FingerprintLedger()
    ledger.add("k1", 1)
    ledger.add("k2", 2)
    assert ledger.persist("floorsheet_a") == 2
    assert ledger.persist("floorsheet_a") == 0

    ledger.add("k3", 3)
    ledger.persist("floorsheet_a")

    restored = FingerprintLedger.load("floorsheet_a")
    assert sorted(restored.keys()) == ["k1", "k2", "k3"]
    assert restored.first_seen("k2") == 2
    assert len(FingerprintLedger.load("floorsheet_b")) == 0

    db.clear_ledger_keys("floorsheet_a")
    assert len(FingerprintLedger.load("floorsheet_a")) == 0
