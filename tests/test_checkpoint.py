import json
from pathlib import Path

from app.harvester.checkpoint import Checkpoint, CheckpointStore


def test_save_and_load_round_trip(tmp_path: Path) -> None:
    store = CheckpointStore(tmp_path)
    checkpoint = Checkpoint(run_key="floorsheet_2024-01-01", page_index=4, records_ingested=1500, stagnation_count=1)

    store.save(checkpoint)
    loaded = store.load("floorsheet_2024-01-01")

    assert loaded is not None
    assert loaded.page_index == 4
    assert loaded.records_ingested == 1500
    assert loaded.stagnation_count == 1
    assert loaded.saved_at is not None
    assert not store.path_for("floorsheet_2024-01-01").with_suffix(".json.tmp").exists()


def test_load_tolerates_missing_corrupt_and_unknown_fields(tmp_path: Path) -> None:
    store = CheckpointStore(tmp_path)
    assert store.load("nothing") is None

    store.path_for("broken").write_text("{not json", encoding="utf-8")
    assert store.load("broken") is None

    store.path_for("future").write_text(
        json.dumps({"run_key": "future", "page_index": 0, "new_field": True}), encoding="utf-8"
    )
    loaded = store.load("future")
    assert loaded is not None
    assert loaded.page_index == 1


def test_archive_moves_checkpoint_aside(tmp_path: Path) -> None:
    store = CheckpointStore(tmp_path)
    store.save(Checkpoint(run_key="done"))

    target = store.archive("done")

    assert target is not None and target.name == "done.done.json"
    assert store.load("done") is None
    assert store.archive("done") is None


def test_run_key_is_sanitised_for_the_filename(tmp_path: Path) -> None:
    store = CheckpointStore(tmp_path)
    assert store.path_for("floor sheet/2024").name == "floor_sheet_2024.json"
