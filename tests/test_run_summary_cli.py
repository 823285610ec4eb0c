from pathlib import Path

import pytest

from app.harvester import db
from app.harvester import run_summary_cli
from tests.test_runs_api import _configure_temp_paths, _finished_run


def test_run_summary_cli_prints_summary(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
) -> None:
    _configure_temp_paths(tmp_path, monkeypatch)
    db.initialize_schema()
    run_id = _finished_run("floorsheet_2024-01-01", status="completed_suspected_loop")

    exit_code = run_summary_cli.main(["--run-id", str(run_id)])
    assert exit_code == 0

    out = capsys.readouterr().out
    assert f"Run {run_id} (floorsheet_2024-01-01" in out
    assert "completed_suspected_loop" in out
    assert "records_ingested: 1137" in out
    assert '"page_index": 3' in out


def test_run_summary_cli_latest(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
) -> None:
    _configure_temp_paths(tmp_path, monkeypatch)
    db.initialize_schema()
    _finished_run("floorsheet_2024-01-01")
    latest = _finished_run("floorsheet_2024-01-02")

    assert run_summary_cli.main(["--latest"]) == 0
    assert f"Run {latest} (floorsheet_2024-01-02" in capsys.readouterr().out


def test_run_summary_cli_errors_for_unknown_run(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
) -> None:
    _configure_temp_paths(tmp_path, monkeypatch)
    db.initialize_schema()

    with pytest.raises(SystemExit) as excinfo:
        run_summary_cli.main(["--run-id", "999"])
    assert excinfo.value.code == 2
    assert "Run 999 does not exist" in capsys.readouterr().err

    with pytest.raises(SystemExit):
        run_summary_cli.main([])
