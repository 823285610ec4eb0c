from app.harvester import config
from app.harvester.config_validation import validate_runtime_config
import pytest


def test_defaults_are_valid() -> None:
    validate_runtime_config("tests")


@pytest.mark.parametrize("threshold", [0, -0.1, 1.01])
def test_overlap_threshold_out_of_range(monkeypatch: pytest.MonkeyPatch, threshold: float) -> None:
    monkeypatch.setattr(config, "OVERLAP_THRESHOLD", threshold)
    with pytest.raises(ValueError):
        validate_runtime_config("cli")


def test_loop_strikes_must_be_positive(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "LOOP_STRIKES", 0)
    with pytest.raises(ValueError):
        validate_runtime_config("cli")


def test_inverted_delay_range(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "DELAY_MIN_SECONDS", 5.0)
    monkeypatch.setattr(config, "DELAY_MAX_SECONDS", 1.0)
    with pytest.raises(ValueError):
        validate_runtime_config("ui")


def test_unknown_sink_kind() -> None:
    with pytest.raises(ValueError):
        validate_runtime_config("cli", mode="parquet")


def test_unknown_identity_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "IDENTITY_KEY_STRATEGY", "row_number")
    with pytest.raises(ValueError):
        validate_runtime_config("cli")


def test_invalid_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "ROWS_TIMEOUT_SECONDS", 0)
    with pytest.raises(ValueError):
        validate_runtime_config("cli")


def test_upload_requires_token(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "UPLOAD_ENABLED", True)
    monkeypatch.setattr(config, "DRIVE_ACCESS_TOKEN", "")
    with pytest.raises(ValueError):
        validate_runtime_config("cli")


def test_executor_knobs_clamped(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "ENABLE_WRITE_EXECUTOR", True)
    monkeypatch.setattr(config, "MAX_PARALLEL_WRITES", 0)
    monkeypatch.setattr(config, "MAX_PENDING_WRITES", 0)
    monkeypatch.setattr(config, "SINK_OUTAGE_THRESHOLD", -3)

    validate_runtime_config("tests")

    assert config.MAX_PARALLEL_WRITES == 1
    assert config.MAX_PENDING_WRITES == 1
    assert config.SINK_OUTAGE_THRESHOLD == 1
