from __future__ import annotations

from typing import Literal

from . import config
from .logging_utils import _harvest_event
from .records import KEY_STRATEGIES
from .utils import log_line

Entrypoint = Literal["ui", "cli", "replay", "tests"]


def _raise_config_error(
    message: str, *, entrypoint: Entrypoint, error: str, mode: str | None
) -> None:
    _harvest_event(
        "error",
        phase="config",
        context="runtime_validation",
        error=error,
        entrypoint=entrypoint,
        mode=mode,
    )
    mode_fragment = f", mode={mode}" if mode else ""
    log_line(f"[CONFIG] {message} (entrypoint={entrypoint}{mode_fragment})")
    raise ValueError(message)


def _clamp_to_one(field: str, *, entrypoint: Entrypoint, mode: str | None) -> None:
    value = getattr(config, field)
    _harvest_event(
        "state",
        phase="config",
        context="runtime_validation",
        kind="config_adjustment",
        field=field,
        value=value,
        adjusted=1,
        entrypoint=entrypoint,
        mode=mode,
    )
    log_line(f"[CONFIG] {field} < 1 when executor enabled; clamping to 1 for safety.")
    setattr(config, field, 1)


def validate_runtime_config(entrypoint: Entrypoint, *, mode: str | None = None) -> None:
    """Validate runtime configuration for the given entrypoint.

    Raises ``ValueError`` when a blocking misconfiguration is detected.
    Non-fatal adjustments (e.g., clamping executor knobs) are logged but do not
    raise.
    """

    if not 0 < config.OVERLAP_THRESHOLD <= 1:
        _raise_config_error(
            "OVERLAP_THRESHOLD must be in (0, 1].",
            entrypoint=entrypoint,
            error="overlap_threshold_invalid",
            mode=mode,
        )

    if config.LOOP_STRIKES < 1:
        _raise_config_error(
            "LOOP_STRIKES must be at least 1.",
            entrypoint=entrypoint,
            error="loop_strikes_invalid",
            mode=mode,
        )

    if config.PAGE_SIZE < 1:
        _raise_config_error(
            "PAGE_SIZE must be at least 1.",
            entrypoint=entrypoint,
            error="page_size_invalid",
            mode=mode,
        )

    if config.DELAY_MIN_SECONDS < 0 or config.DELAY_MAX_SECONDS < config.DELAY_MIN_SECONDS:
        _raise_config_error(
            "DELAY_MIN_SECONDS must be >= 0 and not exceed DELAY_MAX_SECONDS.",
            entrypoint=entrypoint,
            error="delay_range_invalid",
            mode=mode,
        )

    if config.FETCH_RETRIES < 0:
        _raise_config_error(
            "FETCH_RETRIES must be non-negative.",
            entrypoint=entrypoint,
            error="fetch_retries_invalid",
            mode=mode,
        )

    sink_kind = (mode or config.SINK_KIND).strip().lower()
    if sink_kind not in config.SINK_KINDS:
        _raise_config_error(
            f"Unknown sink {sink_kind!r}; expected one of {', '.join(config.SINK_KINDS)}.",
            entrypoint=entrypoint,
            error="sink_unknown",
            mode=mode,
        )

    if config.IDENTITY_KEY_STRATEGY not in KEY_STRATEGIES:
        _raise_config_error(
            f"Unknown identity key strategy {config.IDENTITY_KEY_STRATEGY!r}.",
            entrypoint=entrypoint,
            error="identity_key_unknown",
            mode=mode,
        )

    if config.ENABLE_WRITE_EXECUTOR and config.MAX_PARALLEL_WRITES < 1:
        _clamp_to_one("MAX_PARALLEL_WRITES", entrypoint=entrypoint, mode=mode)

    if config.ENABLE_WRITE_EXECUTOR and config.MAX_PENDING_WRITES < 1:
        _clamp_to_one("MAX_PENDING_WRITES", entrypoint=entrypoint, mode=mode)

    if config.SINK_MAX_ATTEMPTS < 1:
        _clamp_to_one("SINK_MAX_ATTEMPTS", entrypoint=entrypoint, mode=mode)

    if config.SINK_OUTAGE_THRESHOLD < 1:
        _clamp_to_one("SINK_OUTAGE_THRESHOLD", entrypoint=entrypoint, mode=mode)

    timeout_fields = [
        ("NAV_TIMEOUT_SECONDS", config.NAV_TIMEOUT_SECONDS),
        ("SELECTOR_TIMEOUT_SECONDS", config.SELECTOR_TIMEOUT_SECONDS),
        ("ROWS_TIMEOUT_SECONDS", config.ROWS_TIMEOUT_SECONDS),
        ("UPLOAD_TIMEOUT_SECONDS", config.UPLOAD_TIMEOUT_SECONDS),
    ]

    for field_name, value in timeout_fields:
        if value <= 0:
            _raise_config_error(
                f"{field_name} must be greater than zero.",
                entrypoint=entrypoint,
                error="invalid_timeout",
                mode=mode,
            )

    if config.UPLOAD_ENABLED and not config.DRIVE_ACCESS_TOKEN:
        _raise_config_error(
            "HARVEST_UPLOAD_ENABLED requires DRIVE_ACCESS_TOKEN.",
            entrypoint=entrypoint,
            error="upload_token_missing",
            mode=mode,
        )


__all__ = ["validate_runtime_config", "Entrypoint"]
