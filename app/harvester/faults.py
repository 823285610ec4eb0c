"""Exception taxonomy for the harvester.

Row-level faults never escalate to page level; page-level transient faults
escalate to run level only after retry exhaustion.
"""
from __future__ import annotations

from typing import Optional

from .error_codes import ErrorCode


class HarvestFault(Exception):
    """Base class for all harvester faults; carries a stable error code."""

    default_code = ErrorCode.INTERNAL

    def __init__(self, message: str, *, error_code: Optional[str] = None) -> None:
        super().__init__(message)
        self.error_code = error_code or self.default_code

    def __str__(self) -> str:  # pragma: no cover - inherited behaviour
        return str(self.args[0]) if self.args else ""


class TransientFetchFault(HarvestFault):
    """Navigation, render wait or timeout failure while talking to the Page Source."""

    default_code = ErrorCode.FETCH_FAULT


class RowNormalizationFault(HarvestFault):
    """A single raw row could not be normalised (render glitch, not end of data)."""

    default_code = ErrorCode.ROW_MALFORMED

    def __init__(
        self,
        message: str,
        *,
        error_code: Optional[str] = None,
        row: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message, error_code=error_code)
        self.row = list(row) if row is not None else None


NormalizationError = RowNormalizationFault


class SinkFault(HarvestFault):
    """A record could not be written to (or upserted into) the Record Sink."""

    default_code = ErrorCode.SINK_FAULT


class ConfigurationFault(HarvestFault):
    """The Page Source could not confirm the requested page size."""

    default_code = ErrorCode.CONFIGURATION_DEGRADED


class LoopSuspectedFault(HarvestFault):
    """Raised only by callers that opt into treating a stuck pager as an exception."""

    default_code = ErrorCode.LOOP_SUSPECTED


class UploadError(HarvestFault):
    def __init__(self, message: str, *, error_code: Optional[str] = None, http_status: int | None = None) -> None:
        super().__init__(message, error_code=error_code or ErrorCode.UPLOAD_FAILED)
        self.http_status = http_status


__all__ = [
    "HarvestFault",
    "TransientFetchFault",
    "RowNormalizationFault",
    "NormalizationError",
    "SinkFault",
    "ConfigurationFault",
    "LoopSuspectedFault",
    "UploadError",
]
