from __future__ import annotations

"""Centralised error code taxonomy for harvester failures.

These codes are persisted in the runs.error_code column and included in
structured logs so that a failed or flagged run explains itself. Keep them
stable for reporting.
"""


class ErrorCode:
    FETCH_TIMEOUT = "fetch_timeout"
    FETCH_FAULT = "fetch_fault"
    ADVANCE_FAULT = "advance_fault"
    ROW_ARITY = "row_arity"
    ROW_MALFORMED = "row_malformed"
    SINK_FAULT = "sink_fault"
    SINK_OUTAGE = "sink_outage"
    LOOP_SUSPECTED = "loop_suspected"
    CONFIGURATION_DEGRADED = "configuration_degraded"
    RESUME_OUT_OF_RANGE = "resume_out_of_range"
    CANCELLED = "cancelled"
    UPLOAD_FAILED = "upload_failed"
    HTTP_5XX = "http_5xx"
    HTTP_4XX = "http_4xx"
    INTERNAL = "internal_error"


__all__ = ["ErrorCode"]
