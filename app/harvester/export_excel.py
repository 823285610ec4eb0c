"""Excel export helpers for run telemetry."""

from __future__ import annotations

import json
import os
from typing import Optional

import pandas as pd

from . import config
from .records import FIELD_NAMES
from .telemetry import prune_old_exports


def _latest_run_json_path() -> Optional[str]:
    """Return the most recent run telemetry JSON path, if any.

    Telemetry files are named ``run_<timestamp>_<suffix>.json`` so sorted
    order is chronological.
    """

    runs_dir = str(config.RUNS_DIR)
    if not os.path.isdir(runs_dir):
        return None

    runs = sorted(
        [os.path.join(runs_dir, path) for path in os.listdir(runs_dir) if path.endswith(".json")]
    )
    return runs[-1] if runs else None


def _load_records(output_path: Optional[str]) -> pd.DataFrame:
    if not output_path or not os.path.isfile(output_path):
        return pd.DataFrame(columns=list(FIELD_NAMES))
    return pd.read_csv(output_path, dtype=str, keep_default_na=False)


def export_latest_run_to_excel(dest_path: Optional[str] = None) -> str:
    """Create an Excel workbook from the most recent run.

    Sheets: ``Pages`` (one row per processed page), ``Summary`` (run totals and
    termination), ``Records`` (the harvested CSV, when the run wrote one) and
    ``By_Symbol`` (record counts per symbol).
    """

    run_path = _latest_run_json_path()
    if not run_path:
        raise FileNotFoundError("No run telemetry available to export")

    with open(run_path, "r", encoding="utf-8") as handle:
        payload = json.load(handle)

    pages = pd.DataFrame(payload.get("pages", []))
    if pages.empty:
        pages = pd.DataFrame([{"info": "No pages in latest run"}])

    result = payload.get("result") or {}
    summary_rows = [
        {"metric": "run_key", "value": payload.get("run_key")},
        {"metric": "status", "value": payload.get("status")},
        {"metric": "reason", "value": result.get("reason")},
        {"metric": "error_code", "value": result.get("error_code")},
    ]
    summary_rows.extend(
        {"metric": name, "value": value} for name, value in sorted((payload.get("summary") or {}).items())
    )
    summary = pd.DataFrame(summary_rows)

    records = _load_records(payload.get("output_path"))
    by_symbol = (
        records.groupby("Symbol").size().reset_index(name="count").sort_values("count", ascending=False)
        if not records.empty and "Symbol" in records.columns
        else pd.DataFrame()
    )

    exports_dir = str(config.EXPORTS_DIR)
    os.makedirs(exports_dir, exist_ok=True)
    if not dest_path:
        basename = f"floorsheet_{payload['run_id']}.xlsx"
        dest_path = os.path.join(exports_dir, basename)

    with pd.ExcelWriter(dest_path, engine="openpyxl") as writer:
        pages.to_excel(writer, index=False, sheet_name="Pages")
        summary.to_excel(writer, index=False, sheet_name="Summary")
        records.to_excel(writer, index=False, sheet_name="Records")
        if not by_symbol.empty:
            by_symbol.to_excel(writer, index=False, sheet_name="By_Symbol")

    prune_old_exports()
    return dest_path


__all__ = ["export_latest_run_to_excel"]
