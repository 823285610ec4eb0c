"""Run telemetry: one entry per processed page, written as JSON per run."""

from __future__ import annotations

import json
import os
import time
import uuid
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import config


def _ts() -> str:
    return time.strftime("%Y%m%d_%H%M%S")


class RunTelemetry:
    """Collect per-page telemetry for analytics and export."""

    def __init__(self, run_key: str) -> None:
        self.run_id = f"{_ts()}_{uuid.uuid4().hex[:8]}"
        self.run_key = run_key
        self.started_at = time.time()
        self.pages: List[Dict[str, Any]] = []
        self.summary: Dict[str, Any] = defaultdict(int)

    def add_page(self, entry: Dict[str, Any]) -> None:
        self.pages.append(dict(entry))
        self.summary["pages"] += 1
        self.summary["rows"] += int(entry.get("rows", 0))
        self.summary["new_records"] += int(entry.get("new", 0))
        self.summary["dropped_rows"] += int(entry.get("dropped", 0))

    def add_event(self, name: str) -> None:
        self.summary[f"count_{name}"] += 1

    def finalize(self, extra: Optional[Dict[str, Any]] = None) -> str:
        runs_dir = Path(config.RUNS_DIR)
        runs_dir.mkdir(parents=True, exist_ok=True)
        payload = {
            "run_id": self.run_id,
            "run_key": self.run_key,
            "started_at": self.started_at,
            "ended_at": time.time(),
            "summary": dict(self.summary),
            "pages": self.pages,
            **(extra or {}),
        }
        path = runs_dir / f"run_{self.run_id}.json"
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2, default=str)
        return str(path)


def prune_old_exports() -> None:
    exports_dir = str(config.EXPORTS_DIR)
    if not os.path.isdir(exports_dir):
        return
    files = sorted(
        [os.path.join(exports_dir, p) for p in os.listdir(exports_dir) if p.endswith(".xlsx")]
    )
    while len(files) > config.MAX_EXPORTS:
        old = files.pop(0)
        try:
            os.remove(old)
        except OSError:
            continue


__all__ = [
    "RunTelemetry",
    "prune_old_exports",
]
