"""Helpers for persisting and restoring harvest checkpoints."""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from . import config
from .logging_utils import _harvest_event
from .utils import log_line, sanitize_filename


@dataclass
class Checkpoint:
    """Cursor for one harvest run.

    ``page_index`` is the 1-based page the next fetch targets. Only the
    pagination controller mutates a checkpoint.
    """

    run_key: str
    page_index: int = 1
    records_ingested: int = 0
    stagnation_count: int = 0
    started_at: float = field(default_factory=time.time)
    rows_dropped: int = 0
    pages_processed: int = 0
    last_first_key: Optional[str] = None
    output_path: Optional[str] = None
    status: str = "running"
    saved_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        known = {name for name in cls.__dataclass_fields__}
        payload = {key: value for key, value in data.items() if key in known}
        checkpoint = cls(**payload)
        checkpoint.page_index = max(1, int(checkpoint.page_index))
        return checkpoint


class CheckpointStore:
    """JSON-file checkpoint store, one file per run key under ``CHECKPOINT_DIR``."""

    def __init__(self, directory: Optional[Path] = None) -> None:
        self.directory = Path(directory) if directory is not None else config.CHECKPOINT_DIR

    def path_for(self, run_key: str) -> Path:
        return self.directory / f"{sanitize_filename(run_key)}.json"

    def load(self, run_key: str) -> Optional[Checkpoint]:
        """Load the persisted checkpoint for ``run_key`` if present and readable."""

        path = self.path_for(run_key)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return Checkpoint.from_dict(data)
        except (OSError, ValueError, TypeError) as exc:
            log_line(f"[CHECKPOINT] Failed to read checkpoint {path}: {exc}")
            return None

    def save(self, checkpoint: Checkpoint) -> None:
        """Persist ``checkpoint`` atomically (write temp file, then replace)."""

        path = self.path_for(checkpoint.run_key)
        path.parent.mkdir(parents=True, exist_ok=True)
        checkpoint.saved_at = time.time()
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        tmp_path.write_text(
            json.dumps(checkpoint.to_dict(), ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        tmp_path.replace(path)
        _harvest_event(
            "checkpoint",
            phase="save",
            run_key=checkpoint.run_key,
            page_index=checkpoint.page_index,
            records_ingested=checkpoint.records_ingested,
            stagnation=checkpoint.stagnation_count,
        )

    def archive(self, run_key: str) -> Optional[Path]:
        """Move a finished run's checkpoint aside so the next run starts fresh."""

        path = self.path_for(run_key)
        if not path.exists():
            return None
        target = path.with_name(f"{path.stem}.done.json")
        path.replace(target)
        return target

    def clear(self, run_key: str) -> None:
        try:
            self.path_for(run_key).unlink()
        except FileNotFoundError:
            pass


__all__ = ["Checkpoint", "CheckpointStore"]
