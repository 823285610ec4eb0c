"""SQLite helpers for the harvester.

This module defines the project database path, connection helper, schema
initialisation, and helpers for run bookkeeping, the idempotent record store
and the persisted fingerprint ledger.
"""
from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from . import config
from .utils import now_iso

DB_PATH: Path = config.DB_PATH


class RunNotFoundError(LookupError):
    def __init__(self, run_id: int) -> None:
        super().__init__(f"Run {run_id} does not exist")
        self.run_id = run_id


def get_connection() -> sqlite3.Connection:
    """Return a SQLite connection to the project database.

    The parent directory is created if missing and ``check_same_thread`` is
    disabled so sink writes may run on executor threads. Callers must manage
    concurrency at a higher layer.
    """

    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(DB_PATH, check_same_thread=False, timeout=30)
    conn.row_factory = sqlite3.Row
    return conn


def initialize_schema() -> None:
    """Create the baseline tables if they do not yet exist.

    Safe to call multiple times; each statement uses ``IF NOT EXISTS``.
    """

    statements: Iterable[str] = (
        """
        CREATE TABLE IF NOT EXISTS runs (
            id                INTEGER PRIMARY KEY AUTOINCREMENT,
            run_key           TEXT NOT NULL,
            started_at        TEXT NOT NULL,
            ended_at          TEXT,
            trigger           TEXT NOT NULL,
            status            TEXT NOT NULL,
            reason            TEXT,
            error_code        TEXT,
            pages_processed   INTEGER NOT NULL DEFAULT 0,
            records_ingested  INTEGER NOT NULL DEFAULT 0,
            output_path       TEXT,
            params_json       TEXT NOT NULL,
            checkpoint_json   TEXT
        );
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_runs_started_at
            ON runs(started_at DESC);
        """,
        """
        CREATE TABLE IF NOT EXISTS records (
            identity_key  TEXT PRIMARY KEY,
            sn            TEXT,
            contract_no   TEXT NOT NULL,
            symbol        TEXT,
            buyer         TEXT,
            seller        TEXT,
            quantity      TEXT,
            rate          TEXT,
            amount        TEXT,
            run_key       TEXT,
            created_at    TEXT NOT NULL
        );
        """,
        """
        CREATE TABLE IF NOT EXISTS ledger_keys (
            run_key       TEXT NOT NULL,
            identity_key  TEXT NOT NULL,
            first_page    INTEGER,
            created_at    TEXT NOT NULL,
            PRIMARY KEY (run_key, identity_key)
        );
        """,
    )

    conn = get_connection()
    with conn:
        for statement in statements:
            conn.execute(statement)


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


def create_run(*, run_key: str, trigger: str, params: Dict[str, Any]) -> int:
    conn = get_connection()
    with conn:
        cursor = conn.execute(
            """
            INSERT INTO runs (run_key, started_at, trigger, status, params_json)
            VALUES (?, ?, ?, 'running', ?)
            """,
            (run_key, now_iso(), trigger, json.dumps(params, default=str, sort_keys=True)),
        )
    return int(cursor.lastrowid)


def finish_run(
    run_id: int,
    *,
    status: str,
    reason: str,
    error_code: Optional[str],
    pages_processed: int,
    records_ingested: int,
    output_path: Optional[str],
    checkpoint: Optional[Dict[str, Any]],
) -> None:
    conn = get_connection()
    with conn:
        conn.execute(
            """
            UPDATE runs
               SET ended_at = ?, status = ?, reason = ?, error_code = ?,
                   pages_processed = ?, records_ingested = ?, output_path = ?,
                   checkpoint_json = ?
             WHERE id = ?
            """,
            (
                now_iso(),
                status,
                reason,
                error_code,
                pages_processed,
                records_ingested,
                output_path,
                json.dumps(checkpoint, default=str) if checkpoint is not None else None,
                run_id,
            ),
        )


def _run_row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
    data = dict(row)
    for key in ("params_json", "checkpoint_json"):
        raw = data.pop(key, None)
        target = key[: -len("_json")]
        try:
            data[target] = json.loads(raw) if raw else None
        except ValueError:
            data[target] = None
    return data


def get_run(run_id: int) -> Dict[str, Any]:
    conn = get_connection()
    row = conn.execute("SELECT * FROM runs WHERE id = ?", (run_id,)).fetchone()
    if row is None:
        raise RunNotFoundError(run_id)
    return _run_row_to_dict(row)


def latest_run_id() -> Optional[int]:
    conn = get_connection()
    row = conn.execute("SELECT id FROM runs ORDER BY id DESC LIMIT 1").fetchone()
    return int(row["id"]) if row is not None else None


def list_recent_runs(limit: int = 20) -> List[Dict[str, Any]]:
    conn = get_connection()
    rows = conn.execute(
        "SELECT * FROM runs ORDER BY id DESC LIMIT ?",
        (max(1, int(limit)),),
    ).fetchall()
    return [_run_row_to_dict(row) for row in rows]


# ---------------------------------------------------------------------------
# Records (idempotent sink)
# ---------------------------------------------------------------------------


def insert_record_if_absent(identity_key: str, values: Tuple[str, ...], *, run_key: str) -> bool:
    """Insert a record keyed by ``identity_key``; return ``False`` if it already existed.

    The first stored payload wins; later upserts with the same key are no-ops.
    """

    conn = get_connection()
    with conn:
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO records (
                identity_key, sn, contract_no, symbol, buyer, seller,
                quantity, rate, amount, run_key, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (identity_key, *values, run_key, now_iso()),
        )
    return cursor.rowcount == 1


def get_record(identity_key: str) -> Optional[Dict[str, Any]]:
    conn = get_connection()
    row = conn.execute("SELECT * FROM records WHERE identity_key = ?", (identity_key,)).fetchone()
    return dict(row) if row is not None else None


def count_records(run_key: Optional[str] = None) -> int:
    conn = get_connection()
    if run_key is None:
        row = conn.execute("SELECT COUNT(*) AS n FROM records").fetchone()
    else:
        row = conn.execute("SELECT COUNT(*) AS n FROM records WHERE run_key = ?", (run_key,)).fetchone()
    return int(row["n"])


# ---------------------------------------------------------------------------
# Ledger persistence
# ---------------------------------------------------------------------------


def load_ledger_keys(run_key: str) -> Dict[str, Optional[int]]:
    conn = get_connection()
    rows = conn.execute(
        "SELECT identity_key, first_page FROM ledger_keys WHERE run_key = ?",
        (run_key,),
    ).fetchall()
    return {row["identity_key"]: row["first_page"] for row in rows}


def append_ledger_keys(run_key: str, entries: Iterable[Tuple[str, Optional[int]]]) -> None:
    created_at = now_iso()
    conn = get_connection()
    with conn:
        conn.executemany(
            """
            INSERT OR IGNORE INTO ledger_keys (run_key, identity_key, first_page, created_at)
            VALUES (?, ?, ?, ?)
            """,
            [(run_key, key, page, created_at) for key, page in entries],
        )


def clear_ledger_keys(run_key: str) -> None:
    conn = get_connection()
    with conn:
        conn.execute("DELETE FROM ledger_keys WHERE run_key = ?", (run_key,))


__all__ = [
    "DB_PATH",
    "RunNotFoundError",
    "append_ledger_keys",
    "clear_ledger_keys",
    "count_records",
    "create_run",
    "finish_run",
    "get_connection",
    "get_record",
    "get_run",
    "initialize_schema",
    "insert_record_if_absent",
    "latest_run_id",
    "list_recent_runs",
    "load_ledger_keys",
]
