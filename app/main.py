from __future__ import annotations

import os
import threading
from typing import Any, Dict, Optional

from flask import Flask, Response, jsonify, request, send_file

from app.harvester import config, db
from app.harvester.config_validation import validate_runtime_config
from app.harvester.export_excel import export_latest_run_to_excel
from app.harvester.harvest import run_harvest
from app.harvester.healthcheck import run_health_checks
from app.harvester.logging_utils import _harvest_event
from app.harvester.utils import (
    default_run_key,
    ensure_dirs,
    get_current_log_path,
    load_json_file,
    log_line,
)

app = Flask(__name__)
app.secret_key = os.environ.get("SECRET_KEY", "dev-secret-change-me")

# Initialise storage paths and SQLite schema on import so WSGI entrypoints
# also have the expected environment ready.
ensure_dirs()
db.initialize_schema()

_HARVEST_LOCK = threading.Lock()
_HARVEST: Dict[str, Any] = {"thread": None, "cancel": None, "run_key": None, "error": None}


def _harvest_running() -> bool:
    thread: Optional[threading.Thread] = _HARVEST.get("thread")
    return thread is not None and thread.is_alive()


def _read_last_log_lines(limit: int = 150) -> list[str]:
    """Return the trailing ``limit`` log lines."""

    ensure_dirs()
    path = get_current_log_path()
    if not path.exists():
        return []

    with path.open("r", encoding="utf-8", errors="ignore") as handle:
        lines = handle.readlines()[-limit:]
    return [line.rstrip("\n") for line in lines]


def _optional_int(payload: Dict[str, Any], name: str) -> Optional[int]:
    raw = payload.get(name)
    if raw in (None, ""):
        return None
    return int(raw)


@app.post("/harvest")
def start_harvest() -> Response:
    """Start a background harvest; only one may run at a time."""

    payload: Dict[str, Any] = dict(request.get_json(silent=True) or request.form or {})
    try:
        start_page = _optional_int(payload, "start_page")
        page_size = _optional_int(payload, "page_size")
    except (TypeError, ValueError):
        return jsonify({"ok": False, "error": "invalid_params"}), 400
    if start_page is not None and start_page < 1:
        return jsonify({"ok": False, "error": "invalid_params", "details": "start_page must be >= 1"}), 400

    sink_kind = str(payload.get("sink") or config.SINK_KIND).strip().lower()
    run_key = str(payload.get("run_key") or default_run_key())

    try:
        validate_runtime_config("ui", mode=sink_kind)
    except ValueError as exc:
        return jsonify({"ok": False, "error": "config_invalid", "details": str(exc)}), 400

    with _HARVEST_LOCK:
        if _harvest_running():
            return jsonify({"ok": False, "error": "harvest_running", "run_key": _HARVEST["run_key"]}), 409

        cancel_event = threading.Event()

        def _run() -> None:
            with app.app_context():
                try:
                    summary = run_harvest(
                        start_page=start_page,
                        run_key=run_key,
                        sink_kind=sink_kind,
                        page_size=page_size,
                        trigger="ui",
                        cancel_event=cancel_event,
                    )
                    app.config["LAST_SUMMARY"] = summary
                    app.config["CURRENT_LOG_FILE"] = summary.get("log_file")
                except Exception as exc:  # noqa: BLE001
                    _HARVEST["error"] = str(exc)
                    log_line(f"Harvest thread failed: {exc}")

        thread = threading.Thread(target=_run, name="harvest", daemon=True)
        _HARVEST.update(thread=thread, cancel=cancel_event, run_key=run_key, error=None)
        thread.start()

    _harvest_event("state", phase="api", kind="harvest_started", run_key=run_key, sink=sink_kind)
    return jsonify({"ok": True, "status": "started", "run_key": run_key}), 202


@app.post("/harvest/cancel")
def cancel_harvest() -> Response:
    """Ask the running harvest to stop at its next transition."""

    with _HARVEST_LOCK:
        cancel_event: Optional[threading.Event] = _HARVEST.get("cancel")
        if not _harvest_running() or cancel_event is None:
            return jsonify({"ok": False, "error": "no_harvest_running"}), 404
        cancel_event.set()
    _harvest_event("state", phase="api", kind="harvest_cancel_requested", run_key=_HARVEST["run_key"])
    return jsonify({"ok": True, "status": "cancelling", "run_key": _HARVEST["run_key"]}), 202


@app.get("/api/harvest/status")
def api_harvest_status() -> Response:
    last_summary = app.config.get("LAST_SUMMARY") or load_json_file(config.SUMMARY_FILE, None)
    return jsonify(
        {
            "ok": True,
            "running": _harvest_running(),
            "run_key": _HARVEST["run_key"],
            "error": _HARVEST["error"],
            "last_summary": last_summary,
        }
    )


@app.get("/api/runs")
def api_runs_list() -> Response:
    """Return recent runs from SQLite as a JSON array."""

    raw_limit = request.args.get("limit", type=int)
    if raw_limit is None:
        limit = 20
    else:
        limit = max(1, min(raw_limit, 200))

    runs = db.list_recent_runs(limit)

    return jsonify({"ok": True, "count": len(runs), "runs": runs})


@app.get("/api/runs/latest")
def api_runs_latest() -> Response:
    """Return the latest run backed by SQLite."""

    run_id = db.latest_run_id()
    if run_id is None:
        return jsonify({"ok": False, "error": "no runs"}), 404

    try:
        run = db.get_run(run_id)
    except db.RunNotFoundError:
        return jsonify({"ok": False, "error": "no runs"}), 404

    return jsonify({"ok": True, "run": run})


@app.get("/api/runs/<int:run_id>")
def api_run_detail(run_id: int) -> Response:
    try:
        run = db.get_run(run_id)
    except db.RunNotFoundError:
        return jsonify({"ok": False, "error": "run_not_found", "run_id": run_id}), 404
    return jsonify({"ok": True, "run": run})


@app.get("/api/logs/tail")
def api_logs_tail() -> Response:
    limit = max(1, min(request.args.get("limit", default=150, type=int), 2000))
    return jsonify({"ok": True, "lines": _read_last_log_lines(limit)})


@app.get("/files/<path:filename>")
def download_file(filename: str) -> Response:
    """Serve a harvested CSV if it exists within the output directory."""

    target = (config.OUTPUT_DIR / filename).resolve()
    output_root = config.OUTPUT_DIR.resolve()
    if not str(target).startswith(str(output_root)):
        return Response("Invalid path", status=400)
    if not target.exists() or not target.is_file():
        return Response("File not found", status=404)
    return send_file(target, as_attachment=True, download_name=target.name)


@app.get("/api/health")
def api_health() -> Response:
    """Return a JSON health summary for configuration, filesystem, and DB."""

    result = run_health_checks(entrypoint="ui")
    status = 200 if result.ok else 503
    return jsonify({"ok": result.ok, "checks": result.checks}), status


@app.get("/api/exports/latest.xlsx")
def api_export_latest_xlsx() -> Response:
    try:
        path = export_latest_run_to_excel()
    except FileNotFoundError:
        return jsonify({"ok": False, "error": "no runs"}), 404
    return send_file(path, as_attachment=True, download_name=os.path.basename(path))


if __name__ == "__main__":
    # Direct invocation is primarily for local development; directories and
    # schema are initialised above during module import.
    app.run(host="0.0.0.0", port=8080)
