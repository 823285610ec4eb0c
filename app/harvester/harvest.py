"""Public harvest entrypoint and command line interface.

``run_harvest`` wires a Page Source, a sink and the pagination controller
together, records the run in SQLite, writes the summary and telemetry JSON and
optionally uploads the finished CSV. ``main`` is the CLI and returns the
process exit code: 0 for a normal stop, 1 for an error, 2 for a suspected
pagination loop.
"""
from __future__ import annotations

import argparse
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from . import config, db
from .checkpoint import CheckpointStore
from .config_validation import validate_runtime_config
from .controller import HarvestSettings, PaginationController
from .error_codes import ErrorCode
from .faults import LoopSuspectedFault, UploadError
from .logging_utils import _harvest_event
from .page_source import PageSource, ReplayPageSource
from .playwright_source import PlaywrightPageSource
from .records import resolve_key_strategy
from .sinks import SinkWriter, WriteExecutor, build_sink
from .telemetry import RunTelemetry
from .termination import TerminationKind
from .uploader import upload_to_drive
from .utils import (
    default_output_path,
    default_run_key,
    ensure_dirs,
    log_line,
    save_json_file,
    setup_run_logger,
)


def _short_error_message(exc: BaseException, max_length: int = 200) -> str:
    message = str(exc) or exc.__class__.__name__
    return message if len(message) <= max_length else message[: max_length - 3] + "..."


def resolve_output_path(store: CheckpointStore, run_key: str, *, resume: bool) -> Path:
    """Return the CSV path for this run.

    A resumed run keeps appending to the file its checkpoint names. A fresh run
    never appends to a non-empty file left by an earlier run; it takes the next
    free ``_<n>`` suffix instead.
    """

    existing = store.load(run_key) if resume else None
    if existing is not None and existing.output_path:
        return Path(existing.output_path)

    base = default_output_path()
    candidate = base
    counter = 2
    while candidate.exists() and candidate.stat().st_size > 0:
        candidate = base.with_name(f"{base.stem}_{counter}{base.suffix}")
        counter += 1
    return candidate


def _build_source(*, source: Optional[PageSource], replay: Optional[Path], base_url: Optional[str]) -> PageSource:
    if source is not None:
        return source
    if replay is not None:
        return ReplayPageSource.from_fixture(replay)
    return PlaywrightPageSource(base_url)


def run_harvest(
    *,
    start_page: Optional[int] = None,
    run_key: Optional[str] = None,
    sink_kind: Optional[str] = None,
    page_size: Optional[int] = None,
    base_url: Optional[str] = None,
    replay: Optional[Path] = None,
    source: Optional[PageSource] = None,
    resume: bool = True,
    upload: Optional[bool] = None,
    trigger: str = "cli",
    cancel_event: Optional[threading.Event] = None,
    sleep: Optional[Callable[[float], Any]] = None,
    raise_on_loop: bool = False,
) -> Dict[str, Any]:
    """Run one harvest to termination and return its summary.

    Configuration errors raise ``ValueError`` before anything is written. Page
    level faults never raise: they end the run with ``STOP_ERROR`` and are
    reported in the summary. With ``raise_on_loop`` a suspected pagination
    loop raises :class:`LoopSuspectedFault` after the run has been recorded.
    """

    ensure_dirs()
    db.initialize_schema()
    log_path = setup_run_logger()

    kind = (sink_kind or config.SINK_KIND).strip().lower()
    if replay is not None or source is not None:
        validate_runtime_config("replay", mode=kind)
    else:
        validate_runtime_config("ui" if trigger == "ui" else "cli", mode=kind)
    key_strategy = resolve_key_strategy()

    run_key = run_key or default_run_key()
    store = CheckpointStore()
    output_path: Optional[Path] = None
    if not config.use_idempotent_sink(kind):
        output_path = resolve_output_path(store, run_key, resume=resume)

    overrides: Dict[str, Any] = {"page_size": page_size}
    if replay is not None:
        # No remote server to pace requests against.
        overrides.update(delay_min_seconds=0.0, delay_max_seconds=0.0)
    settings = HarvestSettings.from_config(**overrides)

    params = {
        "start_page": start_page,
        "sink": kind,
        "page_size": settings.page_size,
        "base_url": base_url or config.DEFAULT_BASE_URL,
        "replay": str(replay) if replay is not None else None,
        "resume": resume,
        "identity_key": config.IDENTITY_KEY_STRATEGY,
        "overlap_threshold": settings.overlap_threshold,
        "loop_strikes": settings.loop_strikes,
    }
    log_line(f"[HARVEST] Starting run {run_key} (trigger={trigger}, sink={kind}).")
    _harvest_event("plan", run_key=run_key, trigger=trigger, **params)

    run_id: Optional[int] = None
    try:
        run_id = db.create_run(run_key=run_key, trigger=trigger, params=params)
    except Exception as exc:  # noqa: BLE001
        log_line(f"[DB][WARN] Unable to create run record: {exc}")

    telemetry = RunTelemetry(run_key)
    page_source = _build_source(source=source, replay=replay, base_url=base_url)
    sink = build_sink(kind, run_key=run_key, output_path=output_path or default_output_path())
    writer = SinkWriter(sink, executor=WriteExecutor(config.MAX_PARALLEL_WRITES))

    controller = PaginationController(
        page_source,
        writer,
        run_key=run_key,
        checkpoint_store=store,
        settings=settings,
        start_page=start_page,
        resume=resume,
        key_strategy=key_strategy,
        cancel_event=cancel_event,
        sleep=sleep,
        telemetry=telemetry,
        output_path=str(output_path) if output_path is not None else None,
    )
    try:
        result = controller.run()
    finally:
        try:
            writer.close()
        finally:
            page_source.close()

    summary: Dict[str, Any] = {
        **result.to_dict(),
        "run_id": run_id,
        "run_key": run_key,
        "trigger": trigger,
        "sink_kind": kind,
        "output_path": str(output_path) if output_path is not None else None,
        "log_file": str(log_path),
        "exit_code": result.exit_code,
        "upload": None,
    }

    should_upload = config.UPLOAD_ENABLED if upload is None else upload
    if should_upload and result.termination.kind is TerminationKind.STOP_NORMAL and output_path is not None:
        try:
            uploaded = upload_to_drive(output_path)
            summary["upload"] = {"ok": True, "file_id": uploaded.file_id}
        except UploadError as exc:
            telemetry.add_event("upload_failed")
            summary["upload"] = {"ok": False, "error_code": exc.error_code, "error": _short_error_message(exc)}
            log_line(f"[UPLOAD][WARN] Upload of {output_path.name} failed: {exc}")

    if run_id is not None:
        try:
            db.finish_run(
                run_id,
                status=result.status,
                reason=result.termination.reason,
                error_code=result.error_code,
                pages_processed=result.checkpoint.pages_processed,
                records_ingested=result.checkpoint.records_ingested,
                output_path=summary["output_path"],
                checkpoint=result.checkpoint.to_dict(),
            )
        except Exception as exc:  # noqa: BLE001
            log_line(f"[DB][WARN] Unable to finish run record {run_id}: {exc}")

    try:
        summary["telemetry_file"] = telemetry.finalize(
            {"status": result.status, "output_path": summary["output_path"], "result": result.to_dict()}
        )
    except OSError as exc:
        log_line(f"[RUN][WARN] Unable to write run telemetry: {exc}")
    try:
        save_json_file(config.SUMMARY_FILE, summary)
    except OSError as exc:
        log_line(f"[RUN][WARN] Unable to write summary: {exc}")

    log_line(
        f"[HARVEST] Run {run_key} finished: {result.status} ({result.termination.reason}); "
        f"{result.checkpoint.records_ingested} record(s) over {result.checkpoint.pages_processed} page(s)."
    )

    if raise_on_loop and result.termination.kind is TerminationKind.STOP_SUSPECTED_LOOP:
        raise LoopSuspectedFault(
            f"Pagination loop suspected at page {result.checkpoint.page_index} of {run_key}",
            error_code=ErrorCode.LOOP_SUSPECTED,
        )
    return summary


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Harvest the paginated floor sheet into a sink.")
    parser.add_argument(
        "--start-page",
        type=int,
        default=None,
        help="Page index to start from (default: checkpoint position, else 1).",
    )
    parser.add_argument("--run-key", default=None, help="Checkpoint/ledger key (default: floorsheet_<date>).")
    parser.add_argument("--sink", choices=list(config.SINK_KINDS), default=None)
    parser.add_argument("--page-size", type=int, default=None)
    parser.add_argument("--base-url", default=None)
    parser.add_argument("--fresh", action="store_true", help="Ignore any saved checkpoint for the run key.")
    parser.add_argument("--no-upload", action="store_true", help="Skip the Drive upload.")
    parser.add_argument(
        "--replay",
        type=Path,
        default=None,
        metavar="FIXTURE",
        help="Replay pages from a JSON fixture instead of a live browser.",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point; returns the process exit code."""

    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.start_page is not None and args.start_page < 1:
        parser.error("--start-page must be >= 1")

    try:
        summary = run_harvest(
            start_page=args.start_page,
            run_key=args.run_key,
            sink_kind=args.sink,
            page_size=args.page_size,
            base_url=args.base_url,
            replay=args.replay,
            resume=not args.fresh,
            upload=False if args.no_upload else None,
            trigger="cli",
        )
    except ValueError as exc:
        log_line(f"[HARVEST][ERROR] {exc}")
        return 1
    return int(summary["exit_code"])


def _cli_entrypoint(argv: Optional[List[str]] = None) -> None:  # pragma: no cover
    raise SystemExit(main(argv))


if __name__ == "__main__":  # pragma: no cover
    _cli_entrypoint()

__all__ = ["main", "resolve_output_path", "run_harvest", "_cli_entrypoint"]
