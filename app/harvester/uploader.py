"""Upload finished harvest outputs to a Google Drive folder."""
from __future__ import annotations

import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

import requests

from . import config
from .error_codes import ErrorCode
from .faults import UploadError
from .logging_utils import _harvest_event
from .retry_policy import compute_backoff_seconds, decide_retry
from .utils import log_line


@dataclass
class UploadResult:
    ok: bool
    file_id: Optional[str]
    http_status: Optional[int]
    attempts: int


def _classify_http_status(status: Optional[int]) -> str:
    if status is None:
        return ErrorCode.UPLOAD_FAILED
    if status == 429 or status >= 500:
        return ErrorCode.HTTP_5XX
    if 400 <= status < 500:
        return ErrorCode.HTTP_4XX
    return ErrorCode.UPLOAD_FAILED


def upload_to_drive(
    path: Path,
    *,
    folder_id: Optional[str] = None,
    token: Optional[str] = None,
    session: Optional[Any] = None,
    max_attempts: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> UploadResult:
    """Upload ``path`` to Drive with a multipart request, retrying transient failures.

    Raises :class:`UploadError` once retries are exhausted or the failure is
    not retryable (4xx other than 429).
    """

    path = Path(path)
    if not path.is_file():
        raise UploadError(f"Nothing to upload at {path}", error_code=ErrorCode.UPLOAD_FAILED)

    token = token or config.DRIVE_ACCESS_TOKEN
    if not token:
        raise UploadError("DRIVE_ACCESS_TOKEN is not configured", error_code=ErrorCode.UPLOAD_FAILED)

    folder_id = folder_id if folder_id is not None else config.DRIVE_FOLDER_ID
    metadata: dict[str, Any] = {"name": path.name}
    if folder_id:
        metadata["parents"] = [folder_id]

    http = session or requests.Session()
    attempts_allowed = max(1, max_attempts if max_attempts is not None else config.UPLOAD_MAX_ATTEMPTS)

    for attempt in range(1, attempts_allowed + 1):
        status: Optional[int] = None
        try:
            with path.open("rb") as handle:
                response = http.post(
                    config.DRIVE_UPLOAD_URL,
                    params={"uploadType": "multipart", "fields": "id,name"},
                    headers={"Authorization": f"Bearer {token}"},
                    files={
                        "metadata": (None, json.dumps(metadata), "application/json; charset=UTF-8"),
                        "file": (path.name, handle, "text/csv"),
                    },
                    timeout=config.UPLOAD_TIMEOUT_SECONDS,
                )
            status = response.status_code
            response.raise_for_status()
            file_id = (response.json() or {}).get("id")
            _harvest_event("upload", status="ok", file=path.name, http_status=status, file_id=file_id)
            log_line(f"[UPLOAD] Uploaded {path.name} to Drive (id={file_id}).")
            return UploadResult(True, file_id, status, attempt)
        except requests.HTTPError as exc:
            status = getattr(exc.response, "status_code", status)
            error_code = _classify_http_status(status)
            error: Exception = exc
        except (requests.Timeout, requests.ConnectionError) as exc:
            error_code = ErrorCode.UPLOAD_FAILED
            error = exc

        should_retry = decide_retry(
            attempt_index=attempt,
            max_attempts=attempts_allowed,
            error=error,
            error_code=error_code,
            http_status=status,
        )
        backoff = compute_backoff_seconds(attempt)
        _harvest_event(
            "state",
            phase="upload_retry",
            file=path.name,
            attempt=attempt,
            max_attempts=attempts_allowed,
            error_code=error_code,
            http_status=status,
            will_retry=should_retry,
            backoff_seconds=backoff if should_retry else None,
            error_message=str(error),
        )
        if not should_retry:
            raise UploadError(str(error), error_code=error_code, http_status=status)
        sleep(backoff)

    raise UploadError("upload failed", error_code=ErrorCode.UPLOAD_FAILED)  # pragma: no cover


__all__ = ["UploadResult", "upload_to_drive"]
