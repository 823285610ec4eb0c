from pathlib import Path
from typing import List, Optional

import pytest
import requests

from app.harvester import config, uploader
from app.harvester.error_codes import ErrorCode
from app.harvester.faults import UploadError


class FakeResponse:
    def __init__(self, status_code: int, payload: Optional[dict] = None) -> None:
        self.status_code = status_code
        self._payload = payload or {}

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}", response=self)

    def json(self) -> dict:
        return self._payload


class FakeSession:
    def __init__(self, responses: List[object]) -> None:
        self.responses = list(responses)
        self.calls: list[dict] = []

    def post(self, url, **kwargs):
        kwargs["file_name"] = kwargs["files"]["file"][0]
        kwargs["body"] = kwargs["files"]["file"][1].read()
        self.calls.append({"url": url, **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def csv_file(tmp_path: Path) -> Path:
    path = tmp_path / "floor_sheet_data_2024-01-01.csv"
    path.write_text("SN,ContractNo\n", encoding="utf-8")
    return path


def test_upload_posts_multipart_with_bearer_token(csv_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "DRIVE_FOLDER_ID", "folder-1")
    session = FakeSession([FakeResponse(200, {"id": "abc"})])

    result = uploader.upload_to_drive(csv_file, token="tok", session=session, sleep=lambda s: None)

    assert result.ok is True
    assert result.file_id == "abc"
    call = session.calls[0]
    assert call["url"] == config.DRIVE_UPLOAD_URL
    assert call["params"]["uploadType"] == "multipart"
    assert call["headers"]["Authorization"] == "Bearer tok"
    assert '"parents": ["folder-1"]' in call["files"]["metadata"][1]
    assert call["file_name"] == csv_file.name
    assert call["body"] == b"SN,ContractNo\n"


def test_upload_retries_server_errors(csv_file: Path) -> None:
    sleeps: list[float] = []
    session = FakeSession([FakeResponse(503), requests.ConnectionError("reset"), FakeResponse(200, {"id": "x"})])

    result = uploader.upload_to_drive(csv_file, token="tok", session=session, max_attempts=3, sleep=sleeps.append)

    assert result.attempts == 3
    assert sleeps == [1.0, 2.0]


def test_upload_does_not_retry_client_errors(csv_file: Path) -> None:
    session = FakeSession([FakeResponse(403)])

    with pytest.raises(UploadError) as excinfo:
        uploader.upload_to_drive(csv_file, token="tok", session=session, max_attempts=3, sleep=lambda s: None)

    assert excinfo.value.error_code == ErrorCode.HTTP_4XX
    assert excinfo.value.http_status == 403
    assert len(session.calls) == 1


def test_upload_gives_up_after_max_attempts(csv_file: Path) -> None:
    session = FakeSession([FakeResponse(500), FakeResponse(500)])

    with pytest.raises(UploadError) as excinfo:
        uploader.upload_to_drive(csv_file, token="tok", session=session, max_attempts=2, sleep=lambda s: None)

    assert excinfo.value.http_status == 500


def test_upload_requires_token_and_file(tmp_path: Path, csv_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "DRIVE_ACCESS_TOKEN", "")
    with pytest.raises(UploadError):
        uploader.upload_to_drive(csv_file, session=FakeSession([]))
    with pytest.raises(UploadError):
        uploader.upload_to_drive(tmp_path / "missing.csv", token="tok", session=FakeSession([]))
