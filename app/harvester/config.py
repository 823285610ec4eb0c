"""Configuration constants for the floor-sheet harvester."""
from __future__ import annotations

import os
from pathlib import Path

DATA_DIR: Path = Path(os.getenv("HARVEST_DATA_DIR", "/app/data"))
OUTPUT_DIR: Path = DATA_DIR / "output"
LOG_DIR: Path = DATA_DIR / "logs"
LOG_FILE: Path = LOG_DIR / "latest.log"
CHECKPOINT_DIR: Path = DATA_DIR / "checkpoints"
RUNS_DIR: Path = DATA_DIR / "runs"
EXPORTS_DIR: Path = DATA_DIR / "exports"
SUMMARY_FILE: Path = DATA_DIR / "last_summary.json"
DB_PATH: Path = DATA_DIR / "harvester.db"

DEFAULT_BASE_URL: str = os.getenv("HARVEST_BASE_URL", "https://nepalstock.com.np/floor-sheet")
OUTPUT_PREFIX: str = "floor_sheet_data"
RUN_KEY_PREFIX: str = "floorsheet"
MAX_EXPORTS: int = int(os.getenv("EXPORTS_KEEP_MAX", "5"))


def _parse_timeout_seconds(env_var: str, default: int, *, minimum: int = 1) -> int:
    """Parse a timeout value in seconds from the environment with bounds."""

    try:
        value = int(os.getenv(env_var, str(default)))
    except ValueError:
        return default
    return max(minimum, value)


def _parse_flag(env_var: str, default: str = "1") -> bool:
    return os.getenv(env_var, default).strip().lower() not in {"0", "false"}


# Pagination + termination policy
PAGE_SIZE: int = int(os.getenv("HARVEST_PAGE_SIZE", "500"))
CONFIGURE_ATTEMPTS: int = int(os.getenv("HARVEST_CONFIGURE_ATTEMPTS", "2"))
# Both values are empirical; tune against real data before changing defaults.
OVERLAP_THRESHOLD: float = float(os.getenv("HARVEST_OVERLAP_THRESHOLD", "0.9"))
LOOP_STRIKES: int = int(os.getenv("HARVEST_LOOP_STRIKES", "2"))

# Randomised inter-page delay (seconds)
DELAY_MIN_SECONDS: float = float(os.getenv("HARVEST_DELAY_MIN_SECONDS", "2.0"))
DELAY_MAX_SECONDS: float = float(os.getenv("HARVEST_DELAY_MAX_SECONDS", "10.0"))

# Number of retries after a failed fetch/advance before the run is failed.
FETCH_RETRIES: int = int(os.getenv("HARVEST_FETCH_RETRIES", "1"))

# Sink write policy
SINK_KIND: str = os.getenv("HARVEST_SINK", "csv").strip().lower() or "csv"
SINK_MAX_ATTEMPTS: int = int(os.getenv("HARVEST_SINK_MAX_ATTEMPTS", "3"))
SINK_OUTAGE_THRESHOLD: int = int(os.getenv("HARVEST_SINK_OUTAGE_THRESHOLD", "5"))
SINK_KINDS: tuple[str, ...] = ("csv", "sqlite")

IDENTITY_KEY_STRATEGY: str = (
    os.getenv("HARVEST_IDENTITY_KEY", "composite").strip().lower() or "composite"
)

# Concurrency controls
# Max number of sink writes allowed in-flight at once (bounded executor).
MAX_PARALLEL_WRITES: int = int(os.getenv("HARVEST_MAX_PARALLEL_WRITES", "1"))
# Max queue depth before falling back to synchronous writes.
MAX_PENDING_WRITES: int = int(os.getenv("HARVEST_MAX_PENDING_WRITES", "100"))
ENABLE_WRITE_EXECUTOR: bool = _parse_flag("HARVEST_ENABLE_WRITE_EXECUTOR")

# Playwright settings
HEADLESS: bool = _parse_flag("HARVEST_HEADLESS")
BLOCK_RESOURCES: bool = _parse_flag("HARVEST_BLOCK_RESOURCES")
ROTATE_USER_AGENT: bool = _parse_flag("HARVEST_ROTATE_USER_AGENT")
BLOCKED_RESOURCE_TYPES: frozenset[str] = frozenset({"image", "stylesheet", "font", "media"})
# Navigation timeout for page.goto calls.
NAV_TIMEOUT_SECONDS: int = _parse_timeout_seconds("HARVEST_NAV_TIMEOUT_SECONDS", 60)
# Selector waits (filter controls, table body).
SELECTOR_TIMEOUT_SECONDS: int = _parse_timeout_seconds("HARVEST_SELECTOR_TIMEOUT_SECONDS", 20)
# Waits for rows to (re)render after a filter submit or a next click.
ROWS_TIMEOUT_SECONDS: int = _parse_timeout_seconds("HARVEST_ROWS_TIMEOUT_SECONDS", 60)
# Short settle pause before clicking pagination controls.
PRE_CLICK_SLEEP_SECONDS: float = float(os.getenv("HARVEST_PRE_CLICK_SLEEP_SECONDS", "1.0"))

USER_AGENTS: tuple[str, ...] = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
)

# Remote upload (Google Drive v3)
UPLOAD_ENABLED: bool = _parse_flag("HARVEST_UPLOAD_ENABLED", "0")
DRIVE_FOLDER_ID: str = os.getenv("DRIVE_FOLDER_ID", "").strip()
DRIVE_ACCESS_TOKEN: str = os.getenv("DRIVE_ACCESS_TOKEN", "").strip()
DRIVE_UPLOAD_URL: str = "https://www.googleapis.com/upload/drive/v3/files"
UPLOAD_TIMEOUT_SECONDS: int = _parse_timeout_seconds("HARVEST_UPLOAD_TIMEOUT_SECONDS", 60)
UPLOAD_MAX_ATTEMPTS: int = int(os.getenv("HARVEST_UPLOAD_MAX_ATTEMPTS", "3"))


def use_idempotent_sink(kind: str | None = None) -> bool:
    """Return ``True`` when ``kind`` names the key-based (upsert) sink."""

    return str(kind or SINK_KIND).strip().lower() == "sqlite"
