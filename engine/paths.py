"""Filesystem locations for staging, logs and the local metadata database."""

import os
from dataclasses import dataclass
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _running_in_container():
    return os.path.exists("/.dockerenv") or os.path.isdir("/data")


def _env_path(name, default):
    return Path(os.environ.get(name) or default).resolve()


if _running_in_container():
    _DATA_DEFAULT = Path("/data")
    _LOG_DEFAULT = Path("/logs")
else:
    _DATA_DEFAULT = PROJECT_ROOT / "data"
    _LOG_DEFAULT = _DATA_DEFAULT / "logs"

DATA_DIR = _env_path("PREVIEWR_DATA_DIR", _DATA_DEFAULT)
LOG_DIR = _env_path("PREVIEWR_LOG_DIR", _LOG_DEFAULT)
# Staged artifacts never outlive one pipeline run.
STAGING_DIR = DATA_DIR / "previews"
DB_PATH = _env_path("PREVIEWR_DB_PATH", DATA_DIR / "database" / "previews.sqlite")


@dataclass(frozen=True)
class EnginePaths:
    log_dir: str
    db_path: str
    staging_dir: str


def ensure_dir(path):
    if path:
        Path(path).mkdir(parents=True, exist_ok=True)


def resolve_dir(path, base_dir):
    """Resolve ``path`` against ``base_dir`` and refuse anything outside it."""
    if not path:
        return base_dir
    base = Path(base_dir).resolve()
    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = base / candidate
    candidate = candidate.resolve()
    if candidate != base and base not in candidate.parents:
        raise ValueError(f"Path must be within base directory: {base_dir}")
    return str(candidate)


def build_engine_paths(staging_dir=None):
    staging = Path(staging_dir) if staging_dir else STAGING_DIR
    for directory in (staging, LOG_DIR, DB_PATH.parent):
        ensure_dir(directory)
    return EnginePaths(log_dir=str(LOG_DIR), db_path=str(DB_PATH), staging_dir=str(staging))
