"""Application settings.

Defaults live here as constants. ``load_settings`` reads overrides from the
process environment once and returns an explicit ``Settings`` object that is
passed into each collaborator's constructor.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from engine.paths import DATA_DIR, DB_PATH, STAGING_DIR, resolve_dir

# Global deadline for resolve + fetch + staging of one invocation.
DEFAULT_DEADLINE_SECONDS = 120.0

# Exact quality labels accepted for the video stream, in preference order.
DEFAULT_VIDEO_QUALITY_LABELS = ("720p", "720p60")
DEFAULT_VIDEO_CONTAINER = "mp4"

DEFAULT_CHUNK_SIZE = 1024 * 1024
DEFAULT_STREAM_TIMEOUT_SECONDS = 30.0
DEFAULT_SLUG_MAX_LENGTH = 25
# How long a sibling fetch may keep running after the first fetch failure.
DEFAULT_FAILURE_GRACE_SECONDS = 0.25

DEFAULT_OBJECT_CATEGORY = "video-previews"
DEFAULT_AWS_REGION = "us-east-1"
DEFAULT_UPLOAD_CONNECT_TIMEOUT_SECONDS = 10.0
DEFAULT_UPLOAD_READ_TIMEOUT_SECONDS = 120.0
DEFAULT_UPLOAD_MAX_ATTEMPTS = 3

DEFAULT_METADATA_TIMEOUT_SECONDS = 15.0

METADATA_BACKEND_APPWRITE = "appwrite"
METADATA_BACKEND_SQLITE = "sqlite"
METADATA_BACKEND_NONE = "none"
METADATA_BACKENDS = {METADATA_BACKEND_APPWRITE, METADATA_BACKEND_SQLITE, METADATA_BACKEND_NONE}


@dataclass(frozen=True)
class PipelineSettings:
    staging_dir: Path = STAGING_DIR
    deadline_seconds: float = DEFAULT_DEADLINE_SECONDS
    video_quality_labels: tuple[str, ...] = DEFAULT_VIDEO_QUALITY_LABELS
    video_container: str = DEFAULT_VIDEO_CONTAINER
    chunk_size: int = DEFAULT_CHUNK_SIZE
    stream_timeout_seconds: float = DEFAULT_STREAM_TIMEOUT_SECONDS
    slug_max_length: int = DEFAULT_SLUG_MAX_LENGTH
    failure_grace_seconds: float = DEFAULT_FAILURE_GRACE_SECONDS


@dataclass(frozen=True)
class StorageSettings:
    bucket: str = ""
    region: str = DEFAULT_AWS_REGION
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    cdn_base_url: Optional[str] = None
    endpoint_url: Optional[str] = None
    category: str = DEFAULT_OBJECT_CATEGORY
    connect_timeout_seconds: float = DEFAULT_UPLOAD_CONNECT_TIMEOUT_SECONDS
    read_timeout_seconds: float = DEFAULT_UPLOAD_READ_TIMEOUT_SECONDS
    max_attempts: int = DEFAULT_UPLOAD_MAX_ATTEMPTS


@dataclass(frozen=True)
class MetadataSettings:
    backend: str = METADATA_BACKEND_NONE
    appwrite_endpoint: Optional[str] = None
    appwrite_project_id: Optional[str] = None
    appwrite_key: Optional[str] = None
    appwrite_database_id: Optional[str] = None
    appwrite_collection_id: Optional[str] = None
    sqlite_path: Path = DB_PATH
    timeout_seconds: float = DEFAULT_METADATA_TIMEOUT_SECONDS


@dataclass(frozen=True)
class Settings:
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    metadata: MetadataSettings = field(default_factory=MetadataSettings)


def _clean(value: Optional[str]) -> Optional[str]:
    cleaned = (value or "").strip()
    return cleaned or None


def _float(env: Mapping[str, str], name: str, default: float, *, allow_zero: bool = False) -> float:
    raw = _clean(env.get(name))
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    if value < 0 or (value == 0 and not allow_zero):
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = _clean(env.get(name))
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


def _labels(raw: Optional[str]) -> tuple[str, ...]:
    labels = tuple(part.strip() for part in (raw or "").split(",") if part.strip())
    return labels or DEFAULT_VIDEO_QUALITY_LABELS


def _metadata_backend(env: Mapping[str, str]) -> str:
    explicit = _clean(env.get("PREVIEWR_METADATA_BACKEND"))
    if explicit:
        backend = explicit.lower()
        if backend not in METADATA_BACKENDS:
            raise ValueError(f"PREVIEWR_METADATA_BACKEND must be one of {sorted(METADATA_BACKENDS)}")
        return backend
    # Appwrite stays the default whenever it is configured.
    if _clean(env.get("APPWRITE_ENDPOINT")) and _clean(env.get("APPWRITE_COLLECTION_ID")):
        return METADATA_BACKEND_APPWRITE
    return METADATA_BACKEND_NONE


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build ``Settings`` from the environment (``os.environ`` by default)."""
    env = os.environ if environ is None else environ

    staging_override = _clean(env.get("PREVIEWR_STAGING_DIR"))
    staging_dir = Path(resolve_dir(staging_override, str(DATA_DIR))) if staging_override else STAGING_DIR

    pipeline = PipelineSettings(
        staging_dir=staging_dir,
        deadline_seconds=_float(env, "PREVIEWR_DEADLINE_SECONDS", DEFAULT_DEADLINE_SECONDS),
        video_quality_labels=_labels(env.get("PREVIEWR_VIDEO_QUALITY_LABELS")),
        video_container=(_clean(env.get("PREVIEWR_VIDEO_CONTAINER")) or DEFAULT_VIDEO_CONTAINER).lower(),
        chunk_size=_int(env, "PREVIEWR_CHUNK_SIZE", DEFAULT_CHUNK_SIZE),
        stream_timeout_seconds=_float(env, "PREVIEWR_STREAM_TIMEOUT_SECONDS", DEFAULT_STREAM_TIMEOUT_SECONDS),
        slug_max_length=_int(env, "PREVIEWR_SLUG_MAX_LENGTH", DEFAULT_SLUG_MAX_LENGTH),
        failure_grace_seconds=_float(
            env, "PREVIEWR_FAILURE_GRACE_SECONDS", DEFAULT_FAILURE_GRACE_SECONDS, allow_zero=True
        ),
    )
    storage = StorageSettings(
        bucket=_clean(env.get("AWS_BUCKET_NAME")) or "",
        region=_clean(env.get("AWS_DEFAULT_REGION")) or DEFAULT_AWS_REGION,
        access_key_id=_clean(env.get("AWS_ACCESS_KEY_ID")),
        secret_access_key=_clean(env.get("AWS_SECRET_ACCESS_KEY")),
        cdn_base_url=_clean(env.get("CLOUDFRONT_URL")),
        endpoint_url=_clean(env.get("PREVIEWR_S3_ENDPOINT_URL")),
        category=(_clean(env.get("PREVIEWR_OBJECT_CATEGORY")) or DEFAULT_OBJECT_CATEGORY).strip("/"),
        connect_timeout_seconds=_float(
            env, "PREVIEWR_UPLOAD_CONNECT_TIMEOUT_SECONDS", DEFAULT_UPLOAD_CONNECT_TIMEOUT_SECONDS
        ),
        read_timeout_seconds=_float(env, "PREVIEWR_UPLOAD_READ_TIMEOUT_SECONDS", DEFAULT_UPLOAD_READ_TIMEOUT_SECONDS),
        max_attempts=_int(env, "PREVIEWR_UPLOAD_MAX_ATTEMPTS", DEFAULT_UPLOAD_MAX_ATTEMPTS),
    )
    sqlite_override = _clean(env.get("PREVIEWR_DB_PATH"))
    metadata = MetadataSettings(
        backend=_metadata_backend(env),
        appwrite_endpoint=_clean(env.get("APPWRITE_ENDPOINT")),
        appwrite_project_id=_clean(env.get("APPWRITE_PROJECT_ID")),
        appwrite_key=_clean(env.get("APPWRITE_KEY")),
        appwrite_database_id=_clean(env.get("APPWRITE_DATABASE_ID")),
        appwrite_collection_id=_clean(env.get("APPWRITE_COLLECTION_ID")),
        sqlite_path=Path(sqlite_override).resolve() if sqlite_override else DB_PATH,
        timeout_seconds=_float(env, "PREVIEWR_METADATA_TIMEOUT_SECONDS", DEFAULT_METADATA_TIMEOUT_SECONDS),
    )
    return Settings(pipeline=pipeline, storage=storage, metadata=metadata)
