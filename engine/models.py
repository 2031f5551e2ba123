"""Value types shared by the acquisition pipeline and its collaborators."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union


class MediaKind(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"


class AudioQuality(str, Enum):
    HIGH = "high"


class ErrorKind(str, Enum):
    INVALID_INPUT = "invalid_input"
    SOURCE_UNRESOLVABLE = "source_unresolvable"
    FETCH_FAILED = "fetch_failed"
    TIMEOUT = "timeout"
    UPLOAD_FAILED = "upload_failed"
    # Downgraded to PipelineResult.metadata_recorded; never a failure.
    METADATA_WRITE_FAILED = "metadata_write_failed"
    INTERNAL = "internal"


STATUS_CLIENT_ERROR = "client_error"
STATUS_TIMEOUT = "timeout"
STATUS_SERVER_ERROR = "server_error"


@dataclass(frozen=True)
class SourceReference:
    source_id: str
    external_id: str


@dataclass(frozen=True)
class VideoSelector:
    preferred_quality_labels: tuple[str, ...] = ("720p", "720p60")
    container: str = "mp4"

    @property
    def kind(self) -> MediaKind:
        return MediaKind.VIDEO


@dataclass(frozen=True)
class AudioSelector:
    quality_tier: AudioQuality = AudioQuality.HIGH

    @property
    def kind(self) -> MediaKind:
        return MediaKind.AUDIO


StreamSelector = Union[VideoSelector, AudioSelector]


@dataclass(frozen=True)
class SourceInfo:
    """Resolved description of a source: its title and the formats on offer."""

    source_id: str
    title: str
    video_id: Optional[str] = None
    formats: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True)
class StagingHandle:
    kind: MediaKind
    token: str
    path: Path


@dataclass(frozen=True)
class StagedArtifact:
    kind: MediaKind
    local_path: Path
    content_type: str
    size_bytes: int

    def __post_init__(self) -> None:
        if self.size_bytes < 0:
            raise ValueError("size_bytes must be non-negative")


@dataclass(frozen=True)
class PublishedAsset:
    kind: MediaKind
    public_url: str
    key: str


@dataclass(frozen=True)
class PreviewRecord:
    external_id: str
    audio_url: str
    video_url: str


@dataclass(frozen=True)
class PipelineError:
    kind: ErrorKind
    detail: str
    media_kind: Optional[MediaKind] = None
    also_failed: tuple[MediaKind, ...] = ()

    @property
    def status_class(self) -> str:
        if self.kind == ErrorKind.INVALID_INPUT:
            return STATUS_CLIENT_ERROR
        if self.kind == ErrorKind.TIMEOUT:
            return STATUS_TIMEOUT
        return STATUS_SERVER_ERROR

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "detail": self.detail,
            "media_kind": self.media_kind.value if self.media_kind else None,
            "also_failed": [kind.value for kind in self.also_failed],
            "status_class": self.status_class,
        }


@dataclass(frozen=True)
class PipelineResult:
    """Outcome of one pipeline invocation.

    ``success`` implies both assets are present. ``metadata_recorded`` is
    independent of ``success`` and may be ``False`` on a successful publish.
    """

    success: bool
    external_id: str
    video: Optional[PublishedAsset] = None
    audio: Optional[PublishedAsset] = None
    metadata_recorded: bool = False
    failure: Optional[PipelineError] = None
    elapsed_seconds: float = field(default=0.0, compare=False)

    def __post_init__(self) -> None:
        if self.success and (self.video is None or self.audio is None):
            raise ValueError("successful result requires both video and audio assets")
        if self.success and self.failure is not None:
            raise ValueError("successful result cannot carry a failure")
        if not self.success and self.failure is None:
            raise ValueError("failed result requires a failure")

    @classmethod
    def succeeded(
        cls,
        external_id: str,
        *,
        video: PublishedAsset,
        audio: PublishedAsset,
        metadata_recorded: bool,
        elapsed_seconds: float = 0.0,
    ) -> "PipelineResult":
        return cls(
            success=True,
            external_id=external_id,
            video=video,
            audio=audio,
            metadata_recorded=metadata_recorded,
            elapsed_seconds=elapsed_seconds,
        )

    @classmethod
    def failed(
        cls,
        external_id: str,
        failure: PipelineError,
        *,
        elapsed_seconds: float = 0.0,
    ) -> "PipelineResult":
        return cls(
            success=False,
            external_id=external_id,
            failure=failure,
            elapsed_seconds=elapsed_seconds,
        )
