"""Exceptions raised inside the pipeline and converted once at its boundary."""

from __future__ import annotations

from typing import Optional

from engine.models import ErrorKind, MediaKind, PipelineError


class PipelineFailure(Exception):
    """Base class for failures that become ``PipelineResult.failure``."""

    kind = ErrorKind.INTERNAL

    def __init__(self, detail: str, *, media_kind: Optional[MediaKind] = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.media_kind = media_kind
        # Sibling operations that failed alongside this one.
        self.also_failed: tuple[MediaKind, ...] = ()

    def to_error(self) -> PipelineError:
        return PipelineError(
            kind=self.kind,
            detail=self.detail,
            media_kind=self.media_kind,
            also_failed=self.also_failed,
        )


class InvalidInputError(PipelineFailure):
    kind = ErrorKind.INVALID_INPUT


class SourceUnresolvableError(PipelineFailure):
    kind = ErrorKind.SOURCE_UNRESOLVABLE

    def __init__(self, detail: str, *, unavailable_class: Optional[str] = None) -> None:
        super().__init__(detail)
        self.unavailable_class = unavailable_class


class FetchFailedError(PipelineFailure):
    kind = ErrorKind.FETCH_FAILED

    def __init__(self, media_kind: MediaKind, detail: str) -> None:
        super().__init__(detail, media_kind=media_kind)


class PipelineTimeoutError(PipelineFailure):
    kind = ErrorKind.TIMEOUT


class UploadFailedError(PipelineFailure):
    kind = ErrorKind.UPLOAD_FAILED

    def __init__(self, media_kind: MediaKind, detail: str) -> None:
        super().__init__(detail, media_kind=media_kind)
