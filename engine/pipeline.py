"""Deadline-bounded acquisition and publishing of one source's video and audio.

One ``run`` resolves the source, fetches the video-only and audio-only
streams concurrently into the staging area, uploads both, records a metadata
pointer best-effort and always deletes what it staged. Every failure is
returned in the ``PipelineResult``; nothing raises past ``run``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Callable, Iterable, Optional, Protocol

from config.settings import PipelineSettings
from engine.errors import (
    FetchFailedError,
    InvalidInputError,
    PipelineFailure,
    PipelineTimeoutError,
    SourceUnresolvableError,
    UploadFailedError,
)
from engine.models import (
    AudioSelector,
    ErrorKind,
    MediaKind,
    PipelineError,
    PipelineResult,
    PreviewRecord,
    PublishedAsset,
    SourceInfo,
    SourceReference,
    StagedArtifact,
    StagingHandle,
    StreamSelector,
    VideoSelector,
)
from engine.naming import build_naming_token
from engine.staging import ByteStream, StagingArea
from storage.addressing import build_object_key

logger = logging.getLogger(__name__)


class StreamSource(Protocol):
    def resolve(self, source_id: str) -> SourceInfo:
        """Return title and stream formats, or raise ``SourceUnresolvableError``."""

    def open_stream(self, info: SourceInfo, selector: StreamSelector) -> ByteStream:
        """Open the selected stream, or raise ``FetchFailedError``."""


class DurableStore(Protocol):
    def publish(self, artifact: StagedArtifact, key: str) -> PublishedAsset:
        """Upload the artifact under ``key``, or raise ``UploadFailedError``."""


class MetadataRecorder(Protocol):
    def record(self, record: PreviewRecord) -> bool:
        """Persist the record; ``False`` on failure."""


def _log_event(level, message, **fields):
    payload = {"message": message, **fields}
    try:
        logger.log(level, json.dumps(payload, sort_keys=True, default=str))
    except (TypeError, ValueError) as exc:
        logger.log(level, f"log_event_serialization_failed: {exc} message={message}")


def validate_source_reference(source: Any) -> SourceReference:
    """Return a trimmed ``SourceReference`` or raise ``InvalidInputError``."""
    if not isinstance(source, SourceReference):
        raise InvalidInputError("a source reference is required")
    source_id = str(source.source_id or "").strip()
    external_id = str(source.external_id or "").strip()
    if not source_id:
        raise InvalidInputError("source id is required")
    if not external_id:
        raise InvalidInputError("external id is required")
    return SourceReference(source_id=source_id, external_id=external_id)


def _close_late_stream(future: asyncio.Future) -> None:
    # The fetch was cancelled while the stream was still opening.
    if future.cancelled() or future.exception() is not None:
        return
    future.result().close()


async def _cancel_all(tasks: Iterable[asyncio.Task]) -> None:
    tasks = list(tasks)
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


async def _join_pair(
    tasks: dict[MediaKind, asyncio.Task],
    *,
    cancel_on_failure: bool,
    wrap: Callable[[MediaKind, BaseException], PipelineFailure],
    grace_seconds: float = 0.0,
) -> dict[MediaKind, Any]:
    """Wait for both tasks and return their results by kind.

    The first failure observed is raised, with ``also_failed`` naming any
    sibling that failed too. With ``cancel_on_failure`` a failure cancels the
    sibling once it has had ``grace_seconds`` to finish or fail on its own;
    otherwise the sibling runs to completion first. Cancelling the join
    cancels both tasks and waits for them.
    """
    finished: list[MediaKind] = []
    for kind, task in tasks.items():
        task.add_done_callback(lambda _task, kind=kind: finished.append(kind))

    return_when = asyncio.FIRST_EXCEPTION if cancel_on_failure else asyncio.ALL_COMPLETED
    try:
        _done, pending = await asyncio.wait(tasks.values(), return_when=return_when)
        if pending and grace_seconds > 0:
            _done, pending = await asyncio.wait(pending, timeout=grace_seconds)
    except asyncio.CancelledError:
        await _cancel_all(tasks.values())
        raise
    if pending:
        await _cancel_all(pending)

    failures: list[tuple[MediaKind, BaseException]] = []
    for kind in finished:
        task = tasks[kind]
        if task.cancelled():
            continue
        exc = task.exception()
        if exc is not None:
            failures.append((kind, exc))

    if failures:
        first_kind, first_exc = failures[0]
        others = tuple(kind for kind, _exc in failures[1:])
        if isinstance(first_exc, PipelineFailure):
            failure = first_exc
        else:
            failure = wrap(first_kind, first_exc)
            failure.__cause__ = first_exc
        if others:
            failure.also_failed = others
            failure.detail = f"{failure.detail}; also failed: {', '.join(kind.value for kind in others)}"
        raise failure

    return {kind: task.result() for kind, task in tasks.items()}


class AcquisitionPipeline:
    """Orchestrates resolve, concurrent fetch, upload, record and cleanup."""

    def __init__(
        self,
        *,
        source: StreamSource,
        staging: StagingArea,
        store: DurableStore,
        recorder: MetadataRecorder,
        settings: PipelineSettings,
        object_category: str,
    ) -> None:
        self._source = source
        self._staging = staging
        self._store = store
        self._recorder = recorder
        self._settings = settings
        self._category = object_category

    def selectors(self) -> dict[MediaKind, StreamSelector]:
        return {
            MediaKind.VIDEO: VideoSelector(
                preferred_quality_labels=tuple(self._settings.video_quality_labels),
                container=self._settings.video_container,
            ),
            MediaKind.AUDIO: AudioSelector(),
        }

    async def run(self, source: SourceReference, *, deadline_seconds: Optional[float] = None) -> PipelineResult:
        started = time.monotonic()
        external_id = str(getattr(source, "external_id", "") or "")

        def _elapsed() -> float:
            return round(time.monotonic() - started, 3)

        try:
            source = validate_source_reference(source)
            deadline = self._settings.deadline_seconds if deadline_seconds is None else float(deadline_seconds)
            if deadline <= 0:
                raise InvalidInputError("deadline must be positive")
        except InvalidInputError as exc:
            _log_event(logging.WARNING, "pipeline_invalid_input", external_id=external_id, detail=exc.detail)
            return PipelineResult.failed(external_id, exc.to_error(), elapsed_seconds=_elapsed())

        _log_event(
            logging.INFO,
            "pipeline_started",
            source_id=source.source_id,
            external_id=source.external_id,
            deadline_seconds=deadline,
        )

        handles: list[StagingHandle] = []
        published: Optional[dict[MediaKind, PublishedAsset]] = None
        failure: Optional[PipelineError] = None
        try:
            try:
                token, staged = await asyncio.wait_for(self._acquire(source, handles), timeout=deadline)
            except asyncio.TimeoutError as exc:
                raise PipelineTimeoutError(
                    f"fetch phase did not finish within {deadline:g}s; try a shorter source"
                ) from exc
            published = await self._publish(token, staged)
        except PipelineFailure as exc:
            failure = exc.to_error()
        except Exception as exc:
            logger.exception("pipeline failed unexpectedly source_id=%s", source.source_id)
            failure = PipelineError(kind=ErrorKind.INTERNAL, detail=f"unexpected error: {type(exc).__name__}")
        finally:
            self._cleanup(handles)

        if failure is not None:
            _log_event(
                logging.WARNING if failure.kind == ErrorKind.TIMEOUT else logging.ERROR,
                "pipeline_failed",
                source_id=source.source_id,
                external_id=source.external_id,
                elapsed_seconds=_elapsed(),
                **failure.to_dict(),
            )
            return PipelineResult.failed(source.external_id, failure, elapsed_seconds=_elapsed())

        video = published[MediaKind.VIDEO]
        audio = published[MediaKind.AUDIO]
        recorded = await self._record_metadata(
            PreviewRecord(external_id=source.external_id, audio_url=audio.public_url, video_url=video.public_url)
        )
        _log_event(
            logging.INFO,
            "pipeline_succeeded",
            source_id=source.source_id,
            external_id=source.external_id,
            video_url=video.public_url,
            audio_url=audio.public_url,
            metadata_recorded=recorded,
            elapsed_seconds=_elapsed(),
        )
        return PipelineResult.succeeded(
            source.external_id,
            video=video,
            audio=audio,
            metadata_recorded=recorded,
            elapsed_seconds=_elapsed(),
        )

    async def _resolve(self, source_id: str) -> SourceInfo:
        try:
            return await asyncio.to_thread(self._source.resolve, source_id)
        except SourceUnresolvableError:
            raise
        except Exception as exc:
            raise SourceUnresolvableError(f"source resolution failed: {exc}") from exc

    async def _acquire(
        self,
        source: SourceReference,
        handles: list[StagingHandle],
    ) -> tuple[str, dict[MediaKind, StagedArtifact]]:
        info = await self._resolve(source.source_id)
        token = build_naming_token(info.title or info.video_id, max_slug_length=self._settings.slug_max_length)
        _log_event(logging.INFO, "source_resolved", source_id=source.source_id, title=info.title, token=token)

        selectors = self.selectors()
        # Both handles are allocated before either fetch starts.
        allocated: dict[MediaKind, StagingHandle] = {}
        for kind in selectors:
            try:
                allocated[kind] = self._staging.allocate(kind, token)
            except (OSError, ValueError) as exc:
                raise FetchFailedError(kind, f"{kind.value} staging allocation failed: {exc}") from exc
            handles.append(allocated[kind])

        tasks: dict[MediaKind, asyncio.Task] = {
            kind: asyncio.create_task(
                self._fetch_and_stage(info, selector, allocated[kind]),
                name=f"fetch-{kind.value}-{token}",
            )
            for kind, selector in selectors.items()
        }
        staged = await _join_pair(
            tasks,
            cancel_on_failure=True,
            wrap=_wrap_fetch_failure,
            grace_seconds=self._settings.failure_grace_seconds,
        )
        return token, staged

    async def _fetch_and_stage(
        self,
        info: SourceInfo,
        selector: StreamSelector,
        handle: StagingHandle,
    ) -> StagedArtifact:
        kind = selector.kind
        opening = asyncio.ensure_future(asyncio.to_thread(self._source.open_stream, info, selector))
        try:
            stream = await asyncio.shield(opening)
        except asyncio.CancelledError:
            opening.add_done_callback(_close_late_stream)
            raise
        except FetchFailedError:
            raise
        except Exception as exc:
            raise FetchFailedError(kind, f"{kind.value} stream open failed: {exc}") from exc

        try:
            artifact = await self._staging.write_stream(handle, stream)
        finally:
            stream.close()
        _log_event(
            logging.INFO,
            "artifact_staged",
            kind=kind.value,
            size_bytes=artifact.size_bytes,
            content_type=artifact.content_type,
        )
        return artifact

    async def _publish(
        self,
        token: str,
        staged: dict[MediaKind, StagedArtifact],
    ) -> dict[MediaKind, PublishedAsset]:
        tasks: dict[MediaKind, asyncio.Task] = {}
        for kind, artifact in staged.items():
            key = build_object_key(kind, token, category=self._category)
            tasks[kind] = asyncio.create_task(
                asyncio.to_thread(self._store.publish, artifact, key),
                name=f"upload-{kind.value}-{token}",
            )
        return await _join_pair(tasks, cancel_on_failure=False, wrap=_wrap_upload_failure)

    def _cleanup(self, handles: list[StagingHandle]) -> None:
        for handle in handles:
            if not self._staging.release(handle):
                _log_event(logging.WARNING, "staged_cleanup_failed", kind=handle.kind.value, path=handle.path)

    async def _record_metadata(self, record: PreviewRecord) -> bool:
        try:
            recorded = await asyncio.to_thread(self._recorder.record, record)
        except Exception:
            logger.exception("metadata recorder raised external_id=%s", record.external_id)
            return False
        if not recorded:
            _log_event(logging.WARNING, "metadata_not_recorded", external_id=record.external_id)
        return bool(recorded)


def _wrap_fetch_failure(kind: MediaKind, exc: BaseException) -> PipelineFailure:
    return FetchFailedError(kind, f"{kind.value} fetch failed: {exc}")


def _wrap_upload_failure(kind: MediaKind, exc: BaseException) -> PipelineFailure:
    return UploadFailedError(kind, f"{kind.value} upload failed: {exc}")
