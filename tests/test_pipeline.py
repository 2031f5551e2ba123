from __future__ import annotations

import asyncio
import threading
import time

from config.settings import PipelineSettings
from engine.errors import FetchFailedError, SourceUnresolvableError, UploadFailedError
from engine.models import (
    STATUS_CLIENT_ERROR,
    STATUS_SERVER_ERROR,
    STATUS_TIMEOUT,
    ErrorKind,
    MediaKind,
    PublishedAsset,
    SourceInfo,
    SourceReference,
)
from engine.pipeline import AcquisitionPipeline
from engine.staging import StagingArea

SOURCE = SourceReference(source_id="https://www.youtube.com/watch?v=dQw4w9WgXcQ", external_id="song-42")


class _BytesStream:
    def __init__(self, payload: bytes, content_type: str):
        self.content_type = content_type
        self._chunks = [payload[i : i + 4] for i in range(0, len(payload), 4)]
        self.closed = False

    def read_chunk(self) -> bytes:
        return self._chunks.pop(0) if self._chunks else b""

    def close(self) -> None:
        self.closed = True


class _SlowStream:
    """Never finishes; each read blocks briefly like a stalled download."""

    def __init__(self, content_type: str):
        self.content_type = content_type
        self.closed = False

    def read_chunk(self) -> bytes:
        time.sleep(0.02)
        return b"." * 8

    def close(self) -> None:
        self.closed = True


class _FakeSource:
    def __init__(
        self,
        *,
        title="Never Gonna Give You Up",
        slow=(),
        fail_open=(),
        resolve_error=None,
        resolve_delay=0.0,
        open_delays=None,
    ):
        self.title = title
        self.resolve_delay = resolve_delay
        self.open_delays = dict(open_delays or {})
        self.slow = set(slow)
        self.fail_open = set(fail_open)
        self.resolve_error = resolve_error
        self.resolved = []
        self.streams = []
        self._lock = threading.Lock()

    def resolve(self, source_id):
        self.resolved.append(source_id)
        if self.resolve_delay:
            time.sleep(self.resolve_delay)
        if self.resolve_error is not None:
            raise self.resolve_error
        return SourceInfo(source_id=source_id, title=self.title, video_id="dQw4w9WgXcQ")

    def open_stream(self, info, selector):
        kind = selector.kind
        if self.open_delays.get(kind):
            time.sleep(self.open_delays[kind])
        if kind in self.fail_open:
            raise FetchFailedError(kind, f"no {kind.value} format")
        content_type = "video/mp4" if kind == MediaKind.VIDEO else "audio/mp4"
        if kind in self.slow:
            stream = _SlowStream(content_type)
        else:
            stream = _BytesStream(f"{kind.value}-bytes-for-{info.title}".encode(), content_type)
        with self._lock:
            self.streams.append(stream)
        return stream


class _FakeStore:
    def __init__(self, *, fail=()):
        self.fail = set(fail)
        self.uploads = {}
        self._lock = threading.Lock()

    def publish(self, artifact, key):
        body = artifact.local_path.read_bytes()
        with self._lock:
            self.uploads[key] = (artifact.kind, artifact.content_type, body)
        if artifact.kind in self.fail:
            raise UploadFailedError(artifact.kind, f"put {key} denied")
        return PublishedAsset(kind=artifact.kind, public_url=f"https://cdn.test/{key}", key=key)


class _FakeRecorder:
    def __init__(self, *, result=True, error=None):
        self.result = result
        self.error = error
        self.records = []

    def record(self, record):
        self.records.append(record)
        if self.error is not None:
            raise self.error
        return self.result


def _pipeline(tmp_path, source, *, store=None, recorder=None, deadline=5.0, staging=None):
    staging_dir = tmp_path / "staging"
    return AcquisitionPipeline(
        source=source,
        staging=staging or StagingArea(staging_dir),
        store=store or _FakeStore(),
        recorder=recorder or _FakeRecorder(),
        settings=PipelineSettings(staging_dir=staging_dir, deadline_seconds=deadline),
        object_category="video-previews",
    )


def _staged_files(tmp_path):
    staging_dir = tmp_path / "staging"
    if not staging_dir.exists():
        return []
    return list(staging_dir.iterdir())


def test_run_publishes_both_assets_and_records_metadata(tmp_path) -> None:
    source = _FakeSource()
    store = _FakeStore()
    recorder = _FakeRecorder()
    pipeline = _pipeline(tmp_path, source, store=store, recorder=recorder)

    result = asyncio.run(pipeline.run(SOURCE))

    assert result.success is True
    assert result.failure is None
    assert result.metadata_recorded is True
    assert result.external_id == "song-42"
    assert result.video.key.startswith("video-previews/Never_Gonna_Give_You_Up_")
    assert result.video.key.endswith(".mp4")
    assert result.audio.key.startswith("video-previews/audio/Never_Gonna_Give_You_Up_")
    assert result.audio.key.endswith("_song.mp3")
    assert result.video.public_url == f"https://cdn.test/{result.video.key}"

    assert store.uploads[result.video.key] == (
        MediaKind.VIDEO,
        "video/mp4",
        b"video-bytes-for-Never Gonna Give You Up",
    )
    assert store.uploads[result.audio.key][2] == b"audio-bytes-for-Never Gonna Give You Up"

    [record] = recorder.records
    assert record.external_id == "song-42"
    assert record.video_url == result.video.public_url
    assert record.audio_url == result.audio.public_url

    assert all(stream.closed for stream in source.streams)
    assert _staged_files(tmp_path) == []


def test_run_fetch_failure_cancels_sibling_and_cleans_up(tmp_path) -> None:
    source = _FakeSource(fail_open={MediaKind.VIDEO}, slow={MediaKind.AUDIO})
    store = _FakeStore()
    pipeline = _pipeline(tmp_path, source, store=store)

    result = asyncio.run(pipeline.run(SOURCE))

    assert result.success is False
    assert result.failure.kind == ErrorKind.FETCH_FAILED
    assert result.failure.media_kind == MediaKind.VIDEO
    assert result.failure.status_class == STATUS_SERVER_ERROR
    assert store.uploads == {}
    assert all(stream.closed for stream in source.streams)
    assert _staged_files(tmp_path) == []


def test_run_both_fetches_failing_reports_both_kinds(tmp_path) -> None:
    source = _FakeSource(fail_open={MediaKind.VIDEO, MediaKind.AUDIO})
    pipeline = _pipeline(tmp_path, source)

    result = asyncio.run(pipeline.run(SOURCE))

    assert result.failure.kind == ErrorKind.FETCH_FAILED
    assert {result.failure.media_kind, *result.failure.also_failed} == {MediaKind.VIDEO, MediaKind.AUDIO}
    assert _staged_files(tmp_path) == []


def test_run_sibling_failing_shortly_after_is_still_reported(tmp_path) -> None:
    source = _FakeSource(
        fail_open={MediaKind.VIDEO, MediaKind.AUDIO},
        open_delays={MediaKind.AUDIO: 0.05},
    )
    pipeline = _pipeline(tmp_path, source)

    result = asyncio.run(pipeline.run(SOURCE))

    assert result.failure.kind == ErrorKind.FETCH_FAILED
    assert result.failure.media_kind == MediaKind.VIDEO
    assert result.failure.also_failed == (MediaKind.AUDIO,)
    assert "also failed: audio" in result.failure.detail
    assert _staged_files(tmp_path) == []


def test_run_deadline_expiry_returns_timeout_and_leaves_nothing_behind(tmp_path) -> None:
    source = _FakeSource(slow={MediaKind.VIDEO})
    store = _FakeStore()
    recorder = _FakeRecorder()
    pipeline = _pipeline(tmp_path, source, store=store, recorder=recorder, deadline=0.3)

    async def _run():
        result = await pipeline.run(SOURCE)
        leftover = [task for task in asyncio.all_tasks() if task is not asyncio.current_task()]
        return result, leftover

    result, leftover = asyncio.run(_run())

    assert result.success is False
    assert result.failure.kind == ErrorKind.TIMEOUT
    assert result.failure.status_class == STATUS_TIMEOUT
    assert "shorter" in result.failure.detail
    assert leftover == []
    assert store.uploads == {}
    assert recorder.records == []
    assert all(stream.closed for stream in source.streams)
    assert _staged_files(tmp_path) == []


def test_run_deadline_override_takes_precedence(tmp_path) -> None:
    source = _FakeSource(slow={MediaKind.AUDIO})
    pipeline = _pipeline(tmp_path, source, deadline=60.0)

    started = time.monotonic()
    result = asyncio.run(pipeline.run(SOURCE, deadline_seconds=0.2))

    assert result.failure.kind == ErrorKind.TIMEOUT
    assert time.monotonic() - started < 5


def test_run_upload_failure_cleans_up_both_artifacts(tmp_path) -> None:
    store = _FakeStore(fail={MediaKind.AUDIO})
    recorder = _FakeRecorder()
    pipeline = _pipeline(tmp_path, _FakeSource(), store=store, recorder=recorder)

    result = asyncio.run(pipeline.run(SOURCE))

    assert result.success is False
    assert result.failure.kind == ErrorKind.UPLOAD_FAILED
    assert result.failure.media_kind == MediaKind.AUDIO
    assert result.failure.also_failed == ()
    assert len(store.uploads) == 2
    assert recorder.records == []
    assert _staged_files(tmp_path) == []


def test_run_both_uploads_failing_names_the_sibling(tmp_path) -> None:
    store = _FakeStore(fail={MediaKind.VIDEO, MediaKind.AUDIO})
    pipeline = _pipeline(tmp_path, _FakeSource(), store=store)

    result = asyncio.run(pipeline.run(SOURCE))

    assert result.failure.kind == ErrorKind.UPLOAD_FAILED
    assert len(result.failure.also_failed) == 1
    assert {result.failure.media_kind, *result.failure.also_failed} == {MediaKind.VIDEO, MediaKind.AUDIO}
    assert "also failed" in result.failure.detail


def test_run_metadata_failure_keeps_success(tmp_path) -> None:
    recorder = _FakeRecorder(result=False)
    result = asyncio.run(_pipeline(tmp_path, _FakeSource(), recorder=recorder).run(SOURCE))

    assert result.success is True
    assert result.metadata_recorded is False
    assert result.failure is None


def test_run_metadata_recorder_exception_keeps_success(tmp_path) -> None:
    recorder = _FakeRecorder(error=RuntimeError("database offline"))
    result = asyncio.run(_pipeline(tmp_path, _FakeSource(), recorder=recorder).run(SOURCE))

    assert result.success is True
    assert result.metadata_recorded is False


def test_run_rejects_invalid_input_without_touching_collaborators(tmp_path) -> None:
    source = _FakeSource()
    pipeline = _pipeline(tmp_path, source)

    missing_source = asyncio.run(pipeline.run(SourceReference(source_id="  ", external_id="song-42")))
    missing_external = asyncio.run(pipeline.run(SourceReference(source_id=SOURCE.source_id, external_id="")))
    bad_deadline = asyncio.run(pipeline.run(SOURCE, deadline_seconds=0))

    for result in (missing_source, missing_external, bad_deadline):
        assert result.success is False
        assert result.failure.kind == ErrorKind.INVALID_INPUT
        assert result.failure.status_class == STATUS_CLIENT_ERROR
    assert source.resolved == []


def test_run_unresolvable_source(tmp_path) -> None:
    source = _FakeSource(resolve_error=SourceUnresolvableError("source unavailable (private_or_members_only)"))
    result = asyncio.run(_pipeline(tmp_path, source).run(SOURCE))

    assert result.failure.kind == ErrorKind.SOURCE_UNRESOLVABLE
    assert "private" in result.failure.detail
    assert source.streams == []
    assert _staged_files(tmp_path) == []


def test_run_wraps_unexpected_resolve_errors(tmp_path) -> None:
    source = _FakeSource(resolve_error=RuntimeError("extractor exploded"))
    result = asyncio.run(_pipeline(tmp_path, source).run(SOURCE))

    assert result.failure.kind == ErrorKind.SOURCE_UNRESOLVABLE


def test_concurrent_runs_for_same_title_never_collide(tmp_path) -> None:
    store = _FakeStore()
    pipeline = _pipeline(tmp_path, _FakeSource(title="Same Title"), store=store)

    async def _run_many():
        return await asyncio.gather(*(pipeline.run(SOURCE) for _ in range(5)))

    results = asyncio.run(_run_many())

    assert all(result.success for result in results)
    keys = [asset.key for result in results for asset in (result.video, result.audio)]
    assert len(set(keys)) == 10
    assert len(store.uploads) == 10
    assert _staged_files(tmp_path) == []


def test_run_deadline_covers_source_resolution(tmp_path) -> None:
    source = _FakeSource(resolve_delay=0.5)
    store = _FakeStore()
    pipeline = _pipeline(tmp_path, source, store=store, deadline=0.2)

    async def _run():
        started = time.monotonic()
        result = await pipeline.run(SOURCE)
        return result, time.monotonic() - started

    result, elapsed = asyncio.run(_run())

    assert result.success is False
    assert result.failure.kind == ErrorKind.TIMEOUT
    assert elapsed < 0.45
    assert source.streams == []
    assert store.uploads == {}
    assert _staged_files(tmp_path) == []


class _AudioRefusingStaging(StagingArea):
    def allocate(self, kind, token):
        if kind == MediaKind.AUDIO:
            raise FileExistsError("staging path already in use")
        return super().allocate(kind, token)


def test_run_allocation_failure_starts_no_fetch(tmp_path) -> None:
    source = _FakeSource()
    staging = _AudioRefusingStaging(tmp_path / "staging")
    pipeline = _pipeline(tmp_path, source, staging=staging)

    result = asyncio.run(pipeline.run(SOURCE))

    assert result.failure.kind == ErrorKind.FETCH_FAILED
    assert result.failure.media_kind == MediaKind.AUDIO
    assert "allocation" in result.failure.detail
    assert source.streams == []
    assert staging.live_paths() == set()
    assert _staged_files(tmp_path) == []
