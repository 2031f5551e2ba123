"""Stream source backed by yt-dlp metadata and direct HTTP format streams."""

from __future__ import annotations

import copy
import logging
import threading
from typing import Any, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from yt_dlp import YoutubeDL

from engine.errors import FetchFailedError, SourceUnresolvableError
from engine.models import AudioQuality, AudioSelector, MediaKind, SourceInfo, StreamSelector, VideoSelector
from input.source_url import extract_video_id

logger = logging.getLogger(__name__)

_YTDLP_UNAVAILABLE_SIGNAL_MAP: tuple[tuple[str, tuple[str, ...]], ...] = (
    (
        "removed_or_deleted",
        (
            "has been removed by the uploader",
            "video has been removed",
            "this video is unavailable",
        ),
    ),
    (
        "private_or_members_only",
        (
            "private video",
            "members-only",
            "members only",
            "join this channel",
        ),
    ),
    (
        "age_restricted",
        (
            "sign in to confirm your age",
            "age-restricted",
            "age restricted",
        ),
    ),
    (
        "region_restricted",
        (
            "not available in your country",
            "geo-restricted",
            "geoblocked",
        ),
    ),
    (
        "format_unavailable",
        (
            "requested format is not available",
            "requested format not available",
        ),
    ),
    (
        "drm_protected",
        (
            "drm protected",
        ),
    ),
)

_YTDLP_TRANSIENT_ERROR_MARKERS: tuple[str, ...] = (
    "timed out",
    "timeout",
    "connection reset",
    "temporary failure",
    "unable to download webpage",
    "http error 5",
    "too many requests",
)

_AUDIO_CONTENT_TYPES = {
    "m4a": "audio/mp4",
    "mp4": "audio/mp4",
    "webm": "audio/webm",
    "mp3": "audio/mpeg",
    "opus": "audio/ogg",
    "ogg": "audio/ogg",
}
_VIDEO_CONTENT_TYPES = {
    "mp4": "video/mp4",
    "webm": "video/webm",
}

_BASE_YTDLP_OPTS = {
    "quiet": True,
    "no_warnings": True,
    "noplaylist": True,
    "skip_download": True,
}


def build_stream_session() -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=3,
        backoff_factor=0.4,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset({"GET"}),
        respect_retry_after_header=True,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def classify_ytdlp_unavailability(message: Optional[str]) -> Optional[str]:
    if not message:
        return None
    lower_msg = str(message).lower()
    if any(marker in lower_msg for marker in _YTDLP_TRANSIENT_ERROR_MARKERS):
        return None
    for unavailable_class, markers in _YTDLP_UNAVAILABLE_SIGNAL_MAP:
        if any(marker in lower_msg for marker in markers):
            return unavailable_class
    return None


def _is_video_only(fmt: dict[str, Any]) -> bool:
    return fmt.get("vcodec") not in (None, "none") and fmt.get("acodec") == "none"


def _is_audio_only(fmt: dict[str, Any]) -> bool:
    return fmt.get("acodec") not in (None, "none") and fmt.get("vcodec") == "none"


def _quality_label(fmt: dict[str, Any]) -> Optional[str]:
    note = str(fmt.get("format_note") or "").strip()
    if note:
        return note
    height = fmt.get("height")
    if not isinstance(height, int):
        return None
    fps = fmt.get("fps") or 0
    return f"{height}p60" if fps and fps >= 50 else f"{height}p"


def _bitrate(fmt: dict[str, Any], *keys: str) -> float:
    for key in keys:
        value = fmt.get(key)
        if isinstance(value, (int, float)):
            return float(value)
    return 0.0


def select_format(formats: Any, selector: StreamSelector) -> dict[str, Any]:
    """Pick the single format matching ``selector``.

    Video matching is exact on container and quality label; there is no
    fallback to other qualities.

    Raises:
        FetchFailedError: no format satisfies the selector.
    """
    candidates = [fmt for fmt in (formats or ()) if isinstance(fmt, dict) and fmt.get("url")]

    if isinstance(selector, VideoSelector):
        labels = list(selector.preferred_quality_labels)
        matching = [
            fmt
            for fmt in candidates
            if _is_video_only(fmt)
            and str(fmt.get("ext") or "").lower() == selector.container.lower()
            and _quality_label(fmt) in labels
        ]
        if not matching:
            raise FetchFailedError(
                MediaKind.VIDEO,
                f"no {selector.container} video-only format with quality in {labels}",
            )
        matching.sort(key=lambda fmt: (labels.index(_quality_label(fmt)), -_bitrate(fmt, "vbr", "tbr")))
        return matching[0]

    if isinstance(selector, AudioSelector):
        matching = [fmt for fmt in candidates if _is_audio_only(fmt)]
        if not matching:
            raise FetchFailedError(MediaKind.AUDIO, "no audio-only format available")
        if selector.quality_tier == AudioQuality.HIGH:
            matching.sort(
                key=lambda fmt: (str(fmt.get("ext") or "").lower() == "m4a", _bitrate(fmt, "abr", "tbr")),
                reverse=True,
            )
        return matching[0]

    raise TypeError(f"unsupported selector: {selector!r}")


def content_type_for_format(kind: MediaKind, fmt: dict[str, Any]) -> str:
    ext = str(fmt.get("ext") or "").lower()
    if kind == MediaKind.VIDEO:
        return _VIDEO_CONTENT_TYPES.get(ext, "video/mp4")
    return _AUDIO_CONTENT_TYPES.get(ext, "audio/mp4")


class HttpByteStream:
    """Chunked reader over a streaming ``requests`` response."""

    def __init__(self, response: requests.Response, *, content_type: str, chunk_size: int) -> None:
        self.content_type = content_type
        self._response = response
        self._chunks = response.iter_content(chunk_size=chunk_size)
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def read_chunk(self) -> bytes:
        if self._closed:
            raise requests.exceptions.StreamConsumedError("stream closed")
        for chunk in self._chunks:
            if chunk:
                return chunk
        return b""

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._response.close()


class YtDlpStreamSource:
    """Resolves sources with yt-dlp and opens direct streams of selected formats."""

    def __init__(
        self,
        *,
        chunk_size: int,
        timeout_seconds: float,
        ytdlp_opts: Optional[dict[str, Any]] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._chunk_size = chunk_size
        self._timeout_seconds = timeout_seconds
        self._ytdlp_opts = {**_BASE_YTDLP_OPTS, "socket_timeout": timeout_seconds, **(ytdlp_opts or {})}
        self._session = session or build_stream_session()

    def resolve(self, source_id: str) -> SourceInfo:
        """Resolve title and available formats without downloading.

        Raises:
            SourceUnresolvableError: extraction failed or returned nothing usable.
        """
        opts = copy.deepcopy(self._ytdlp_opts)
        try:
            with YoutubeDL(opts) as ydl:
                info = ydl.extract_info(source_id, download=False)
        except Exception as exc:
            message = str(exc)
            unavailable_class = classify_ytdlp_unavailability(message)
            logger.warning(
                "source resolution failed url=%s unavailable_class=%s error=%s",
                source_id,
                unavailable_class,
                message,
            )
            detail = f"source unavailable ({unavailable_class})" if unavailable_class else f"source resolution failed: {message}"
            raise SourceUnresolvableError(detail, unavailable_class=unavailable_class) from exc

        if not isinstance(info, dict):
            raise SourceUnresolvableError("source resolution returned no metadata")
        if info.get("_type") == "playlist":
            raise SourceUnresolvableError("playlist sources are not supported")
        formats = tuple(fmt for fmt in (info.get("formats") or ()) if isinstance(fmt, dict))
        if not formats:
            raise SourceUnresolvableError("source exposes no stream formats")

        return SourceInfo(
            source_id=source_id,
            title=str(info.get("title") or "").strip(),
            video_id=info.get("id") or extract_video_id(source_id),
            formats=formats,
        )

    def open_stream(self, info: SourceInfo, selector: StreamSelector) -> HttpByteStream:
        """Open a byte stream of the format chosen by ``selector``.

        Raises:
            FetchFailedError: no matching format, or the HTTP request failed.
        """
        fmt = select_format(info.formats, selector)
        kind = selector.kind
        logger.info(
            "opening stream kind=%s format_id=%s ext=%s label=%s",
            kind.value,
            fmt.get("format_id"),
            fmt.get("ext"),
            _quality_label(fmt),
        )
        try:
            response = self._session.get(
                fmt["url"],
                headers=fmt.get("http_headers") or None,
                stream=True,
                timeout=self._timeout_seconds,
            )
        except requests.RequestException as exc:
            raise FetchFailedError(kind, f"{kind.value} stream request failed: {exc}") from exc
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            response.close()
            raise FetchFailedError(kind, f"{kind.value} stream request failed: {exc}") from exc

        return HttpByteStream(
            response,
            content_type=content_type_for_format(kind, fmt),
            chunk_size=self._chunk_size,
        )
