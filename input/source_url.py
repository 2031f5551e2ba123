"""Source URL recognition for download requests."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, urlparse

_VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")
_YOUTUBE_HOSTS = {
    "youtube.com",
    "www.youtube.com",
    "m.youtube.com",
    "music.youtube.com",
    "youtube-nocookie.com",
    "www.youtube-nocookie.com",
}
_SHORT_HOSTS = {"youtu.be", "www.youtu.be"}
_PATH_PREFIXES = ("embed", "shorts", "live", "v")


@dataclass(frozen=True)
class SourceUrl:
    url: str
    video_id: str


def detect_source_url(user_input: str) -> Optional[SourceUrl]:
    """Recognise a single-video YouTube URL without network calls.

    Rules:
    - ``http``/``https`` only.
    - ``youtube.com/watch?v=<id>``, ``/embed/<id>``, ``/shorts/<id>``,
      ``/live/<id>``, ``/v/<id>`` and ``youtu.be/<id>``.
    - The id must be the 11-character YouTube form.
    """
    raw = (user_input or "").strip()
    video_id = extract_video_id(raw)
    if not video_id:
        return None
    return SourceUrl(url=raw, video_id=video_id)


def extract_video_id(raw: str) -> Optional[str]:
    parsed = urlparse(raw or "")
    if parsed.scheme not in {"http", "https"}:
        return None
    netloc = (parsed.netloc or "").lower().split(":", 1)[0]
    parts = [segment for segment in (parsed.path or "").split("/") if segment]

    candidate = None
    if netloc in _SHORT_HOSTS:
        candidate = parts[0] if parts else None
    elif netloc in _YOUTUBE_HOSTS:
        if parts[:1] == ["watch"]:
            values = parse_qs(parsed.query).get("v")
            candidate = values[0] if values else None
        elif len(parts) >= 2 and parts[0] in _PATH_PREFIXES:
            candidate = parts[1]

    candidate = _clean_identifier(candidate or "")
    if _VIDEO_ID_RE.match(candidate):
        return candidate
    return None


def _clean_identifier(value: str) -> str:
    return (value or "").split("?", 1)[0].strip().strip("/")
