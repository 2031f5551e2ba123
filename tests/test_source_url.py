from __future__ import annotations

import pytest

from input.source_url import detect_source_url, extract_video_id


@pytest.mark.parametrize(
    "url",
    [
        "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        "https://youtube.com/watch?v=dQw4w9WgXcQ&t=42s",
        "https://m.youtube.com/watch?v=dQw4w9WgXcQ",
        "https://youtu.be/dQw4w9WgXcQ?si=abc",
        "https://www.youtube.com/shorts/dQw4w9WgXcQ",
        "https://www.youtube.com/embed/dQw4w9WgXcQ",
        "http://www.youtube.com/live/dQw4w9WgXcQ",
    ],
)
def test_recognises_single_video_urls(url) -> None:
    detected = detect_source_url(url)
    assert detected is not None
    assert detected.video_id == "dQw4w9WgXcQ"
    assert detected.url == url


@pytest.mark.parametrize(
    "url",
    [
        "",
        "dQw4w9WgXcQ",
        "ftp://youtu.be/dQw4w9WgXcQ",
        "https://vimeo.com/123456",
        "https://www.youtube.com/watch?v=short",
        "https://www.youtube.com/playlist?list=PL1234567890",
        "https://www.youtube.com/",
    ],
)
def test_rejects_other_inputs(url) -> None:
    assert detect_source_url(url) is None


def test_extract_video_id_strips_whitespace_in_detect() -> None:
    assert detect_source_url("  https://youtu.be/dQw4w9WgXcQ  ").url == "https://youtu.be/dQw4w9WgXcQ"
    assert extract_video_id("https://youtu.be/") is None
