from __future__ import annotations

from engine.models import MediaKind
from storage.addressing import build_object_key, public_url_for_key


def test_object_keys_follow_category_layout() -> None:
    token = "My_Song_1700000000000_1abc123"
    assert build_object_key(MediaKind.VIDEO, token, category="video-previews") == (
        "video-previews/My_Song_1700000000000_1abc123.mp4"
    )
    assert build_object_key(MediaKind.AUDIO, token, category="video-previews") == (
        "video-previews/audio/My_Song_1700000000000_1abc123_song.mp3"
    )


def test_object_keys_differ_per_token() -> None:
    first = build_object_key(MediaKind.VIDEO, "a_1_1aaaaaa", category="video-previews")
    second = build_object_key(MediaKind.VIDEO, "a_1_2bbbbbb", category="video-previews")
    assert first != second


def test_cdn_address_drops_category_prefix() -> None:
    url = public_url_for_key(
        "video-previews/audio/tok_song.mp3",
        category="video-previews",
        bucket="bucket",
        region="us-east-1",
        cdn_base_url="https://cdn.example.net/",
    )
    assert url == "https://cdn.example.net/audio/tok_song.mp3"


def test_s3_address_keeps_full_key_for_both_kinds() -> None:
    video = public_url_for_key(
        "video-previews/tok.mp4",
        category="video-previews",
        bucket="previews",
        region="eu-west-1",
    )
    audio = public_url_for_key(
        "video-previews/audio/tok_song.mp3",
        category="video-previews",
        bucket="previews",
        region="eu-west-1",
    )
    assert video == "https://previews.s3.eu-west-1.amazonaws.com/video-previews/tok.mp4"
    assert audio == "https://previews.s3.eu-west-1.amazonaws.com/video-previews/audio/tok_song.mp3"
