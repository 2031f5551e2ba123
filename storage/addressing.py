"""Object key layout and public address derivation.

Everything here is pure: no client, no network.
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import quote

from engine.models import MediaKind

VIDEO_SUFFIX = ".mp4"
AUDIO_SUFFIX = "_song.mp3"
AUDIO_FOLDER = "audio"


def build_filename(kind: MediaKind, token: str) -> str:
    if kind == MediaKind.VIDEO:
        return f"{token}{VIDEO_SUFFIX}"
    return f"{token}{AUDIO_SUFFIX}"


def build_object_key(kind: MediaKind, token: str, *, category: str) -> str:
    """Return the durable-store key for an artifact.

    Layout: ``<category>/<filename>`` for video and
    ``<category>/audio/<filename>`` for audio.
    """
    prefix = category.strip("/")
    filename = build_filename(kind, token)
    if kind == MediaKind.VIDEO:
        return f"{prefix}/{filename}"
    return f"{prefix}/{AUDIO_FOLDER}/{filename}"


def s3_base_url(bucket: str, region: str) -> str:
    return f"https://{bucket}.s3.{region}.amazonaws.com"


def public_url_for_key(
    key: str,
    *,
    category: str,
    bucket: str,
    region: str,
    cdn_base_url: Optional[str] = None,
) -> str:
    """Derive the public address of ``key``.

    The CDN distribution is rooted at the category folder, so the category
    prefix is dropped from CDN addresses. Without a CDN the S3 virtual-hosted
    address of the full key is used.
    """
    clean_key = key.lstrip("/")
    if cdn_base_url:
        prefix = category.strip("/") + "/"
        relative = clean_key[len(prefix):] if clean_key.startswith(prefix) else clean_key
        return f"{cdn_base_url.rstrip('/')}/{quote(relative)}"
    return f"{s3_base_url(bucket, region)}/{quote(clean_key)}"
