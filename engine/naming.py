"""Naming token helpers shared by staging paths and object keys."""

from __future__ import annotations

import itertools
import re
import threading
import time
import uuid
from typing import Any

_NON_WORD_RE = re.compile(r"[^\w\s]", re.UNICODE)
_MULTISPACE_RE = re.compile(r"\s+")
_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]+$")

_COUNTER = itertools.count(1)
_COUNTER_LOCK = threading.Lock()


def slugify_title(title: Any, *, max_length: int = 25) -> str:
    """Return a filename-safe slug of ``title`` truncated to ``max_length``."""
    cleaned = _NON_WORD_RE.sub("", str(title or ""))
    cleaned = _MULTISPACE_RE.sub(" ", cleaned).strip()
    slug = cleaned[: max(0, max_length)].strip().replace(" ", "_")
    # \w admits non-ASCII letters; keys stay ASCII.
    slug = slug.encode("ascii", "ignore").decode("ascii").strip("_")
    return slug or "untitled"


def build_naming_token(title: Any, *, max_slug_length: int = 25) -> str:
    """Build a per-invocation unique token: ``<slug>_<epoch_ms>_<counter><random>``."""
    with _COUNTER_LOCK:
        sequence = next(_COUNTER)
    slug = slugify_title(title, max_length=max_slug_length)
    return f"{slug}_{int(time.time() * 1000)}_{sequence}{uuid.uuid4().hex[:6]}"


def is_valid_token(token: str) -> bool:
    return bool(token) and _TOKEN_RE.match(token) is not None
