"""Ephemeral local storage for in-flight artifacts."""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from pathlib import Path
from typing import Protocol

from engine.errors import FetchFailedError
from engine.models import MediaKind, StagedArtifact, StagingHandle
from engine.naming import is_valid_token
from engine.paths import ensure_dir

logger = logging.getLogger(__name__)


class ByteStream(Protocol):
    content_type: str

    def read_chunk(self) -> bytes:
        """Return the next chunk, or ``b""`` once the stream is exhausted."""

    def close(self) -> None:
        """Abort the underlying transfer; safe to call more than once."""


def _copy_chunk(stream: ByteStream, fh) -> int:
    """Move one chunk from ``stream`` to ``fh``; 0 once the stream is exhausted."""
    chunk = stream.read_chunk()
    if chunk:
        fh.write(chunk)
    return len(chunk)


class StagingArea:
    """Allocates unique staging paths and guarantees their deletion.

    Paths are derived from the invocation's naming token and the media kind,
    and the set of live paths is tracked so two handles never share a file.
    Nothing here survives a process restart.
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        self._live: set[Path] = set()
        self._lock = threading.Lock()

    def allocate(self, kind: MediaKind, token: str) -> StagingHandle:
        if not is_valid_token(token):
            raise ValueError(f"invalid naming token: {token!r}")
        ensure_dir(self.root)
        path = self.root / f"{token}_{kind.value}.part"
        with self._lock:
            if path in self._live or path.exists():
                raise FileExistsError(f"staging path already in use: {path}")
            self._live.add(path)
        return StagingHandle(kind=kind, token=token, path=path)

    def live_paths(self) -> set[Path]:
        with self._lock:
            return set(self._live)

    async def write_stream(self, handle: StagingHandle, stream: ByteStream) -> StagedArtifact:
        """Write ``stream`` fully to ``handle``.

        Each chunk is read and written off the event loop and is a
        cancellation point. On failure or cancellation the partial file is
        flushed, closed and removed before the exception propagates.
        """
        completed = False
        try:
            with open(handle.path, "wb") as fh:
                while await asyncio.to_thread(_copy_chunk, stream, fh):
                    pass
                await asyncio.to_thread(fh.flush)
            size_bytes = handle.path.stat().st_size
            completed = True
        except FetchFailedError:
            raise
        except OSError as exc:
            raise FetchFailedError(handle.kind, f"staging write failed: {exc}") from exc
        except Exception as exc:
            raise FetchFailedError(handle.kind, f"{handle.kind.value} stream failed: {exc}") from exc
        finally:
            if not completed:
                self.release(handle)

        return StagedArtifact(
            kind=handle.kind,
            local_path=handle.path,
            content_type=stream.content_type,
            size_bytes=size_bytes,
        )

    def release(self, handle: StagingHandle) -> bool:
        """Delete the staged file; idempotent and never raises.

        Returns ``False`` only when the file exists but could not be removed.
        """
        try:
            os.remove(handle.path)
        except FileNotFoundError:
            pass
        except OSError:
            logger.warning("failed to delete staged file path=%s", handle.path, exc_info=True)
            return False
        finally:
            with self._lock:
                self._live.discard(handle.path)
        return True
