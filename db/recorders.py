"""Metadata recorder capability and backend selection."""

from __future__ import annotations

import logging
from typing import Protocol

from config.settings import (
    METADATA_BACKEND_APPWRITE,
    METADATA_BACKEND_NONE,
    METADATA_BACKEND_SQLITE,
    MetadataSettings,
)
from db.appwrite import AppwriteMetadataRecorder
from db.preview_records import SqliteMetadataRecorder
from engine.models import PreviewRecord

logger = logging.getLogger(__name__)


class MetadataRecorder(Protocol):
    def record(self, record: PreviewRecord) -> bool:
        """Persist ``record``; return ``False`` instead of raising on failure."""


class NullMetadataRecorder:
    def record(self, record: PreviewRecord) -> bool:
        logger.warning("no metadata backend configured; record for external_id=%s not saved", record.external_id)
        return False


def build_metadata_recorder(settings: MetadataSettings) -> MetadataRecorder:
    if settings.backend == METADATA_BACKEND_APPWRITE:
        return AppwriteMetadataRecorder(settings)
    if settings.backend == METADATA_BACKEND_SQLITE:
        return SqliteMetadataRecorder(str(settings.sqlite_path))
    if settings.backend == METADATA_BACKEND_NONE:
        return NullMetadataRecorder()
    raise ValueError(f"unsupported metadata backend: {settings.backend}")
