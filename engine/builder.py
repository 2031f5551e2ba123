"""Wire concrete collaborators into an ``AcquisitionPipeline``."""

from __future__ import annotations

from typing import Optional

from config.settings import Settings, load_settings
from db.recorders import build_metadata_recorder
from download.source import YtDlpStreamSource
from engine.paths import ensure_dir
from engine.pipeline import AcquisitionPipeline
from engine.staging import StagingArea
from storage.s3 import S3DurableStore


def build_pipeline(settings: Optional[Settings] = None) -> AcquisitionPipeline:
    settings = settings or load_settings()
    ensure_dir(settings.pipeline.staging_dir)
    return AcquisitionPipeline(
        source=YtDlpStreamSource(
            chunk_size=settings.pipeline.chunk_size,
            timeout_seconds=settings.pipeline.stream_timeout_seconds,
        ),
        staging=StagingArea(settings.pipeline.staging_dir),
        store=S3DurableStore(settings.storage),
        recorder=build_metadata_recorder(settings.metadata),
        settings=settings.pipeline,
        object_category=settings.storage.category,
    )
