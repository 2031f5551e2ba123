"""Database helpers for Previewr."""

from db.recorders import MetadataRecorder, NullMetadataRecorder, build_metadata_recorder

__all__ = ["MetadataRecorder", "NullMetadataRecorder", "build_metadata_recorder"]
