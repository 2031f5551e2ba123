from .models import (
    MediaKind,
    PipelineError,
    PipelineResult,
    PublishedAsset,
    SourceReference,
    StagedArtifact,
)
from .paths import EnginePaths
from .runtime import get_runtime_info

__all__ = [
    "EnginePaths",
    "MediaKind",
    "PipelineError",
    "PipelineResult",
    "PublishedAsset",
    "SourceReference",
    "StagedArtifact",
    "get_runtime_info",
]
