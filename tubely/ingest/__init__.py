"""Local media processing steps used by the ingest pipeline."""

from tubely.ingest.aspect import AspectClass, FFprobeProbe, Geometry, MediaProbe, classify_geometry, parse_probe_output
from tubely.ingest.faststart import FFmpegFaststartOptimizer, StreamOptimizer, processed_path
from tubely.ingest.staging import LocalStagingArea, StagingArea, StagingRun, UploadSource

__all__ = [
    "AspectClass",
    "FFprobeProbe",
    "Geometry",
    "MediaProbe",
    "classify_geometry",
    "parse_probe_output",
    "FFmpegFaststartOptimizer",
    "StreamOptimizer",
    "processed_path",
    "LocalStagingArea",
    "StagingArea",
    "StagingRun",
    "UploadSource",
]
