"""End-to-end road elevation pipeline."""

from .pipeline import PipelineResult, RoadElevationPipeline

__all__ = ["PipelineResult", "RoadElevationPipeline"]
