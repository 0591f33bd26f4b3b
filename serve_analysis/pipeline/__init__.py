"""Pipeline module for sequencing the per-frame analysis stages."""

from serve_analysis.pipeline.orchestrator import FrameResult, PipelineConfig, ServeAnalysisPipeline

__all__ = ["FrameResult", "PipelineConfig", "ServeAnalysisPipeline"]
