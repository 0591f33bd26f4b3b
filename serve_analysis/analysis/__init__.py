"""Serve biomechanics analysis and session summaries."""

from serve_analysis.analysis.biomechanics import (
    TARGET_METRICS,
    AnalysisResult,
    BiomechanicsAnalyzer,
    CameraAngle,
    MetricsRecord,
    ServeMetrics,
    ServePhase,
    SessionSnapshot,
    classify_phase,
    joint_angle,
    similarity_score,
    x_factor,
)
from serve_analysis.analysis.summary import history_to_frame, summarize_history

__all__ = [
    "TARGET_METRICS",
    "AnalysisResult",
    "BiomechanicsAnalyzer",
    "CameraAngle",
    "MetricsRecord",
    "ServeMetrics",
    "ServePhase",
    "SessionSnapshot",
    "classify_phase",
    "joint_angle",
    "similarity_score",
    "x_factor",
    "history_to_frame",
    "summarize_history",
]
