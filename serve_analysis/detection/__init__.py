"""Three-tier implement and projectile detection."""

from serve_analysis.detection.base import (
    DetectionBox,
    DetectionContext,
    DetectionTier,
    InferenceTier,
    TierChain,
)
from serve_analysis.detection.history import DetectionHistory, MotionTrail, TrailPoint
from serve_analysis.detection.implement import ImplementDetector
from serve_analysis.detection.projectile import ProjectileDetection, ProjectileDetector

__all__ = [
    "DetectionBox",
    "DetectionContext",
    "DetectionTier",
    "InferenceTier",
    "TierChain",
    "DetectionHistory",
    "MotionTrail",
    "TrailPoint",
    "ImplementDetector",
    "ProjectileDetection",
    "ProjectileDetector",
]
