"""Pixel-level heuristics: color classification, clustering, body region."""

from serve_analysis.vision.clustering import Cluster, ScoredPoint, cluster_points, largest_cluster
from serve_analysis.vision.pixel_classifier import (
    MAX_CONFIDENCE,
    PixelMatch,
    TargetClass,
    classify_pixel,
    classify_pixels,
)
from serve_analysis.vision.region_estimator import BodyRegion, RegionEstimator, RegionKeypoint

__all__ = [
    "Cluster",
    "ScoredPoint",
    "cluster_points",
    "largest_cluster",
    "MAX_CONFIDENCE",
    "PixelMatch",
    "TargetClass",
    "classify_pixel",
    "classify_pixels",
    "BodyRegion",
    "RegionEstimator",
    "RegionKeypoint",
]
