"""Coarse body-region estimation from skin, clothing and hair pixels."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from serve_analysis.utils.video_utils import ProcessingBuffer
from serve_analysis.vision.clustering import ScoredPoint, cluster_points, largest_cluster
from serve_analysis.vision.pixel_classifier import (
    BODY_PROFILES,
    MAX_CONFIDENCE,
    TargetClass,
    classify_pixels,
)

logger = logging.getLogger(__name__)

SAMPLE_STRIDE = 2
MAX_CANDIDATES = 1500
MIN_CANDIDATES = 50
MIN_CLUSTER_SIZE = 30
CLUSTER_DISTANCE_RATIO = 0.1
MIN_REGION_WIDTH = 0.15
MIN_REGION_HEIGHT = 0.4
# Highest per-pixel body score (a skin pixel)
MAX_PIXEL_SCORE = 3.0


@dataclass(frozen=True)
class RegionKeypoint:
    """An anatomical anchor inside a body region (normalized coordinates)."""
    x: float
    y: float
    kind: str
    confidence: float


@dataclass(frozen=True)
class BodyRegion:
    """
    Coarse body bounding region.

    Attributes:
        center_x: Region center, normalized 0-1.
        center_y: Region center, normalized 0-1.
        width: Region width as a fraction of frame width.
        height: Region height as a fraction of frame height.
        confidence: Mean body score of the winning cluster, normalized.
        keypoints: head, left_shoulder, right_shoulder and center_hip anchors.
    """
    center_x: float
    center_y: float
    width: float
    height: float
    confidence: float
    keypoints: List[RegionKeypoint] = field(default_factory=list)

    def keypoint(self, kind: str) -> Optional[RegionKeypoint]:
        for kp in self.keypoints:
            if kp.kind == kind:
                return kp
        return None


def _mean_position(points: List[ScoredPoint]):
    return (
        sum(p.x for p in points) / len(points),
        sum(p.y for p in points) / len(points),
    )


class RegionEstimator:
    """
    Estimates where the athlete is from body-like pixel colors.

    The frame is downscaled into a reusable buffer, sampled on a stride
    grid and every body-like sample is clustered with a distance
    threshold proportional to the processing width. The largest cluster
    becomes the region when it is big enough.
    """

    def __init__(self, max_width: int = 320, max_height: int = 240):
        self.buffer = ProcessingBuffer(max_width, max_height)

    def estimate(self, pixels: np.ndarray) -> Optional[BodyRegion]:
        """
        Estimate the body region in an RGB frame.

        Args:
            pixels: RGB array (height, width, 3).

        Returns:
            BodyRegion, or None when no sufficiently large body cluster exists.
        """
        if pixels is None or pixels.ndim != 3 or pixels.shape[0] == 0 or pixels.shape[1] == 0:
            return None

        work = self.buffer.prepare(pixels)
        height, width = work.shape[:2]

        sampled = work[::SAMPLE_STRIDE, ::SAMPLE_STRIDE]
        result = classify_pixels(sampled, TargetClass.BODY)
        rows, cols = np.nonzero(result.is_match)
        if len(rows) <= MIN_CANDIDATES:
            logger.debug(f"Too few body pixels ({len(rows)})")
            return None

        points = [
            ScoredPoint(
                x=float(c * SAMPLE_STRIDE),
                y=float(r * SAMPLE_STRIDE),
                score=float(result.score[r, c]),
                intensity=float(result.intensity[r, c]),
                label=BODY_PROFILES[int(result.profile_index[r, c])].name,
            )
            for r, c in zip(rows, cols)
        ]

        clusters = cluster_points(
            points,
            max_distance=width * CLUSTER_DISTANCE_RATIO,
            max_points=MAX_CANDIDATES,
        )
        main = largest_cluster(clusters)
        if main is None or main.count <= MIN_CLUSTER_SIZE:
            logger.debug("No body cluster large enough")
            return None

        return self._build_region(main.members, width, height)

    def _build_region(self, members: List[ScoredPoint], width: int, height: int) -> BodyRegion:
        xs = [p.x for p in members]
        ys = [p.y for p in members]
        min_x, max_x = min(xs), max(xs)
        min_y, max_y = min(ys), max(ys)

        center_x = (min_x + max_x) / 2
        center_y = (min_y + max_y) / 2
        region_w = max(width * MIN_REGION_WIDTH, max_x - min_x)
        region_h = max(height * MIN_REGION_HEIGHT, max_y - min_y)

        keypoints = self._keypoints(members, center_x, center_y, region_w, region_h, width, height)
        mean_score = sum(p.score for p in members) / len(members)

        return BodyRegion(
            center_x=center_x / width,
            center_y=center_y / height,
            width=region_w / width,
            height=region_h / height,
            confidence=min(MAX_CONFIDENCE, mean_score / MAX_PIXEL_SCORE),
            keypoints=keypoints,
        )

    @staticmethod
    def _keypoints(
        members: List[ScoredPoint],
        center_x: float,
        center_y: float,
        region_w: float,
        region_h: float,
        width: int,
        height: int,
    ) -> List[RegionKeypoint]:
        # head: topmost skin pixels; shoulders: either side of the torso clothing
        head = [p for p in members if p.label == "skin" and p.y < center_y - region_h * 0.2]
        head_x, head_y = _mean_position(head) if head else (center_x, center_y - region_h * 0.3)

        torso = [
            p for p in members
            if p.label == "clothing" and center_y - region_h * 0.1 < p.y < center_y + region_h * 0.1
        ]
        torso_x, torso_y = _mean_position(torso) if torso else (center_x, center_y)

        return [
            RegionKeypoint(head_x / width, head_y / height, "head", 0.9),
            RegionKeypoint((torso_x - region_w * 0.15) / width, torso_y / height, "left_shoulder", 0.8),
            RegionKeypoint((torso_x + region_w * 0.15) / width, torso_y / height, "right_shoulder", 0.8),
            RegionKeypoint(center_x / width, (center_y + region_h * 0.3) / height, "center_hip", 0.7),
        ]
