"""
Implement (racket) detection.

Tiers, highest first:
    1. inference - YOLO box for the racket class.
    2. pose      - forearm extension from the wrist of a visible arm.
    3. pattern   - frame/strings/handle material pattern around the body.

Accepted detections are smoothed over a 3-entry history. There is no
grace period: the first frame without an acceptable detection clears
the history and the emission.
"""

import time
from typing import Callable, Optional, Sequence

import cv2
import numpy as np

from serve_analysis.detection.base import (
    DetectionBox,
    DetectionContext,
    DetectionTier,
    InferenceTier,
    TierChain,
    is_valid_pixels,
)
from serve_analysis.detection.history import DetectionHistory
from serve_analysis.inference.lifecycle import ModelLifecycle
from serve_analysis.pose.base import PoseLandmark
from serve_analysis.utils.logging_config import LoggerMixin
from serve_analysis.utils.timing import Throttle
from serve_analysis.utils.video_utils import Frame, ProcessingBuffer
from serve_analysis.vision.clustering import ScoredPoint, cluster_points, largest_cluster
from serve_analysis.vision.pixel_classifier import MAX_CONFIDENCE, TargetClass, classify_pixels

INFERENCE_THRESHOLD = 0.3
ACCEPTANCE_FLOOR = 0.3
HISTORY_SIZE = 3

POSE_MIN_CONFIDENCE = 0.35
POSE_VISIBILITY_MIN = 0.5
POSE_DOMINANT_CAP = 0.75
POSE_OFF_SIDE_CAP = 0.6
POSE_VISIBILITY_FACTOR = 0.8
FOREARM_EXTENSION = 0.5
POSE_BOX_WIDTH = 0.08
POSE_BOX_HEIGHT = 0.14

PATTERN_MIN_CONFIDENCE = 0.6
PATTERN_ACCEPT_SCORE = 0.7
PATTERN_STRIDE = 3
PATTERN_HALF_WIDTH = 15
PATTERN_HALF_HEIGHT = 25
PATTERN_CLUSTER_DISTANCE = 30
PATTERN_MAX_POINTS = 600
PATTERN_BOX_WIDTH = 50
PATTERN_BOX_HEIGHT = 70
REGION_MIN_CONFIDENCE = 0.5

ARMS = {
    "right": (PoseLandmark.RIGHT_ELBOW, PoseLandmark.RIGHT_WRIST),
    "left": (PoseLandmark.LEFT_ELBOW, PoseLandmark.LEFT_WRIST),
}


class PoseGeometryTier(DetectionTier):
    """
    Places the implement at wrist + 0.5 x (wrist - elbow).

    The dominant arm is preferred; the other arm is used with a lower
    confidence cap. Both caps sit below typical inference confidence.
    """

    name = "pose"
    min_confidence = POSE_MIN_CONFIDENCE

    def __init__(self, dominant_side: str = "right"):
        if dominant_side not in ARMS:
            raise ValueError(f"Unknown dominant side: {dominant_side}")
        self.dominant_side = dominant_side
        self.off_side = "left" if dominant_side == "right" else "right"

    def detect(self, pixels, timestamp, context):
        pose = context.pose
        if pose is None:
            return None

        for side, cap in ((self.dominant_side, POSE_DOMINANT_CAP), (self.off_side, POSE_OFF_SIDE_CAP)):
            elbow_idx, wrist_idx = ARMS[side]
            elbow, wrist = pose[elbow_idx], pose[wrist_idx]
            if elbow.visibility < POSE_VISIBILITY_MIN or wrist.visibility < POSE_VISIBILITY_MIN:
                continue

            anchor_x = wrist.x + FOREARM_EXTENSION * (wrist.x - elbow.x)
            anchor_y = wrist.y + FOREARM_EXTENSION * (wrist.y - elbow.y)
            return DetectionBox.from_center(
                anchor_x,
                anchor_y,
                POSE_BOX_WIDTH,
                POSE_BOX_HEIGHT,
                confidence=min(cap, wrist.visibility * POSE_VISIBILITY_FACTOR),
                timestamp=timestamp,
                tier=self.name,
            )

        return None


class PixelPatternTier(DetectionTier):
    """
    Scores racket materials in a neighborhood around stride-grid samples.

    Each pixel gets the summed weight of its firing material profiles;
    a sample's score is the mean of that weight over a 31x51 window.
    Samples above the acceptance score are clustered and the largest
    cluster's centroid becomes a fixed-size box.
    """

    name = "pattern"
    min_confidence = PATTERN_MIN_CONFIDENCE

    def __init__(self, max_width: int = 480, max_height: int = 360):
        self.buffer = ProcessingBuffer(max_width, max_height)

    def detect(self, pixels, timestamp, context):
        work = self.buffer.prepare(pixels)
        height, width = work.shape[:2]

        weights = classify_pixels(work, TargetClass.IMPLEMENT).score
        ksize = (2 * PATTERN_HALF_WIDTH + 1, 2 * PATTERN_HALF_HEIGHT + 1)
        totals = cv2.boxFilter(weights, -1, ksize, normalize=False, borderType=cv2.BORDER_CONSTANT)
        counts = cv2.boxFilter(
            np.ones_like(weights), -1, ksize, normalize=False, borderType=cv2.BORDER_CONSTANT
        )
        neighborhood = totals / np.maximum(counts, 1.0)

        x0, x1, y0, y1 = self._search_window(context, width, height)
        grid = neighborhood[y0:y1:PATTERN_STRIDE, x0:x1:PATTERN_STRIDE]
        rows, cols = np.nonzero(grid > PATTERN_ACCEPT_SCORE)
        if len(rows) == 0:
            return None

        points = [
            ScoredPoint(
                x=float(x0 + c * PATTERN_STRIDE),
                y=float(y0 + r * PATTERN_STRIDE),
                score=float(grid[r, c]),
            )
            for r, c in zip(rows, cols)
        ]
        best = largest_cluster(
            cluster_points(points, PATTERN_CLUSTER_DISTANCE, max_points=PATTERN_MAX_POINTS)
        )
        if best is None:
            return None

        center_x = sum(p.x for p in best.members) / best.count
        center_y = sum(p.y for p in best.members) / best.count
        return DetectionBox(
            x=(center_x - PATTERN_BOX_WIDTH / 2) / width,
            y=(center_y - PATTERN_BOX_HEIGHT / 2) / height,
            width=PATTERN_BOX_WIDTH / width,
            height=PATTERN_BOX_HEIGHT / height,
            confidence=min(MAX_CONFIDENCE, best.mean_score),
            timestamp=timestamp,
            tier=self.name,
        )

    @staticmethod
    def _search_window(context: DetectionContext, width: int, height: int):
        region = context.region
        if region is None or region.confidence <= REGION_MIN_CONFIDENCE:
            return 0, width, 0, height

        px, py = region.center_x * width, region.center_y * height
        pw, ph = region.width * width, region.height * height
        return (
            int(max(0, px - pw)),
            int(min(width, px + pw)),
            int(max(0, py - ph * 0.5)),
            int(min(height, py + ph * 0.5)),
        )


class ImplementDetector(LoggerMixin):
    """
    Three-tier implement detector with confidence-gated smoothing.

    Example:
        detector = ImplementDetector(lifecycle=racket_model)
        box = detector.process(frame, DetectionContext(pose=pose, region=region))
    """

    def __init__(
        self,
        lifecycle: Optional[ModelLifecycle] = None,
        class_index: int = 1,
        dominant_side: str = "right",
        min_interval: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
        tiers: Optional[Sequence[DetectionTier]] = None,
    ):
        """
        Args:
            lifecycle: YOLO model lifecycle; the inference tier is skipped without one.
            class_index: Racket class index in the model output.
            dominant_side: Hitting arm, "right" or "left".
            min_interval: Minimum seconds between detection passes.
            clock: Monotonic clock for throttling.
            tiers: Replace the default tiers (used to inject fakes).
        """
        if tiers is None:
            tiers = []
            if lifecycle is not None:
                tiers.append(InferenceTier(lifecycle, class_index, INFERENCE_THRESHOLD))
            tiers += [PoseGeometryTier(dominant_side), PixelPatternTier()]

        self.chain = TierChain(tiers)
        self.history = DetectionHistory(HISTORY_SIZE)
        self.throttle = Throttle(min_interval, clock)
        self._current: Optional[DetectionBox] = None

    @property
    def current(self) -> Optional[DetectionBox]:
        return self._current

    @property
    def active_tier(self) -> Optional[str]:
        return self.chain.active_tier if self._current is not None else None

    def process(
        self,
        frame: Frame,
        context: DetectionContext,
        now: Optional[float] = None,
    ) -> Optional[DetectionBox]:
        """
        Run one detection pass.

        Invalid frames and throttled calls return the current emission unchanged.

        Returns:
            Smoothed implement box, or None.
        """
        if frame is None or not is_valid_pixels(frame.pixels):
            return self._current
        if not self.throttle.ready(now):
            return self._current

        box = self.chain.run(frame.pixels, frame.timestamp, context)

        if box is None or box.confidence <= ACCEPTANCE_FLOOR:
            if self._current is not None:
                self.logger.debug(f"Implement lost at t={frame.timestamp:.3f}s")
            self.history.clear()
            self._current = None
            return None

        self.history.append(box)
        self._current = self.history.mean() if len(self.history) >= 2 else box
        return self._current

    def reset(self) -> None:
        self.history.clear()
        self.chain.reset()
        self.throttle.reset()
        self._current = None
