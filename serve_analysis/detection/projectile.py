"""
Projectile (ball) detection.

Tiers, highest first:
    1. inference - YOLO box for the ball class.
    2. color     - multi-profile ball color hits, clustered and scored
                   for density, brightness, shape and size.
    3. brightest - brightest sampled point in the central window, low
                   fixed confidence.

Accepted detections feed a 1-second motion trail and a short history.
The emitted position is the mean of the last three detections pushed a
small step along the estimated velocity. Misses keep the previous
emission until no detection has arrived for the timeout window.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence, Tuple

import numpy as np

from serve_analysis.detection.base import (
    DetectionBox,
    DetectionContext,
    DetectionTier,
    InferenceTier,
    TierChain,
    is_valid_pixels,
)
from serve_analysis.detection.history import DetectionHistory, MotionTrail, TrailPoint
from serve_analysis.inference.lifecycle import ModelLifecycle
from serve_analysis.utils.logging_config import LoggerMixin
from serve_analysis.utils.timing import Throttle
from serve_analysis.utils.video_utils import Frame, ProcessingBuffer
from serve_analysis.vision.clustering import Cluster, ScoredPoint, cluster_points
from serve_analysis.vision.pixel_classifier import MAX_CONFIDENCE, TargetClass, classify_pixels

INFERENCE_THRESHOLD = 0.25

COLOR_MIN_SCORE = 0.15
COLOR_CONFIDENCE_SCALE = 1.2
COLOR_STRIDE = 3
COLOR_STRIDE_EXHAUSTIVE = 2
COLOR_MAX_POINTS = 400
COLOR_CLUSTER_DISTANCE = 40
MAX_ASPECT_RATIO = 1.5
MIN_SHAPE_FACTOR = 0.2
SIZE_BAND = (2.0, 40.0)
OFF_BAND_SIZE_FACTOR = 0.3

BRIGHTEST_MIN_BRIGHTNESS = 200
BRIGHTEST_CONFIDENCE = 0.2
BRIGHTEST_MIN_CONFIDENCE = 0.15
BRIGHTEST_STRIDE = 4
BRIGHTEST_WINDOW = (0.25, 0.75, 0.2, 0.8)  # x0, x1, y0, y1
BRIGHTEST_BOX = 0.02

HISTORY_SIZE = 5
SMOOTHING_SAMPLES = 3
EXTRAPOLATION_STEP = 0.3
CONFIDENCE_BOOST = 1.2
TRAIL_WINDOW = 1.0
DETECTION_TIMEOUT = 1.0


@dataclass(frozen=True)
class ProjectileDetection:
    """
    Emitted projectile estimate.

    Attributes:
        x: Center x, normalized 0-1.
        y: Center y, normalized 0-1.
        width: Box width, normalized.
        height: Box height, normalized.
        confidence: Display confidence (boosted when smoothed).
        timestamp: Timestamp of the frame that produced it.
        tier: Tier of the most recent underlying detection.
        trail: Recent positions, oldest first.
    """
    x: float
    y: float
    width: float
    height: float
    confidence: float
    timestamp: float
    tier: str = ""
    trail: Tuple[TrailPoint, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "confidence": self.confidence,
            "timestamp": self.timestamp,
            "tier": self.tier,
            "trail": [(p.x, p.y, p.timestamp) for p in self.trail],
        }


def _clamp01(value: float) -> float:
    return min(1.0, max(0.0, value))


def score_cluster(cluster: Cluster, stride: int) -> float:
    """
    Ball-likeness of a color cluster.

    Product of pixel density within the cluster extent, mean brightness,
    mean profile confidence, shape regularity and size plausibility.
    Extents include one stride so single-sample clusters are well defined.
    """
    extent_w = cluster.width + stride
    extent_h = cluster.height + stride

    expected = (extent_w / stride) * (extent_h / stride)
    density = min(1.0, cluster.count / expected)
    intensity = 0.5 + 0.5 * cluster.mean_intensity

    aspect = max(extent_w, extent_h) / min(extent_w, extent_h)
    shape = 1.0 if aspect <= MAX_ASPECT_RATIO else max(MIN_SHAPE_FACTOR, MAX_ASPECT_RATIO / aspect)

    size = max(extent_w, extent_h)
    size_factor = 1.0 if SIZE_BAND[0] <= size <= SIZE_BAND[1] else OFF_BAND_SIZE_FACTOR

    return density * intensity * cluster.mean_score * shape * size_factor


class ColorHeuristicTier(DetectionTier):
    """Clustered ball-color hits on a stride grid over the whole frame."""

    name = "color"
    min_confidence = COLOR_MIN_SCORE

    def __init__(self, max_width: int = 400, max_height: int = 300):
        self.buffer = ProcessingBuffer(max_width, max_height)

    def detect(self, pixels, timestamp, context):
        work = self.buffer.prepare(pixels)
        height, width = work.shape[:2]
        stride = COLOR_STRIDE_EXHAUSTIVE if context.exhaustive else COLOR_STRIDE

        sampled = work[::stride, ::stride]
        result = classify_pixels(sampled, TargetClass.PROJECTILE)
        rows, cols = np.nonzero(result.is_match)
        if len(rows) == 0:
            return None

        points = [
            ScoredPoint(
                x=float(c * stride),
                y=float(r * stride),
                score=float(result.confidence[r, c]),
                intensity=float(result.intensity[r, c]),
            )
            for r, c in zip(rows, cols)
        ]
        clusters = cluster_points(points, COLOR_CLUSTER_DISTANCE, max_points=COLOR_MAX_POINTS)

        best, best_score = None, 0.0
        for cluster in clusters:
            cluster_score = score_cluster(cluster, stride)
            if cluster_score > best_score:
                best, best_score = cluster, cluster_score

        if best is None or best_score < COLOR_MIN_SCORE:
            return None

        # +0.5 maps sample indices to pixel centers
        return DetectionBox.from_center(
            (best.centroid_x + 0.5) / width,
            (best.centroid_y + 0.5) / height,
            (best.width + stride) / width,
            (best.height + stride) / height,
            confidence=min(MAX_CONFIDENCE, best_score * COLOR_CONFIDENCE_SCALE),
            timestamp=timestamp,
            tier=self.name,
        )


class BrightestRegionTier(DetectionTier):
    """Brightest sampled point in the central window, at low confidence."""

    name = "brightest"
    min_confidence = BRIGHTEST_MIN_CONFIDENCE

    def __init__(self, max_width: int = 400, max_height: int = 300):
        self.buffer = ProcessingBuffer(max_width, max_height)

    def detect(self, pixels, timestamp, context):
        work = self.buffer.prepare(pixels)
        height, width = work.shape[:2]

        x0, x1, y0, y1 = BRIGHTEST_WINDOW
        top, left = int(height * y0), int(width * x0)
        window = work[top:int(height * y1):BRIGHTEST_STRIDE, left:int(width * x1):BRIGHTEST_STRIDE]
        if window.size == 0:
            return None

        brightness = window.astype(np.float32).mean(axis=2)
        index = np.unravel_index(int(np.argmax(brightness)), brightness.shape)
        if brightness[index] <= BRIGHTEST_MIN_BRIGHTNESS:
            return None

        return DetectionBox.from_center(
            (left + index[1] * BRIGHTEST_STRIDE + 0.5) / width,
            (top + index[0] * BRIGHTEST_STRIDE + 0.5) / height,
            BRIGHTEST_BOX,
            BRIGHTEST_BOX,
            confidence=BRIGHTEST_CONFIDENCE,
            timestamp=timestamp,
            tier=self.name,
        )


class ProjectileDetector(LoggerMixin):
    """
    Three-tier projectile detector with motion trail and miss hysteresis.

    Example:
        detector = ProjectileDetector(lifecycle=ball_model)
        for frame in source.iterate_frames():
            ball = detector.process(frame, DetectionContext())
    """

    def __init__(
        self,
        lifecycle: Optional[ModelLifecycle] = None,
        class_index: int = 0,
        min_interval: float = 1 / 15,
        clock: Callable[[], float] = time.monotonic,
        tiers: Optional[Sequence[DetectionTier]] = None,
    ):
        """
        Args:
            lifecycle: YOLO model lifecycle; the inference tier is skipped without one.
            class_index: Ball class index in the model output.
            min_interval: Minimum seconds between detection passes.
            clock: Monotonic clock for throttling.
            tiers: Replace the default tiers (used to inject fakes).
        """
        if tiers is None:
            tiers = []
            if lifecycle is not None:
                tiers.append(InferenceTier(lifecycle, class_index, INFERENCE_THRESHOLD))
            tiers += [ColorHeuristicTier(), BrightestRegionTier()]

        self.chain = TierChain(tiers)
        self.history = DetectionHistory(HISTORY_SIZE)
        self.trail = MotionTrail(TRAIL_WINDOW)
        self.throttle = Throttle(min_interval, clock)
        self._current: Optional[ProjectileDetection] = None
        self._last_detection: Optional[float] = None
        self._miss_since: Optional[float] = None

    @property
    def current(self) -> Optional[ProjectileDetection]:
        return self._current

    @property
    def active_tier(self) -> Optional[str]:
        return self.chain.active_tier

    def process(
        self,
        frame: Frame,
        context: DetectionContext,
        now: Optional[float] = None,
    ) -> Optional[ProjectileDetection]:
        """
        Run one detection pass.

        Invalid frames and throttled calls return the current emission,
        after applying the miss timeout.

        Returns:
            Smoothed projectile detection, or None.
        """
        if frame is None or not is_valid_pixels(frame.pixels):
            return self._current

        timestamp = frame.timestamp
        if self._last_detection is not None and timestamp < self._last_detection:
            self.logger.debug("Timestamp went backwards, clearing projectile history")
            self.clear()

        if not self.throttle.ready(now):
            self._expire(timestamp)
            return self._current

        box = self.chain.run(frame.pixels, timestamp, context)
        if box is None:
            if self._miss_since is None and self._last_detection is not None:
                self._miss_since = timestamp
            self._expire(timestamp)
            return self._current

        self._last_detection = timestamp
        self._miss_since = None
        self.trail.append(TrailPoint(box.center_x, box.center_y, timestamp))
        self.history.append(box)
        self._current = self._emit(box, timestamp)
        return self._current

    def _emit(self, box: DetectionBox, timestamp: float) -> ProjectileDetection:
        if len(self.history) < 2:
            return ProjectileDetection(
                x=box.center_x,
                y=box.center_y,
                width=box.width,
                height=box.height,
                confidence=box.confidence,
                timestamp=timestamp,
                tier=box.tier,
                trail=self.trail.points(),
            )

        mean = self.history.mean(last=SMOOTHING_SAMPLES)
        x, y = mean.center_x, mean.center_y

        if len(self.history) >= 3:
            velocity = self.trail.velocity(SMOOTHING_SAMPLES)
            if velocity is not None:
                vx, vy, interval = velocity
                x += vx * interval * EXTRAPOLATION_STEP
                y += vy * interval * EXTRAPOLATION_STEP

        return ProjectileDetection(
            x=_clamp01(x),
            y=_clamp01(y),
            width=mean.width,
            height=mean.height,
            confidence=min(MAX_CONFIDENCE, mean.confidence * CONFIDENCE_BOOST),
            timestamp=timestamp,
            tier=box.tier,
            trail=self.trail.points(),
        )

    def _expire(self, timestamp: float) -> None:
        if self._miss_since is not None and timestamp - self._miss_since > DETECTION_TIMEOUT:
            self.logger.debug(f"Projectile lost at t={timestamp:.3f}s")
            self.clear()

    def clear(self) -> None:
        """Drop the emission, history and trail."""
        self.history.clear()
        self.trail.clear()
        self._current = None
        self._last_detection = None
        self._miss_since = None

    def reset(self) -> None:
        self.clear()
        self.chain.reset()
        self.throttle.reset()
