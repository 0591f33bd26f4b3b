"""
Serve biomechanics: joint angles, phase classification, metrics and similarity.

All landmark coordinates are normalized with y growing downward, so a
wrist above the shoulder has a negative ``wrist.y - shoulder.y``.
"""

import math
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from serve_analysis.detection.base import DetectionBox
from serve_analysis.pose.base import Landmark, Pose, PoseLandmark
from serve_analysis.utils.logging_config import LoggerMixin
from serve_analysis.utils.timing import Throttle

VISIBILITY_THRESHOLD = 0.5
DEFAULT_KNEE_ANGLE = 140.0
DEFAULT_X_FACTOR = 35.0
DEGENERATE_ELBOW_ANGLE = 120.0
DEGENERATE_KNEE_ANGLE = 130.0

CONTACT_HEIGHT_BASE = 180.0
CONTACT_HEIGHT_RANGE = 120.0
FOLLOW_THROUGH_ARM_SCALE = 20.0
FOLLOW_THROUGH_IMPLEMENT_SCALE = 15.0
IMPLEMENT_MIN_CONFIDENCE = 0.5

HISTORY_CAPACITY = 120
HISTORY_TRIM = 60
SNAPSHOT_SAMPLES = 30
ANALYSIS_TYPE = "tennis_serve"


class ServePhase(str, Enum):
    """Discrete position in the serve motion."""
    PREPARATION = "preparation"
    LOADING = "loading"
    ACCELERATION = "acceleration"
    CONTACT = "contact"
    FOLLOW_THROUGH = "follow-through"


class CameraAngle(str, Enum):
    """Viewpoint of the recording."""
    FRONT = "front"
    SIDE = "side"
    BACK = "back"


# (lower bound on heightDiff, phase), largest first; below the last bound is follow-through
PHASE_THRESHOLDS: Tuple[Tuple[float, ServePhase], ...] = (
    (0.1, ServePhase.PREPARATION),
    (0.0, ServePhase.LOADING),
    (-0.1, ServePhase.ACCELERATION),
    (-0.2, ServePhase.CONTACT),
)

# Calibration factors for (elbow, knee, x_factor)
PHASE_ADJUSTMENTS: Dict[ServePhase, Tuple[float, float, float]] = {
    ServePhase.PREPARATION: (0.85, 0.9, 0.8),
    ServePhase.LOADING: (0.9, 1.15, 1.2),
    ServePhase.ACCELERATION: (1.25, 1.0, 1.3),
    ServePhase.CONTACT: (1.4, 0.9, 1.1),
    ServePhase.FOLLOW_THROUGH: (0.75, 0.85, 0.9),
}

CAMERA_HEIGHT_FACTORS: Dict[CameraAngle, float] = {
    CameraAngle.FRONT: 0.95,
    CameraAngle.SIDE: 1.0,
    CameraAngle.BACK: 1.05,
}

METRIC_RANGES: Dict[str, Tuple[float, float]] = {
    "elbow_angle": (90.0, 180.0),
    "knee_angle": (120.0, 170.0),
    "x_factor": (15.0, 75.0),
    "contact_height": (180.0, 260.0),
    "follow_through": (5.0, 25.0),
}


@dataclass(frozen=True)
class ServeMetrics:
    """
    Biomechanical measurements for one frame.

    Attributes:
        elbow_angle: Hitting-arm elbow angle (degrees).
        knee_angle: Hitting-side knee angle (degrees).
        x_factor: Shoulder line vs hip line rotation (degrees).
        contact_height: Approximate contact height (cm).
        follow_through: Extension score.
    """
    elbow_angle: float = 0.0
    knee_angle: float = 0.0
    x_factor: float = 0.0
    contact_height: float = 0.0
    follow_through: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    def scaled(self, factor: float) -> "ServeMetrics":
        return ServeMetrics(**{k: v * factor for k, v in self.to_dict().items()})


TARGET_METRICS = ServeMetrics(
    elbow_angle=150.0,
    knee_angle=140.0,
    x_factor=45.0,
    contact_height=220.0,
    follow_through=15.0,
)

# Rotation matters most for form quality
METRIC_WEIGHTS: Dict[str, float] = {
    "elbow_angle": 1.2,
    "knee_angle": 1.0,
    "x_factor": 1.3,
    "contact_height": 1.1,
    "follow_through": 0.8,
}


@dataclass(frozen=True)
class MetricsRecord:
    """One entry of the metrics history."""
    timestamp: float
    metrics: ServeMetrics
    phase: ServePhase
    similarity: float

    def to_dict(self) -> Dict:
        return {
            "timestamp": self.timestamp,
            "phase": self.phase.value,
            "similarity": self.similarity,
            **self.metrics.to_dict(),
        }


@dataclass(frozen=True)
class AnalysisResult:
    """Analyzer output for the latest processed frame."""
    metrics: ServeMetrics
    phase: ServePhase
    similarity: float
    timestamp: float


@dataclass
class SessionSnapshot:
    """
    Everything the persistence sink receives on "save session".

    Attributes:
        timestamp: Wall-clock time the snapshot was taken (UTC).
        camera_angle: Recording viewpoint.
        final_metrics: Last computed metrics.
        final_similarity: Last similarity score.
        final_phase: Last phase.
        metrics_history: The most recent history entries.
        analysis_type: Kind of analysis.
        duration_estimate: Seconds between the first and last analyzed poses.
    """
    timestamp: datetime
    camera_angle: CameraAngle
    final_metrics: ServeMetrics
    final_similarity: float
    final_phase: ServePhase
    metrics_history: List[MetricsRecord] = field(default_factory=list)
    analysis_type: str = ANALYSIS_TYPE
    duration_estimate: float = 0.0

    def to_dict(self) -> Dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "camera_angle": self.camera_angle.value,
            "final_metrics": self.final_metrics.to_dict(),
            "final_similarity": self.final_similarity,
            "final_phase": self.final_phase.value,
            "metrics_history": [r.to_dict() for r in self.metrics_history],
            "analysis_type": self.analysis_type,
            "duration_estimate": self.duration_estimate,
        }


def joint_angle(a: Landmark, b: Landmark, c: Landmark) -> float:
    """
    Angle at vertex B formed by A-B-C, in degrees.

    Returns 0 when either arm of the angle has zero length.
    """
    bax, bay = a.x - b.x, a.y - b.y
    bcx, bcy = c.x - b.x, c.y - b.y
    mag1 = math.hypot(bax, bay)
    mag2 = math.hypot(bcx, bcy)
    if mag1 == 0 or mag2 == 0:
        return 0.0

    cosine = max(-1.0, min(1.0, (bax * bcx + bay * bcy) / (mag1 * mag2)))
    return math.degrees(math.acos(cosine))


def line_angle(left: Landmark, right: Landmark) -> float:
    """Orientation of the left-to-right line in degrees."""
    return math.degrees(math.atan2(right.y - left.y, right.x - left.x))


def x_factor(
    left_shoulder: Landmark,
    right_shoulder: Landmark,
    left_hip: Landmark,
    right_hip: Landmark,
) -> float:
    """Absolute shoulder-line vs hip-line rotation, wrapped into [0, 180]."""
    diff = abs(line_angle(left_shoulder, right_shoulder) - line_angle(left_hip, right_hip)) % 360
    return 360 - diff if diff > 180 else diff


def distance(a, b) -> float:
    return math.hypot(a[0] - b[0], a[1] - b[1])


def _side_landmarks(dominant_side: str) -> Dict[str, PoseLandmark]:
    prefix = "RIGHT" if dominant_side == "right" else "LEFT"
    return {
        part: PoseLandmark[f"{prefix}_{part.upper()}"]
        for part in ("shoulder", "elbow", "wrist", "hip", "knee", "ankle")
    }


def classify_phase(pose: Pose, dominant_side: str = "right") -> ServePhase:
    """
    Serve phase from wrist height relative to shoulder height.

    A pure function of the pose: identical geometry always yields the
    same phase, whatever was classified before.
    """
    side = _side_landmarks(dominant_side)
    height_diff = pose[side["wrist"]].y - pose[side["shoulder"]].y

    for bound, phase in PHASE_THRESHOLDS:
        if height_diff > bound:
            return phase
    return ServePhase.FOLLOW_THROUGH


def clamp_metric(name: str, value: float) -> float:
    low, high = METRIC_RANGES[name]
    return max(low, min(high, value))


def similarity_score(metrics: ServeMetrics, target: ServeMetrics = TARGET_METRICS) -> float:
    """
    0-100 score from the mean weighted relative deviation from the target.

    Args:
        metrics: Measured metrics.
        target: Reference profile (non-zero fields).

    Returns:
        max(0, min(100, (1 - mean deviation) * 100)).
    """
    actual = metrics.to_dict()
    reference = target.to_dict()
    deviations = [
        abs(actual[name] - reference[name]) / reference[name] * weight
        for name, weight in METRIC_WEIGHTS.items()
    ]
    avg_deviation = sum(deviations) / len(deviations)
    return max(0.0, min(100.0, (1 - avg_deviation) * 100))


class BiomechanicsAnalyzer(LoggerMixin):
    """
    Turns poses (and the implement box) into metrics, phase and similarity.

    Keeps a capped metrics history for session summaries: once it grows
    past HISTORY_CAPACITY entries it is trimmed to the latest HISTORY_TRIM.
    """

    def __init__(
        self,
        dominant_side: str = "right",
        camera_angle: CameraAngle = CameraAngle.SIDE,
        min_interval: float = 0.05,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            dominant_side: Hitting arm, "right" or "left".
            camera_angle: Recording viewpoint, adjusts contact height.
            min_interval: Minimum seconds between analysis updates.
            clock: Monotonic clock for throttling.
        """
        if dominant_side not in ("right", "left"):
            raise ValueError(f"Unknown dominant side: {dominant_side}")
        self.dominant_side = dominant_side
        self.camera_angle = CameraAngle(camera_angle)
        self.throttle = Throttle(min_interval, clock)
        self._side = _side_landmarks(dominant_side)
        self._off = _side_landmarks("left" if dominant_side == "right" else "right")
        self._history: List[MetricsRecord] = []
        self._result: Optional[AnalysisResult] = None
        self._phase = ServePhase.PREPARATION
        self._first_timestamp: Optional[float] = None
        self._last_timestamp: Optional[float] = None

    @property
    def result(self) -> Optional[AnalysisResult]:
        return self._result

    @property
    def phase(self) -> ServePhase:
        return self._phase

    @property
    def metrics_history(self) -> Tuple[MetricsRecord, ...]:
        """Read-only view of the metrics history, oldest first."""
        return tuple(self._history)

    def _visible(self, pose: Pose, *indices: PoseLandmark) -> bool:
        return all(pose.is_visible(i, VISIBILITY_THRESHOLD) for i in indices)

    def compute_metrics(
        self,
        pose: Pose,
        phase: ServePhase,
        implement: Optional[DetectionBox] = None,
    ) -> ServeMetrics:
        """
        Phase-adjusted, clamped metrics for a pose.

        Knee angle and X-factor fall back to neutral defaults when their
        landmarks are not visible.
        """
        s, o = self._side, self._off
        shoulder, elbow, wrist = pose[s["shoulder"]], pose[s["elbow"]], pose[s["wrist"]]

        elbow_angle = joint_angle(shoulder, elbow, wrist) or DEGENERATE_ELBOW_ANGLE

        if self._visible(pose, s["hip"], s["knee"], s["ankle"]):
            knee_angle = joint_angle(pose[s["hip"]], pose[s["knee"]], pose[s["ankle"]]) or DEGENERATE_KNEE_ANGLE
        else:
            knee_angle = DEFAULT_KNEE_ANGLE

        if self._visible(pose, o["shoulder"], o["hip"], s["hip"]):
            left = PoseLandmark.LEFT_SHOULDER, PoseLandmark.LEFT_HIP
            right = PoseLandmark.RIGHT_SHOULDER, PoseLandmark.RIGHT_HIP
            rotation = x_factor(pose[left[0]], pose[right[0]], pose[left[1]], pose[right[1]])
        else:
            rotation = DEFAULT_X_FACTOR

        contact_height = CONTACT_HEIGHT_BASE + (1 - wrist.y) * CONTACT_HEIGHT_RANGE
        contact_height *= CAMERA_HEIGHT_FACTORS[self.camera_angle]

        follow_through = distance((shoulder.x, shoulder.y), (wrist.x, wrist.y)) * FOLLOW_THROUGH_ARM_SCALE
        if implement is not None and implement.confidence > IMPLEMENT_MIN_CONFIDENCE:
            implement_reach = distance((wrist.x, wrist.y), (implement.center_x, implement.center_y))
            follow_through += implement_reach * FOLLOW_THROUGH_IMPLEMENT_SCALE

        elbow_adj, knee_adj, x_adj = PHASE_ADJUSTMENTS[phase]
        return ServeMetrics(
            elbow_angle=clamp_metric("elbow_angle", elbow_angle * elbow_adj),
            knee_angle=clamp_metric("knee_angle", knee_angle * knee_adj),
            x_factor=clamp_metric("x_factor", rotation * x_adj),
            contact_height=clamp_metric("contact_height", contact_height),
            follow_through=clamp_metric("follow_through", follow_through),
        )

    def process(
        self,
        pose: Optional[Pose],
        implement: Optional[DetectionBox] = None,
        now: Optional[float] = None,
    ) -> Optional[AnalysisResult]:
        """
        Analyze the latest pose.

        The phase is re-derived from every analyzed pose. Metrics are only
        recomputed when the hitting shoulder, elbow and wrist are visible;
        otherwise the previous result stands.

        Returns:
            The current AnalysisResult, or None before the first one.
        """
        if pose is None or not self.throttle.ready(now):
            return self._result

        self._phase = classify_phase(pose, self.dominant_side)

        s = self._side
        if not self._visible(pose, s["shoulder"], s["elbow"], s["wrist"]):
            self.logger.debug(f"Hitting arm not visible at t={pose.timestamp:.3f}s")
            return self._result

        metrics = self.compute_metrics(pose, self._phase, implement)
        score = similarity_score(metrics)
        self._result = AnalysisResult(metrics, self._phase, score, pose.timestamp)
        self._record(MetricsRecord(pose.timestamp, metrics, self._phase, score))
        return self._result

    def _record(self, record: MetricsRecord) -> None:
        if self._first_timestamp is None:
            self._first_timestamp = record.timestamp
        self._last_timestamp = record.timestamp

        self._history.append(record)
        if len(self._history) > HISTORY_CAPACITY:
            self._history = self._history[-HISTORY_TRIM:]

    def snapshot(self, timestamp: Optional[datetime] = None) -> SessionSnapshot:
        """Build the session snapshot for the persistence sink."""
        result = self._result
        duration = 0.0
        if self._first_timestamp is not None and self._last_timestamp is not None:
            duration = max(0.0, self._last_timestamp - self._first_timestamp)

        return SessionSnapshot(
            timestamp=timestamp or datetime.now(timezone.utc),
            camera_angle=self.camera_angle,
            final_metrics=result.metrics if result else ServeMetrics(),
            final_similarity=result.similarity if result else 0.0,
            final_phase=self._phase,
            metrics_history=self._history[-SNAPSHOT_SAMPLES:],
            duration_estimate=duration,
        )

    def reset(self) -> None:
        """Clear metrics, phase and history (new recording or source)."""
        self._history = []
        self._result = None
        self._phase = ServePhase.PREPARATION
        self._first_timestamp = None
        self._last_timestamp = None
        self.throttle.reset()
