"""Pose data types and the abstract base class for pose inference backends."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)

NUM_LANDMARKS = 33


class PoseLandmark(IntEnum):
    """Fixed anatomical meaning of each of the 33 landmark slots."""
    NOSE = 0
    LEFT_EYE_INNER = 1
    LEFT_EYE = 2
    LEFT_EYE_OUTER = 3
    RIGHT_EYE_INNER = 4
    RIGHT_EYE = 5
    RIGHT_EYE_OUTER = 6
    LEFT_EAR = 7
    RIGHT_EAR = 8
    MOUTH_LEFT = 9
    MOUTH_RIGHT = 10
    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_ELBOW = 13
    RIGHT_ELBOW = 14
    LEFT_WRIST = 15
    RIGHT_WRIST = 16
    LEFT_PINKY = 17
    RIGHT_PINKY = 18
    LEFT_INDEX = 19
    RIGHT_INDEX = 20
    LEFT_THUMB = 21
    RIGHT_THUMB = 22
    LEFT_HIP = 23
    RIGHT_HIP = 24
    LEFT_KNEE = 25
    RIGHT_KNEE = 26
    LEFT_ANKLE = 27
    RIGHT_ANKLE = 28
    LEFT_HEEL = 29
    RIGHT_HEEL = 30
    LEFT_FOOT_INDEX = 31
    RIGHT_FOOT_INDEX = 32


class PoseSource(str, Enum):
    """Provenance of a pose."""
    INFERENCE = "inference"
    SYNTHETIC = "synthetic"


@dataclass(frozen=True)
class Landmark:
    """
    A single estimated anatomical point.

    Attributes:
        x: X coordinate, normalized 0-1.
        y: Y coordinate, normalized 0-1 (grows downward).
        z: Relative depth (0 for 2D sources).
        visibility: Confidence the point is visible (0-1).
    """
    x: float
    y: float
    z: float = 0.0
    visibility: float = 1.0

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "z": self.z, "visibility": self.visibility}


@dataclass(frozen=True)
class Pose:
    """
    The full ordered set of landmarks for one frame.

    Poses are replaced, never mutated; a new frame produces a new Pose.

    Attributes:
        landmarks: Exactly NUM_LANDMARKS landmarks indexed by PoseLandmark.
        timestamp: Frame timestamp in seconds.
        source: Whether the landmarks came from inference or synthesis.
    """
    landmarks: Sequence[Landmark]
    timestamp: float = 0.0
    source: PoseSource = PoseSource.INFERENCE

    def __post_init__(self):
        if len(self.landmarks) != NUM_LANDMARKS:
            raise ValueError(f"Pose needs {NUM_LANDMARKS} landmarks, got {len(self.landmarks)}")
        object.__setattr__(self, "landmarks", tuple(self.landmarks))

    def __getitem__(self, index: int) -> Landmark:
        return self.landmarks[int(index)]

    @property
    def is_synthetic(self) -> bool:
        return self.source == PoseSource.SYNTHETIC

    def is_visible(self, index: int, threshold: float = 0.5) -> bool:
        """Whether a landmark's visibility exceeds the threshold."""
        return self.landmarks[int(index)].visibility > threshold

    def to_array(self) -> np.ndarray:
        """
        Get all landmarks as a numpy array.

        Returns:
            Array of shape (33, 4) with [x, y, z, visibility] per landmark.
        """
        return np.array([[lm.x, lm.y, lm.z, lm.visibility] for lm in self.landmarks])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "source": self.source.value,
            "landmarks": [lm.to_dict() for lm in self.landmarks],
        }

    @classmethod
    def from_array(
        cls,
        values: np.ndarray,
        timestamp: float = 0.0,
        source: PoseSource = PoseSource.INFERENCE,
    ) -> "Pose":
        """Build a pose from an (33, 4) array of [x, y, z, visibility]."""
        landmarks = [Landmark(float(x), float(y), float(z), float(v)) for x, y, z, v in values]
        return cls(landmarks=landmarks, timestamp=timestamp, source=source)


class PoseBackend(ABC):
    """
    Abstract base class for pose inference backends.

    Backends are treated as a black box returning 33 normalized landmarks
    with visibility, or None when no person is found.
    """

    def __init__(
        self,
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
    ):
        """
        Initialize the pose backend.

        Args:
            min_detection_confidence: Minimum confidence for pose detection.
            min_tracking_confidence: Minimum confidence for pose tracking.
        """
        self.min_detection_confidence = min_detection_confidence
        self.min_tracking_confidence = min_tracking_confidence
        self._is_initialized = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Name of the pose estimation backend."""
        pass

    @property
    def is_initialized(self) -> bool:
        return self._is_initialized

    @abstractmethod
    def initialize(self) -> None:
        """
        Initialize the pose estimation model.

        This should be called before processing any frames.
        """
        pass

    @abstractmethod
    def process_frame(self, frame: np.ndarray, timestamp: float = 0.0) -> Optional[Pose]:
        """
        Estimate the pose in a single frame.

        Args:
            frame: Input frame (RGB).
            timestamp: Frame timestamp in seconds.

        Returns:
            Pose, or None if no person was detected.
        """
        pass

    def cleanup(self) -> None:
        """
        Clean up resources.

        Override this method to release any resources held by the backend.
        """
        self._is_initialized = False

    def __enter__(self):
        """Context manager entry."""
        self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.cleanup()
        return False


def landmark_names() -> List[str]:
    """Lower-case landmark names in slot order."""
    return [lm.name.lower() for lm in PoseLandmark]
