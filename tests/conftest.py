import sys
from pathlib import Path

import numpy as np
import pytest

# Ensure the repo root is importable when tests are run without installing the package.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from serve_analysis.pose.base import NUM_LANDMARKS, Landmark, Pose, PoseLandmark, PoseSource  # noqa: E402

# Right-handed player standing side-on, racket arm down by the side.
STANDING_POSE = {
    PoseLandmark.NOSE: (0.5, 0.2),
    PoseLandmark.LEFT_SHOULDER: (0.45, 0.3),
    PoseLandmark.RIGHT_SHOULDER: (0.55, 0.3),
    PoseLandmark.LEFT_ELBOW: (0.43, 0.4),
    PoseLandmark.RIGHT_ELBOW: (0.57, 0.4),
    PoseLandmark.LEFT_WRIST: (0.42, 0.5),
    PoseLandmark.RIGHT_WRIST: (0.58, 0.5),
    PoseLandmark.LEFT_HIP: (0.47, 0.55),
    PoseLandmark.RIGHT_HIP: (0.53, 0.55),
    PoseLandmark.LEFT_KNEE: (0.47, 0.7),
    PoseLandmark.RIGHT_KNEE: (0.53, 0.7),
    PoseLandmark.LEFT_ANKLE: (0.47, 0.85),
    PoseLandmark.RIGHT_ANKLE: (0.53, 0.85),
}


def build_pose(overrides=None, visibility=0.9, timestamp=0.0, source=PoseSource.INFERENCE):
    """
    Standing pose with selected landmarks moved.

    overrides maps PoseLandmark to (x, y) or (x, y, visibility).
    """
    points = dict(STANDING_POSE)
    points.update(overrides or {})

    landmarks = []
    for index in range(NUM_LANDMARKS):
        value = points.get(PoseLandmark(index), (0.5, 0.2))
        x, y = value[0], value[1]
        vis = value[2] if len(value) > 2 else visibility
        landmarks.append(Landmark(x=x, y=y, z=0.0, visibility=vis))
    return Pose(landmarks=landmarks, timestamp=timestamp, source=source)


def dark_frame(width=320, height=240, value=10):
    return np.full((height, width, 3), value, dtype=np.uint8)


def ball_frame(width=320, height=240, center=(0.5, 0.3), size=10, color=(220, 230, 40)):
    """Dark frame with a square bright yellow-green patch centered at a normalized position."""
    pixels = dark_frame(width, height)
    x0 = int(round(center[0] * width)) - size // 2
    y0 = int(round(center[1] * height)) - size // 2
    pixels[y0:y0 + size, x0:x0 + size] = color
    return pixels


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def pose_factory():
    return build_pose


@pytest.fixture
def standing_pose():
    return build_pose()


@pytest.fixture
def clock():
    return FakeClock()
