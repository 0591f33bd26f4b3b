"""
Region-driven pose synthesis.

Used when no pose inference is available so downstream consumers keep
working. The skeleton is laid out from the body region's geometry and
keypoints, with a slow periodic oscillation of the limbs driven by the
playback time. Synthetic landmarks carry reduced visibility and the
SYNTHETIC source tag; they are never ground truth.
"""

import math
from typing import List, Tuple

from serve_analysis.pose.base import Landmark, Pose, PoseSource
from serve_analysis.vision.region_estimator import BodyRegion

MOTION_PERIOD = 3.0
ARM_AMPLITUDE = 0.1
LEG_AMPLITUDE = 0.05
SYNTHETIC_VISIBILITY_SCALE = 0.7

# (dx, dy, visibility) relative to the head, in region-size units
_FACE = (
    (0.0, 0.0, 0.95),     # nose
    (-0.02, -0.02, 0.9),  # left eye inner
    (-0.03, -0.02, 0.9),
    (-0.04, -0.02, 0.85),
    (0.02, -0.02, 0.9),   # right eye inner
    (0.03, -0.02, 0.9),
    (0.04, -0.02, 0.85),
    (-0.05, 0.0, 0.8),    # left ear
    (0.05, 0.0, 0.8),
    (-0.015, 0.02, 0.85),  # mouth
    (0.015, 0.02, 0.85),
)


def motion_offsets(timestamp: float) -> Tuple[float, float]:
    """Arm and leg oscillation offsets for a playback time."""
    phase = (timestamp % MOTION_PERIOD) * 2 * math.pi / MOTION_PERIOD
    return math.sin(phase) * ARM_AMPLITUDE, math.cos(phase) * LEG_AMPLITUDE


def synthesize_pose(region: BodyRegion, timestamp: float) -> Pose:
    """
    Build a 33-landmark pose from a body region.

    Deterministic in (region, timestamp).

    Args:
        region: Body region in normalized coordinates.
        timestamp: Playback time in seconds.

    Returns:
        Pose tagged PoseSource.SYNTHETIC.
    """
    cx, cy = region.center_x, region.center_y
    w, h = region.width, region.height

    head = region.keypoint("head")
    left_sh = region.keypoint("left_shoulder")
    right_sh = region.keypoint("right_shoulder")

    head_y = head.y if head else cy - h * 0.4
    shoulder_y = left_sh.y if left_sh else cy - h * 0.25
    lsx = left_sh.x if left_sh else cx - w * 0.18
    rsx = right_sh.x if right_sh else cx + w * 0.18

    arm, leg = motion_offsets(timestamp)

    points: List[Tuple[float, float, float]] = [
        (cx + dx * w, head_y + dy * h, vis) for dx, dy, vis in _FACE
    ]
    points += [
        (lsx, shoulder_y, 0.98),
        (rsx, shoulder_y, 0.98),
        (lsx - w * 0.12, shoulder_y + h * 0.15 + arm, 0.95),
        (rsx + w * 0.12 + arm, shoulder_y + h * 0.15, 0.95),
        (lsx - w * 0.2, shoulder_y + h * 0.25 + arm, 0.9),
        (rsx + w * 0.2 + arm * 2, shoulder_y + h * 0.25, 0.9),
        # pinky, index, thumb alternate left/right
        (lsx - w * 0.22, shoulder_y + h * 0.27 + arm, 0.8),
        (rsx + w * 0.22 + arm * 2, shoulder_y + h * 0.27, 0.8),
        (lsx - w * 0.21, shoulder_y + h * 0.26 + arm, 0.8),
        (rsx + w * 0.21 + arm * 2, shoulder_y + h * 0.26, 0.8),
        (lsx - w * 0.23, shoulder_y + h * 0.25 + arm, 0.8),
        (rsx + w * 0.23 + arm * 2, shoulder_y + h * 0.25, 0.8),
        (cx - w * 0.1, cy + h * 0.1, 0.95),
        (cx + w * 0.1, cy + h * 0.1, 0.95),
        (cx - w * 0.12, cy + h * 0.3 + leg, 0.9),
        (cx + w * 0.12, cy + h * 0.3 - leg, 0.9),
        (cx - w * 0.14, cy + h * 0.45 + leg, 0.85),
        (cx + w * 0.14, cy + h * 0.45 - leg, 0.85),
        (cx - w * 0.15, cy + h * 0.47 + leg, 0.8),
        (cx + w * 0.15, cy + h * 0.47 - leg, 0.8),
        (cx - w * 0.13, cy + h * 0.48 + leg, 0.8),
        (cx + w * 0.13, cy + h * 0.48 - leg, 0.8),
    ]

    landmarks = [
        Landmark(x=x, y=y, z=0.0, visibility=vis * SYNTHETIC_VISIBILITY_SCALE)
        for x, y, vis in points
    ]
    return Pose(landmarks=landmarks, timestamp=timestamp, source=PoseSource.SYNTHETIC)
