"""Pose estimation with a pluggable inference backend and a synthetic fallback."""

from serve_analysis.pose.base import (
    NUM_LANDMARKS,
    Landmark,
    Pose,
    PoseBackend,
    PoseLandmark,
    PoseSource,
)
from serve_analysis.pose.mediapipe_backend import MediaPipeBackend
from serve_analysis.pose.provider import PoseProvider
from serve_analysis.pose.synthetic import synthesize_pose

__all__ = [
    "NUM_LANDMARKS",
    "Landmark",
    "Pose",
    "PoseBackend",
    "PoseLandmark",
    "PoseSource",
    "MediaPipeBackend",
    "PoseProvider",
    "synthesize_pose",
]
