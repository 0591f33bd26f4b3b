"""Overlay rendering of per-frame analysis results."""

import logging
from typing import Optional, Tuple

import cv2
import numpy as np

from serve_analysis.detection.base import DetectionBox
from serve_analysis.detection.projectile import ProjectileDetection
from serve_analysis.pipeline.orchestrator import FrameResult
from serve_analysis.pose.base import Pose, PoseLandmark

logger = logging.getLogger(__name__)

SKELETON_CONNECTIONS = [
    (PoseLandmark.LEFT_SHOULDER, PoseLandmark.RIGHT_SHOULDER),
    (PoseLandmark.LEFT_SHOULDER, PoseLandmark.LEFT_ELBOW),
    (PoseLandmark.LEFT_ELBOW, PoseLandmark.LEFT_WRIST),
    (PoseLandmark.RIGHT_SHOULDER, PoseLandmark.RIGHT_ELBOW),
    (PoseLandmark.RIGHT_ELBOW, PoseLandmark.RIGHT_WRIST),
    (PoseLandmark.LEFT_SHOULDER, PoseLandmark.LEFT_HIP),
    (PoseLandmark.RIGHT_SHOULDER, PoseLandmark.RIGHT_HIP),
    (PoseLandmark.LEFT_HIP, PoseLandmark.RIGHT_HIP),
    (PoseLandmark.LEFT_HIP, PoseLandmark.LEFT_KNEE),
    (PoseLandmark.LEFT_KNEE, PoseLandmark.LEFT_ANKLE),
    (PoseLandmark.RIGHT_HIP, PoseLandmark.RIGHT_KNEE),
    (PoseLandmark.RIGHT_KNEE, PoseLandmark.RIGHT_ANKLE),
    (PoseLandmark.NOSE, PoseLandmark.LEFT_SHOULDER),
    (PoseLandmark.NOSE, PoseLandmark.RIGHT_SHOULDER),
]

# BGR
COLORS = {
    "pose": (0, 255, 0),
    "synthetic_pose": (0, 200, 255),
    "implement": (255, 0, 255),
    "projectile": (0, 255, 255),
    "trail": (0, 165, 255),
    "text": (255, 255, 255),
    "status": (0, 0, 255),
}


class OverlayRenderer:
    """
    Draws pose, implement, projectile and metrics onto a copy of a frame.

    Inputs are never mutated; the caller gets a new BGR image.
    """

    def __init__(self, min_visibility: float = 0.3, font_scale: float = 0.5):
        """
        Args:
            min_visibility: Landmarks at or below this visibility are not drawn.
            font_scale: OpenCV font scale for the text panel.
        """
        self.min_visibility = min_visibility
        self.font_scale = font_scale

    def draw(self, frame_bgr: np.ndarray, result: Optional[FrameResult]) -> np.ndarray:
        """
        Render a frame result.

        Args:
            frame_bgr: Input frame (BGR format).
            result: Pipeline result for the frame, or None.

        Returns:
            Annotated copy of the frame.
        """
        output = frame_bgr.copy()
        if result is None:
            return output

        if result.pose is not None:
            self.draw_pose(output, result.pose)
        if result.implement is not None:
            self.draw_implement(output, result.implement)
        if result.projectile is not None:
            self.draw_projectile(output, result.projectile)
        self.draw_panel(output, result)
        return output

    def _point(self, canvas: np.ndarray, x: float, y: float) -> Tuple[int, int]:
        height, width = canvas.shape[:2]
        return int(round(x * width)), int(round(y * height))

    def draw_pose(self, canvas: np.ndarray, pose: Pose) -> None:
        color = COLORS["synthetic_pose"] if pose.is_synthetic else COLORS["pose"]

        for start, end in SKELETON_CONNECTIONS:
            a, b = pose[start], pose[end]
            if a.visibility > self.min_visibility and b.visibility > self.min_visibility:
                cv2.line(canvas, self._point(canvas, a.x, a.y), self._point(canvas, b.x, b.y), color, 2)

        for landmark in pose.landmarks:
            if landmark.visibility > self.min_visibility:
                cv2.circle(canvas, self._point(canvas, landmark.x, landmark.y), 4, color, -1)

    def draw_implement(self, canvas: np.ndarray, box: DetectionBox) -> None:
        color = COLORS["implement"]
        top_left = self._point(canvas, box.x, box.y)
        bottom_right = self._point(canvas, box.x + box.width, box.y + box.height)
        cv2.rectangle(canvas, top_left, bottom_right, color, 2)
        cv2.putText(
            canvas,
            f"racket {box.confidence:.2f}",
            (top_left[0], max(12, top_left[1] - 5)),
            cv2.FONT_HERSHEY_SIMPLEX,
            self.font_scale,
            color,
            1,
        )

    def draw_projectile(self, canvas: np.ndarray, detection: ProjectileDetection) -> None:
        trail = [self._point(canvas, p.x, p.y) for p in detection.trail]
        for start, end in zip(trail, trail[1:]):
            cv2.line(canvas, start, end, COLORS["trail"], 2)

        center = self._point(canvas, detection.x, detection.y)
        radius = max(4, int(detection.width * canvas.shape[1] / 2))
        cv2.circle(canvas, center, radius, COLORS["projectile"], 2)
        cv2.circle(canvas, center, 2, COLORS["projectile"], -1)

    def draw_panel(self, canvas: np.ndarray, result: FrameResult) -> None:
        lines = []
        if result.analysis is not None:
            metrics = result.analysis.metrics
            lines += [
                f"Phase: {result.analysis.phase.value}",
                f"Similarity: {result.analysis.similarity:.0f}",
                f"Elbow {metrics.elbow_angle:.0f}  Knee {metrics.knee_angle:.0f}  X {metrics.x_factor:.0f}",
            ]
        tiers = ", ".join(f"{k}: {v}" for k, v in result.active_tiers.items() if v)
        if tiers:
            lines.append(tiers)

        y = 20
        for line in lines:
            cv2.putText(canvas, line, (10, y), cv2.FONT_HERSHEY_SIMPLEX, self.font_scale, COLORS["text"], 1)
            y += 20

        if result.status:
            cv2.putText(
                canvas,
                result.status,
                (10, canvas.shape[0] - 15),
                cv2.FONT_HERSHEY_SIMPLEX,
                self.font_scale,
                COLORS["status"],
                1,
            )
