"""MediaPipe Pose backend using the Tasks API."""

import logging
from typing import Optional

import numpy as np

from serve_analysis.pose.base import NUM_LANDMARKS, Landmark, Pose, PoseBackend, PoseSource

logger = logging.getLogger(__name__)

MODEL_URLS = {
    0: "https://storage.googleapis.com/mediapipe-models/pose_landmarker/pose_landmarker_lite/float16/1/pose_landmarker_lite.task",
    1: "https://storage.googleapis.com/mediapipe-models/pose_landmarker/pose_landmarker_full/float16/1/pose_landmarker_full.task",
    2: "https://storage.googleapis.com/mediapipe-models/pose_landmarker/pose_landmarker_heavy/float16/1/pose_landmarker_heavy.task",
}


class MediaPipeBackend(PoseBackend):
    """
    MediaPipe Pose Landmarker backend.

    Produces the 33 MediaPipe body landmarks in normalized image
    coordinates, which is the landmark layout the rest of the system uses.
    """

    def __init__(
        self,
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
        model_complexity: int = 1,
        model_path: Optional[str] = None,
    ):
        """
        Initialize the MediaPipe backend.

        Args:
            min_detection_confidence: Minimum confidence for pose detection.
            min_tracking_confidence: Minimum confidence for pose tracking.
            model_complexity: Model complexity (0=lite, 1=full, 2=heavy).
            model_path: Local .task file; downloaded to the cache when omitted.
        """
        super().__init__(min_detection_confidence, min_tracking_confidence)
        self.model_complexity = model_complexity
        self.model_path = model_path
        self._landmarker = None
        self._mp = None

    @property
    def name(self) -> str:
        return "mediapipe"

    def initialize(self) -> None:
        """Initialize the MediaPipe Pose Landmarker."""
        if self._is_initialized:
            return

        try:
            import mediapipe as mp
            from mediapipe.tasks import python
            from mediapipe.tasks.python import vision
        except ImportError as e:
            raise ImportError(
                f"mediapipe package error: {e}. "
                "Install with: pip install mediapipe"
            )

        self._mp = mp
        base_options = python.BaseOptions(model_asset_path=self.model_path or self._get_model_path())
        options = vision.PoseLandmarkerOptions(
            base_options=base_options,
            running_mode=vision.RunningMode.IMAGE,
            num_poses=1,
            min_pose_detection_confidence=self.min_detection_confidence,
            min_tracking_confidence=self.min_tracking_confidence,
            output_segmentation_masks=False,
        )

        self._landmarker = vision.PoseLandmarker.create_from_options(options)
        self._is_initialized = True
        logger.info("MediaPipe Pose Landmarker initialized successfully")

    def _get_model_path(self) -> str:
        """Download and return path to the pose landmarker model."""
        import urllib.request
        from pathlib import Path

        cache_dir = Path.home() / ".cache" / "mediapipe"
        cache_dir.mkdir(parents=True, exist_ok=True)

        url = MODEL_URLS.get(self.model_complexity, MODEL_URLS[1])
        model_path = cache_dir / url.rsplit("/", 1)[-1]

        if not model_path.exists():
            logger.info(f"Downloading MediaPipe model from {url}...")
            urllib.request.urlretrieve(url, model_path)
            logger.info(f"Model downloaded to {model_path}")

        return str(model_path)

    def process_frame(self, frame: np.ndarray, timestamp: float = 0.0) -> Optional[Pose]:
        """
        Estimate the pose in an RGB frame.

        Args:
            frame: Input frame (RGB, uint8).
            timestamp: Frame timestamp in seconds.

        Returns:
            Pose with normalized landmarks, or None if nobody was detected.
        """
        if not self._is_initialized:
            self.initialize()

        mp_image = self._mp.Image(
            image_format=self._mp.ImageFormat.SRGB,
            data=np.ascontiguousarray(frame[:, :, :3]),
        )
        detection_result = self._landmarker.detect(mp_image)

        if not detection_result.pose_landmarks:
            logger.debug(f"No pose detected at t={timestamp:.3f}s")
            return None

        raw = detection_result.pose_landmarks[0]
        if len(raw) < NUM_LANDMARKS:
            logger.warning(f"MediaPipe returned {len(raw)} landmarks, expected {NUM_LANDMARKS}")
            return None

        landmarks = [
            Landmark(
                x=float(lm.x),
                y=float(lm.y),
                z=float(lm.z),
                visibility=float(getattr(lm, "visibility", 1.0) or 0.0),
            )
            for lm in raw[:NUM_LANDMARKS]
        ]
        return Pose(landmarks=landmarks, timestamp=timestamp, source=PoseSource.INFERENCE)

    def cleanup(self) -> None:
        """Clean up MediaPipe resources."""
        if self._landmarker is not None:
            self._landmarker.close()
            self._landmarker = None
        self._is_initialized = False
        logger.debug("MediaPipe Pose Landmarker resources cleaned up")
