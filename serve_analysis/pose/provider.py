"""Pose Provider: inference when available, region-driven synthesis otherwise."""

import time
from typing import Callable, Optional

from serve_analysis.inference.lifecycle import ModelLifecycle, ModelState
from serve_analysis.pose.base import Pose, PoseBackend
from serve_analysis.pose.synthetic import synthesize_pose
from serve_analysis.utils.logging_config import IntervalLogger, LoggerMixin
from serve_analysis.utils.timing import Throttle
from serve_analysis.utils.video_utils import Frame
from serve_analysis.vision.region_estimator import BodyRegion


class PoseProvider(LoggerMixin):
    """
    Supplies one Pose per processed frame.

    The inference backend is initialized in the background; until it is
    ready (or for good, if it fails) poses are synthesized from the most
    recent body region. Calls faster than the throttle return the last
    pose unchanged.
    """

    def __init__(
        self,
        backend: Optional[PoseBackend] = None,
        min_interval: float = 1 / 30,
        load_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            backend: Optional pose inference backend.
            min_interval: Minimum seconds between pose updates.
            load_timeout: Seconds the backend may take to initialize.
            clock: Monotonic clock for throttling.
        """
        self.backend = backend
        self.throttle = Throttle(min_interval, clock)
        self.lifecycle: Optional[ModelLifecycle] = None
        if backend is not None:
            self.lifecycle = ModelLifecycle(
                name=f"pose-{backend.name}",
                loader=self._initialize_backend,
                timeout=load_timeout,
                releaser=lambda b: b.cleanup(),
                clock=clock,
            )
        self.failures = IntervalLogger(self.logger, clock=clock)
        self._last_pose: Optional[Pose] = None

    def _initialize_backend(self, _path: Optional[str]) -> PoseBackend:
        self.backend.initialize()
        return self.backend

    @property
    def state(self) -> ModelState:
        return self.lifecycle.state if self.lifecycle else ModelState.FAILED

    @property
    def last_pose(self) -> Optional[Pose]:
        return self._last_pose

    def start(self) -> None:
        """Begin backend initialization without blocking."""
        if self.lifecycle is not None:
            self.lifecycle.start()

    def process(
        self,
        frame: Frame,
        region: Optional[BodyRegion],
        now: Optional[float] = None,
    ) -> Optional[Pose]:
        """
        Produce the pose for a frame.

        Args:
            frame: Current frame.
            region: Most recent body region, if any.
            now: Clock reading; read from the clock when omitted.

        Returns:
            Inferred pose, synthetic pose, or None when neither is possible.
        """
        if not self.throttle.ready(now):
            return self._last_pose

        pose = None
        backend = self.lifecycle.session if self.lifecycle else None
        if backend is not None:
            try:
                pose = backend.process_frame(frame.pixels, frame.timestamp)
            except Exception as e:
                self.failures.warning("inference", f"Pose inference failed at t={frame.timestamp:.3f}s: {e}")

        if pose is None and region is not None:
            pose = synthesize_pose(region, frame.timestamp)

        self._last_pose = pose
        return pose

    def reset(self) -> None:
        self._last_pose = None
        self.throttle.reset()

    def close(self) -> None:
        if self.lifecycle is not None:
            self.lifecycle.release()
