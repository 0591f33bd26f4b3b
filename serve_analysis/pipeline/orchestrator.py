"""Pipeline orchestrator for real-time serve analysis."""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from serve_analysis.analysis.biomechanics import (
    AnalysisResult,
    BiomechanicsAnalyzer,
    CameraAngle,
    SessionSnapshot,
)
from serve_analysis.analysis.summary import summarize_history
from serve_analysis.detection.base import DetectionBox, DetectionContext
from serve_analysis.detection.implement import ImplementDetector
from serve_analysis.detection.projectile import ProjectileDetection, ProjectileDetector
from serve_analysis.inference.lifecycle import ModelLifecycle, ModelState
from serve_analysis.inference.yolo import DEFAULT_INPUT_SIZE, load_yolo_session
from serve_analysis.pose.base import Pose, PoseBackend
from serve_analysis.pose.mediapipe_backend import MediaPipeBackend
from serve_analysis.pose.provider import PoseProvider
from serve_analysis.utils.logging_config import IntervalLogger
from serve_analysis.utils.timing import Throttle
from serve_analysis.utils.video_utils import Frame, FrameSource, VideoFileSource
from serve_analysis.vision.region_estimator import BodyRegion, RegionEstimator

logger = logging.getLogger(__name__)

POSE_BACKENDS = ("mediapipe", "synthetic")
DOMINANT_SIDES = ("right", "left")


@dataclass
class PipelineConfig:
    """
    Configuration for the serve analysis pipeline.

    Detector confidence thresholds are fixed module constants; only model
    locations, class ordering, input size and cadence are configurable.

    Attributes:
        dominant_side: Hitting arm, "right" or "left".
        camera_angle: Recording viewpoint, "front", "side" or "back".
        pose_backend: "mediapipe" for inference, "synthetic" for region-driven poses only.
        pose_model_path: Optional MediaPipe .task model file.
        ball_model_path: Primary ball model (.onnx or .pt).
        ball_fallback_model_path: Tried when the primary ball model fails to load.
        racket_model_path: Primary racket model (.onnx or .pt).
        racket_fallback_model_path: Tried when the primary racket model fails to load.
        ball_class_index: Ball class row in the model output.
        racket_class_index: Racket class row in the model output.
        input_size: Square model input edge in pixels.
        pose_interval: Minimum seconds between pose updates.
        implement_interval: Minimum seconds between implement detection passes.
        projectile_interval: Minimum seconds between projectile detection passes.
        analysis_interval: Minimum seconds between analyzer updates.
        target_fps: Loop cadence for real-time runs.
        model_load_timeout: Seconds a model may take to load before it is treated as failed.
        status_timeout: Seconds without any detection before a status message is shown.
        exhaustive: Run the denser heuristic projectile search (slower, for offline runs).
        database_url: Database connection URL for saved sessions.
    """
    dominant_side: str = "right"
    camera_angle: str = "side"
    pose_backend: str = "mediapipe"
    pose_model_path: Optional[str] = None
    ball_model_path: Optional[str] = None
    ball_fallback_model_path: Optional[str] = None
    racket_model_path: Optional[str] = None
    racket_fallback_model_path: Optional[str] = None
    ball_class_index: int = 0
    racket_class_index: int = 1
    input_size: int = DEFAULT_INPUT_SIZE
    pose_interval: float = 1 / 30
    implement_interval: float = 0.1
    projectile_interval: float = 1 / 15
    analysis_interval: float = 0.05
    target_fps: float = 30.0
    model_load_timeout: Optional[float] = 30.0
    status_timeout: float = 3.0
    exhaustive: bool = False
    database_url: str = "sqlite:///data/serve_sessions.db"

    def __post_init__(self):
        if self.dominant_side not in DOMINANT_SIDES:
            raise ValueError(f"Unknown dominant side: {self.dominant_side}")
        if self.camera_angle not in {a.value for a in CameraAngle}:
            raise ValueError(f"Unknown camera angle: {self.camera_angle}")
        if self.pose_backend not in POSE_BACKENDS:
            raise ValueError(f"Unknown pose backend: {self.pose_backend}")
        if self.input_size <= 0:
            raise ValueError(f"input_size must be positive, got {self.input_size}")
        if self.target_fps <= 0:
            raise ValueError(f"target_fps must be positive, got {self.target_fps}")
        for name in ("pose_interval", "implement_interval", "projectile_interval", "analysis_interval"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "PipelineConfig":
        """
        Build a config from the sections of config.yaml.

        Args:
            config: Parsed YAML dictionary; missing sections and keys keep defaults.

        Returns:
            PipelineConfig instance.
        """
        config = config or {}
        pose = config.get("pose") or {}
        detection = config.get("detection") or {}
        analysis = config.get("analysis") or {}
        pipeline = config.get("pipeline") or {}
        database = config.get("database") or {}

        mapping = {
            "dominant_side": analysis.get("dominant_side"),
            "camera_angle": analysis.get("camera_angle"),
            "analysis_interval": analysis.get("interval"),
            "pose_backend": pose.get("backend"),
            "pose_model_path": pose.get("model_path"),
            "pose_interval": pose.get("interval"),
            "ball_model_path": detection.get("ball_model"),
            "ball_fallback_model_path": detection.get("ball_fallback_model"),
            "racket_model_path": detection.get("racket_model"),
            "racket_fallback_model_path": detection.get("racket_fallback_model"),
            "ball_class_index": detection.get("ball_class"),
            "racket_class_index": detection.get("racket_class"),
            "input_size": detection.get("input_size"),
            "implement_interval": detection.get("implement_interval"),
            "projectile_interval": detection.get("projectile_interval"),
            "model_load_timeout": detection.get("model_load_timeout"),
            "target_fps": pipeline.get("target_fps"),
            "status_timeout": pipeline.get("status_timeout"),
            "exhaustive": detection.get("exhaustive"),
            "database_url": database.get("url"),
        }
        return cls(**{k: v for k, v in mapping.items() if v is not None})


@dataclass
class FrameResult:
    """
    Everything the overlay consumer receives for one processed frame.

    Consumers must treat the contents as read-only.

    Attributes:
        timestamp: Frame presentation timestamp in seconds.
        pose: Current pose, or None.
        implement: Current implement box, or None.
        projectile: Current projectile detection (with trail), or None.
        analysis: Latest metrics, phase and similarity, or None.
        region: Latest body region, or None.
        active_tiers: Tier that produced each entity's current output.
        status: Persistent status message after a sustained absence of detections.
    """
    timestamp: float
    pose: Optional[Pose] = None
    implement: Optional[DetectionBox] = None
    projectile: Optional[ProjectileDetection] = None
    analysis: Optional[AnalysisResult] = None
    region: Optional[BodyRegion] = None
    active_tiers: Dict[str, Optional[str]] = field(default_factory=dict)
    status: Optional[str] = None


class ServeAnalysisPipeline:
    """
    Sequences the per-frame stages of serve analysis.

    Region estimation and pose feed the implement and projectile
    detectors, whose outputs feed the biomechanics analyzer. Each stage
    throttles itself and degrades to "no output" on failure; nothing
    raised inside a stage escapes process_frame.

    Example:
        with ServeAnalysisPipeline(PipelineConfig(pose_backend="synthetic")) as pipeline:
            pipeline.run(VideoFileSource("serve.mp4"), on_result=print)
            snapshot = pipeline.snapshot()
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        pose_backend: Optional[PoseBackend] = None,
        ball_model: Optional[ModelLifecycle] = None,
        racket_model: Optional[ModelLifecycle] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the pipeline.

        Args:
            config: Pipeline configuration. Uses defaults if not provided.
            pose_backend: Override the configured pose backend.
            ball_model: Override the configured ball model lifecycle.
            racket_model: Override the configured racket model lifecycle.
            clock: Monotonic clock shared by every throttle.
        """
        self.config = config or PipelineConfig()
        self.clock = clock
        cfg = self.config

        if pose_backend is None and cfg.pose_backend == "mediapipe":
            pose_backend = MediaPipeBackend(model_path=cfg.pose_model_path)
        self.ball_model = ball_model or self._build_model(
            "ball", cfg.ball_model_path, cfg.ball_fallback_model_path
        )
        self.racket_model = racket_model or self._build_model(
            "racket", cfg.racket_model_path, cfg.racket_fallback_model_path
        )

        self.region_estimator = RegionEstimator()
        self.region_throttle = Throttle(cfg.pose_interval, clock)
        self.pose_provider = PoseProvider(
            backend=pose_backend,
            min_interval=cfg.pose_interval,
            load_timeout=cfg.model_load_timeout,
            clock=clock,
        )
        self.implement_detector = ImplementDetector(
            lifecycle=self.racket_model,
            class_index=cfg.racket_class_index,
            dominant_side=cfg.dominant_side,
            min_interval=cfg.implement_interval,
            clock=clock,
        )
        self.projectile_detector = ProjectileDetector(
            lifecycle=self.ball_model,
            class_index=cfg.ball_class_index,
            min_interval=cfg.projectile_interval,
            clock=clock,
        )
        self.analyzer = BiomechanicsAnalyzer(
            dominant_side=cfg.dominant_side,
            camera_angle=CameraAngle(cfg.camera_angle),
            min_interval=cfg.analysis_interval,
            clock=clock,
        )

        self._region: Optional[BodyRegion] = None
        self._last_output: Optional[float] = None
        self._first_tick: Optional[float] = None
        self._started = False
        self._stop_event = threading.Event()
        self._closed = False
        self._failures = IntervalLogger(logger, clock=clock)

    def _build_model(self, name: str, *paths: Optional[str]) -> Optional[ModelLifecycle]:
        candidates = [p for p in paths if p]
        if not candidates:
            logger.info(f"No {name} model configured, using heuristic tiers")
            return None

        input_size = self.config.input_size
        return ModelLifecycle(
            name=name,
            loader=lambda path: load_yolo_session(path, input_size),
            paths=candidates,
            timeout=self.config.model_load_timeout,
            clock=self.clock,
        )

    @property
    def models(self) -> List[ModelLifecycle]:
        """Every model lifecycle the pipeline owns."""
        models = [self.ball_model, self.racket_model, self.pose_provider.lifecycle]
        return [m for m in models if m is not None]

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    @property
    def region(self) -> Optional[BodyRegion]:
        return self._region

    def start(self) -> None:
        """Begin loading inference capabilities without blocking."""
        if self._started or self.stopped:
            return
        self._started = True
        for model in self.models:
            model.start()
        logger.info("Pipeline started")

    def wait_for_models(self, timeout: Optional[float] = None) -> Dict[str, ModelState]:
        """
        Block until background model loads settle.

        Args:
            timeout: Seconds to wait per model.

        Returns:
            Final state of each model by name.
        """
        return {model.name: model.wait(timeout) for model in self.models}

    def _guard(self, stage: str, func: Callable, *args, **kwargs) -> Any:
        try:
            return func(*args, **kwargs)
        except Exception as e:
            self._failures.warning(stage, f"Stage '{stage}' failed: {e}")
            return None

    def process_frame(self, frame: Optional[Frame], now: Optional[float] = None) -> Optional[FrameResult]:
        """
        Run every stage for one frame.

        Args:
            frame: Frame to analyze.
            now: Clock reading for the stage throttles; read from the clock when omitted.

        Returns:
            FrameResult, or None for invalid frames and after stop().
        """
        if self.stopped:
            return None
        if frame is None or not frame.is_valid:
            logger.debug("Skipping invalid frame")
            return None

        now = self.clock() if now is None else now
        if self._first_tick is None:
            self._first_tick = now

        if self.region_throttle.ready(now):
            self._region = self._guard("region", self.region_estimator.estimate, frame.pixels)
        region = self._region

        pose = self._guard("pose", self.pose_provider.process, frame, region, now)
        context = DetectionContext(pose=pose, region=region, exhaustive=self.config.exhaustive)
        implement = self._guard("implement", self.implement_detector.process, frame, context, now)
        projectile = self._guard("projectile", self.projectile_detector.process, frame, context, now)
        analysis = self._guard("analysis", self.analyzer.process, pose, implement, now)

        if implement is not None or projectile is not None:
            self._last_output = now

        return FrameResult(
            timestamp=frame.timestamp,
            pose=pose,
            implement=implement,
            projectile=projectile,
            analysis=analysis,
            region=region,
            active_tiers=self.active_tiers(pose, implement, projectile),
            status=self._status_message(now),
        )

    def active_tiers(
        self,
        pose: Optional[Pose],
        implement: Optional[DetectionBox],
        projectile: Optional[ProjectileDetection],
    ) -> Dict[str, Optional[str]]:
        """Name of the source behind each entity's current output."""
        return {
            "pose": pose.source.value if pose is not None else None,
            "implement": implement.tier if implement is not None else None,
            "projectile": projectile.tier if projectile is not None else None,
        }

    def _status_message(self, now: float) -> Optional[str]:
        reference = self._last_output if self._last_output is not None else self._first_tick
        idle = now - reference
        if idle > self.config.status_timeout:
            return f"No racket or ball detected for {idle:.0f}s"
        return None

    def run(
        self,
        source: FrameSource,
        on_result: Optional[Callable[[Frame, FrameResult], None]] = None,
        realtime: bool = False,
        show_progress: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ) -> int:
        """
        Drive the pipeline from a frame source until it ends or stop() is called.

        Offline runs analyze every frame with the frame timestamps as the
        throttle clock. Real-time runs pace the loop at target_fps against
        the pipeline clock and skip ticks while the source is paused or not
        ready.

        Args:
            source: Frame source to read from.
            on_result: Called with each frame and its result.
            realtime: Pace against the clock instead of analyzing every frame.
            show_progress: Show a progress bar for offline video files.
            sleep: Sleep function used for pacing.

        Returns:
            Number of frames processed.
        """
        self.start()
        processed = 0

        if not realtime:
            self.wait_for_models(self.config.model_load_timeout)
            if isinstance(source, VideoFileSource):
                frames = source.iterate_frames(show_progress=show_progress)
            else:
                frames = iter(source.read, None)

            for frame in frames:
                if self.stopped:
                    break
                result = self.process_frame(frame, now=frame.timestamp)
                if result is not None:
                    processed += 1
                    if on_result:
                        on_result(frame, result)
            logger.info(f"Processed {processed} frames")
            return processed

        interval = 1.0 / self.config.target_fps
        while not self.stopped and not source.ended:
            tick = self.clock()
            if source.paused or not source.is_ready:
                sleep(interval)
                continue

            frame = source.read()
            result = self.process_frame(frame) if frame is not None else None
            if result is not None:
                processed += 1
                if on_result:
                    on_result(frame, result)

            remaining = interval - (self.clock() - tick)
            if remaining > 0:
                sleep(remaining)

        logger.info(f"Processed {processed} frames")
        return processed

    def stop(self) -> None:
        """
        Stop analysis and release inference sessions.

        Takes effect synchronously: later process_frame calls return None.
        """
        if self.stopped:
            return
        self._stop_event.set()
        for model in self.models:
            model.release()
        logger.info("Pipeline stopped")

    def reset(self) -> None:
        """Clear detector histories, trails and analyzer state (new recording or source)."""
        self.region_throttle.reset()
        self.pose_provider.reset()
        self.implement_detector.reset()
        self.projectile_detector.reset()
        self.analyzer.reset()
        self._region = None
        self._last_output = None
        self._first_tick = None
        logger.debug("Pipeline state reset")

    def snapshot(self) -> SessionSnapshot:
        """Session snapshot for the persistence sink."""
        return self.analyzer.snapshot()

    def summary(self) -> Dict[str, Any]:
        """Summary statistics over the analyzer's metrics history."""
        return summarize_history(self.analyzer.metrics_history)

    def save_session(self, operations, source: Optional[str] = None):
        """
        Save the current session.

        Args:
            operations: SessionOperations bound to a database session.
            source: Video path or camera label.

        Returns:
            The saved ServeSession.
        """
        return operations.save_snapshot(self.snapshot(), source=source)

    def cleanup(self) -> None:
        """Clean up resources."""
        if self._closed:
            return
        self._closed = True
        self.stop()
        logger.debug("Pipeline resources cleaned up")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.cleanup()
        return False
