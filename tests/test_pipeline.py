import pytest
import yaml

from conftest import ROOT, FakeClock, ball_frame, dark_frame
from serve_analysis.analysis.biomechanics import SessionSnapshot
from serve_analysis.inference.lifecycle import ModelLifecycle, ModelState
from serve_analysis.pipeline.orchestrator import FrameResult, PipelineConfig, ServeAnalysisPipeline
from serve_analysis.utils.timing import Throttle
from serve_analysis.utils.video_utils import Frame, SequenceFrameSource


def athlete_frame():
    pixels = dark_frame()
    pixels[40:70, 145:175] = (200, 150, 120)
    pixels[70:150, 140:180] = (250, 250, 250)
    return pixels


class FakeSession:
    def detect_best(self, frame_rgb, class_index, threshold):
        return None


class RecordingOperations:
    def __init__(self):
        self.saved = []

    def save_snapshot(self, snapshot, source=None):
        self.saved.append((snapshot, source))
        return snapshot


@pytest.fixture
def config():
    return PipelineConfig(pose_backend="synthetic")


@pytest.fixture
def pipeline(config):
    with ServeAnalysisPipeline(config, clock=FakeClock()) as p:
        yield p


class TestPipelineConfig:
    def test_defaults(self):
        config = PipelineConfig()
        assert config.dominant_side == "right"
        assert config.camera_angle == "side"
        assert config.target_fps == 30.0

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"dominant_side": "up"},
            {"camera_angle": "overhead"},
            {"pose_backend": "openpose"},
            {"target_fps": 0},
            {"implement_interval": -1},
        ],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            PipelineConfig(**kwargs)

    def test_from_dict(self):
        config = PipelineConfig.from_dict({
            "analysis": {"dominant_side": "left", "camera_angle": "front"},
            "pose": {"backend": "synthetic", "model_path": None},
            "detection": {"ball_model": "models/ball.onnx", "racket_class": 2, "input_size": 640},
            "pipeline": {"target_fps": 15},
            "database": {"url": "sqlite:///:memory:"},
        })

        assert config.dominant_side == "left"
        assert config.camera_angle == "front"
        assert config.pose_backend == "synthetic"
        assert config.pose_model_path is None
        assert config.ball_model_path == "models/ball.onnx"
        assert config.racket_class_index == 2
        assert config.input_size == 640
        assert config.target_fps == 15
        assert config.database_url == "sqlite:///:memory:"

    def test_exhaustive_from_dict(self):
        assert PipelineConfig.from_dict({"detection": {"exhaustive": True}}).exhaustive
        assert not PipelineConfig().exhaustive

    def test_shipped_intervals_keep_up_with_30fps(self):
        with open(ROOT / "config" / "config.yaml") as f:
            config = PipelineConfig.from_dict(yaml.safe_load(f))

        for interval, expected in [(config.pose_interval, 300), (config.projectile_interval, 150)]:
            throttle = Throttle(interval)
            assert sum(throttle.ready(i / 30) for i in range(300)) == expected

    def test_from_empty_dict(self):
        assert PipelineConfig.from_dict({}) == PipelineConfig()
        assert PipelineConfig.from_dict(None) == PipelineConfig()


class TestProcessFrame:
    def test_dark_frame_has_no_detections(self, pipeline):
        result = pipeline.process_frame(Frame(dark_frame(), 0.0), now=0.0)

        assert isinstance(result, FrameResult)
        assert result.pose is None
        assert result.implement is None
        assert result.projectile is None

    def test_exhaustive_reaches_detectors(self, monkeypatch):
        contexts = []

        def record(frame, context, now):
            contexts.append(context)
            return None

        with ServeAnalysisPipeline(PipelineConfig(pose_backend="synthetic", exhaustive=True), clock=FakeClock()) as p:
            monkeypatch.setattr(p.projectile_detector, "process", record)
            result = p.process_frame(Frame(ball_frame(), 0.0), now=0.0)

        assert contexts[0].exhaustive
        assert result.analysis is None
        assert result.active_tiers == {"pose": None, "implement": None, "projectile": None}
        assert result.status is None

    def test_ball_is_tracked(self, pipeline):
        result = pipeline.process_frame(Frame(ball_frame(), 0.0), now=0.0)

        assert result.projectile is not None
        assert result.projectile.x == pytest.approx(0.5, abs=0.01)
        assert result.active_tiers["projectile"] == "color"

    def test_synthetic_pose_from_region(self, pipeline):
        result = pipeline.process_frame(Frame(athlete_frame(), 0.0), now=0.0)

        assert result.region is not None
        assert result.pose is not None
        assert result.pose.is_synthetic
        assert result.active_tiers["pose"] == "synthetic"

    def test_invalid_frame(self, pipeline):
        assert pipeline.process_frame(None) is None

    def test_status_after_sustained_absence(self, pipeline):
        assert pipeline.process_frame(Frame(dark_frame(), 0.0), now=0.0).status is None
        assert pipeline.process_frame(Frame(dark_frame(), 2.0), now=2.0).status is None

        result = pipeline.process_frame(Frame(dark_frame(), 4.0), now=4.0)
        assert result.status == "No racket or ball detected for 4s"

        assert pipeline.process_frame(Frame(ball_frame(), 4.2), now=4.2).status is None

    def test_failing_stage_is_contained(self, pipeline, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(pipeline.projectile_detector, "process", broken)
        result = pipeline.process_frame(Frame(ball_frame(), 0.0), now=0.0)

        assert result is not None
        assert result.projectile is None

    def test_reset(self, pipeline):
        pipeline.process_frame(Frame(athlete_frame(), 0.0), now=0.0)
        pipeline.reset()

        assert pipeline.region is None
        assert pipeline.pose_provider.last_pose is None
        assert pipeline.projectile_detector.current is None


class TestRun:
    def test_offline_processes_every_frame(self, pipeline):
        frames = [Frame(ball_frame(), i / 30) for i in range(5)]
        seen = []

        processed = pipeline.run(SequenceFrameSource(frames), on_result=lambda f, r: seen.append(r))

        assert processed == 5
        assert [r.timestamp for r in seen] == pytest.approx([i / 30 for i in range(5)])
        assert all(r.projectile is not None for r in seen)

    def test_offline_pose_updates_on_every_frame(self, pipeline):
        frames = [Frame(athlete_frame(), i / 30) for i in range(12)]
        seen = []

        pipeline.run(SequenceFrameSource(frames), on_result=lambda f, r: seen.append(r))

        assert [r.pose.timestamp for r in seen] == pytest.approx([i / 30 for i in range(12)])

    def test_stop_during_run(self, pipeline):
        frames = [Frame(dark_frame(), i / 30) for i in range(10)]

        def on_result(frame, result):
            if frame.timestamp >= 2 / 30:
                pipeline.stop()

        assert pipeline.run(SequenceFrameSource(frames), on_result=on_result) == 3
        assert pipeline.stopped

    def test_realtime_paces_against_clock(self, config):
        clock = FakeClock()
        sleeps = []

        def sleep(seconds):
            sleeps.append(seconds)
            clock.advance(seconds)

        frames = [Frame(dark_frame(), i / 30) for i in range(4)]
        with ServeAnalysisPipeline(config, clock=clock) as pipeline:
            processed = pipeline.run(SequenceFrameSource(frames), realtime=True, sleep=sleep)

        assert processed == 4
        assert sleeps == pytest.approx([1 / 30] * 4)

    def test_realtime_waits_while_paused(self, config):
        clock = FakeClock()
        source = SequenceFrameSource([Frame(dark_frame(), 0.0)])
        source.pause()
        calls = []

        def sleep(seconds):
            calls.append(seconds)
            clock.advance(seconds)
            if len(calls) == 3:
                source.play()

        with ServeAnalysisPipeline(config, clock=clock) as pipeline:
            assert pipeline.run(source, realtime=True, sleep=sleep) == 1
        assert len(calls) == 4


class TestLifecycle:
    def make_model(self, released):
        return ModelLifecycle(
            name="ball",
            loader=lambda path: FakeSession(),
            releaser=released.append,
        )

    def test_stop_releases_models_once(self, config):
        released = []
        pipeline = ServeAnalysisPipeline(config, ball_model=self.make_model(released), clock=FakeClock())
        pipeline.start()
        assert pipeline.wait_for_models(5.0) == {"ball": ModelState.READY}

        pipeline.stop()
        pipeline.stop()
        pipeline.cleanup()

        assert len(released) == 1
        assert pipeline.process_frame(Frame(dark_frame(), 0.0)) is None

    def test_inference_tier_first(self, config):
        pipeline = ServeAnalysisPipeline(config, ball_model=self.make_model([]), clock=FakeClock())
        names = [t.name for t in pipeline.projectile_detector.chain.tiers]
        assert names == ["inference", "color", "brightest"]
        pipeline.cleanup()

    def test_mediapipe_backend_by_default(self):
        pipeline = ServeAnalysisPipeline(PipelineConfig(), clock=FakeClock())
        try:
            assert pipeline.pose_provider.backend.name == "mediapipe"
            assert [m.name for m in pipeline.models] == ["pose-mediapipe"]
            assert pipeline.models[0].state == ModelState.UNLOADED
        finally:
            pipeline.cleanup()

    def test_no_models_configured(self, pipeline):
        assert pipeline.models == []

    def test_context_manager_stops(self, config):
        with ServeAnalysisPipeline(config, clock=FakeClock()) as pipeline:
            assert not pipeline.stopped
        assert pipeline.stopped


class TestSession:
    def test_snapshot_and_summary(self, pipeline):
        snapshot = pipeline.snapshot()
        assert isinstance(snapshot, SessionSnapshot)
        assert pipeline.summary()["samples"] == 0

    def test_save_session(self, pipeline):
        ops = RecordingOperations()
        pipeline.save_session(ops, source="serve.mp4")

        snapshot, source = ops.saved[0]
        assert source == "serve.mp4"
        assert snapshot.camera_angle.value == "side"
