import numpy as np
import pytest

from conftest import build_pose, dark_frame
from serve_analysis.detection.base import DetectionBox, DetectionContext, DetectionTier, TierChain
from serve_analysis.detection.implement import (
    ImplementDetector,
    PixelPatternTier,
    PoseGeometryTier,
)
from serve_analysis.inference.lifecycle import ModelLifecycle
from serve_analysis.pose.base import PoseLandmark
from serve_analysis.utils.video_utils import Frame


class ScriptedTier(DetectionTier):
    """Returns queued results, one per call."""

    def __init__(self, results, name="scripted", min_confidence=0.0):
        self.results = list(results)
        self.name = name
        self.min_confidence = min_confidence
        self.calls = 0

    def detect(self, pixels, timestamp, context):
        self.calls += 1
        result = self.results.pop(0) if self.results else None
        if isinstance(result, Exception):
            raise result
        return result


class BrokenTier(DetectionTier):
    name = "broken"

    def detect(self, pixels, timestamp, context):
        raise RuntimeError("boom")


def box(x, y, confidence=0.8, w=0.1, h=0.2, t=0.0):
    return DetectionBox(x=x, y=y, width=w, height=h, confidence=confidence, timestamp=t, tier="scripted")


def frame(t=0.0):
    return Frame(dark_frame(), t)


class TestPoseGeometryTier:
    def test_extends_dominant_forearm(self):
        tier = PoseGeometryTier("right")
        result = tier.detect(dark_frame(), 1.0, DetectionContext(pose=build_pose()))

        # wrist (0.58, 0.5) + 0.5 * (wrist - elbow (0.57, 0.4))
        assert result.center_x == pytest.approx(0.585)
        assert result.center_y == pytest.approx(0.55)
        assert result.confidence == pytest.approx(0.72)
        assert result.tier == "pose"

    def test_confidence_capped_below_inference(self):
        pose = build_pose(visibility=1.0)
        result = PoseGeometryTier("right").detect(dark_frame(), 0.0, DetectionContext(pose=pose))
        assert result.confidence == pytest.approx(0.75)

    def test_falls_back_to_other_arm(self):
        pose = build_pose({PoseLandmark.RIGHT_WRIST: (0.58, 0.5, 0.2)}, visibility=1.0)
        result = PoseGeometryTier("right").detect(dark_frame(), 0.0, DetectionContext(pose=pose))

        assert result.center_x == pytest.approx(0.415)
        assert result.confidence == pytest.approx(0.6)

    def test_no_visible_arm(self):
        pose = build_pose(visibility=0.3)
        assert PoseGeometryTier("right").detect(dark_frame(), 0.0, DetectionContext(pose=pose)) is None

    def test_no_pose(self):
        assert PoseGeometryTier("right").detect(dark_frame(), 0.0, DetectionContext()) is None

    def test_unknown_side(self):
        with pytest.raises(ValueError):
            PoseGeometryTier("middle")


class TestPixelPatternTier:
    def test_dark_frame_has_no_racket(self):
        assert PixelPatternTier().detect(dark_frame(), 0.0, DetectionContext()) is None

    def test_finds_racket_material(self):
        pixels = dark_frame()
        pixels[100:160, 140:180] = (30, 80, 30)

        result = PixelPatternTier().detect(pixels, 0.0, DetectionContext())

        assert result is not None
        assert result.center_x == pytest.approx(159.5 / 320, abs=0.02)
        assert result.center_y == pytest.approx(129.5 / 240, abs=0.02)
        assert 0.6 <= result.confidence <= 0.95
        assert result.tier == "pattern"

    def test_input_not_modified(self):
        pixels = dark_frame()
        pixels[100:160, 140:180] = (30, 80, 30)
        before = pixels.copy()

        PixelPatternTier().detect(pixels, 0.0, DetectionContext())

        np.testing.assert_array_equal(pixels, before)


class TestTierChain:
    def test_lower_tier_used_when_higher_below_minimum(self):
        high = ScriptedTier([box(0.1, 0.1, confidence=0.4)], name="high", min_confidence=0.5)
        low = ScriptedTier([box(0.6, 0.6, confidence=0.7)], name="low")
        chain = TierChain([high, low])

        result = chain.run(dark_frame(), 0.0, DetectionContext())

        assert result.x == 0.6
        assert chain.active_tier == "low"

    def test_higher_tier_wins(self):
        high = ScriptedTier([box(0.1, 0.1, confidence=0.9)], name="high", min_confidence=0.5)
        low = ScriptedTier([box(0.6, 0.6)], name="low")
        chain = TierChain([high, low])

        chain.run(dark_frame(), 0.0, DetectionContext())

        assert chain.active_tier == "high"
        assert low.calls == 0

    def test_failing_tier_is_skipped(self):
        chain = TierChain([BrokenTier(), ScriptedTier([box(0.3, 0.3)])])
        assert chain.run(dark_frame(), 0.0, DetectionContext()).x == 0.3

    def test_nothing_found(self):
        chain = TierChain([ScriptedTier([None])])
        assert chain.run(dark_frame(), 0.0, DetectionContext()) is None
        assert chain.active_tier is None


class TestImplementDetector:
    def test_default_tiers(self):
        assert [t.name for t in ImplementDetector().chain.tiers] == ["pose", "pattern"]

        lifecycle = ModelLifecycle("racket", lambda path: None)
        detector = ImplementDetector(lifecycle=lifecycle)
        assert [t.name for t in detector.chain.tiers] == ["inference", "pose", "pattern"]

    def test_first_detection_is_raw(self):
        detector = ImplementDetector(min_interval=0, tiers=[ScriptedTier([box(0.2, 0.4)])])
        result = detector.process(frame(), DetectionContext(), now=0.0)

        assert result == box(0.2, 0.4)
        assert detector.active_tier == "scripted"

    def test_smoothing_is_exact_mean(self):
        boxes = [box(0.2, 0.4, 0.8), box(0.4, 0.2, 0.6), box(0.6, 0.3, 0.7), box(0.8, 0.5, 0.9)]
        detector = ImplementDetector(min_interval=0, tiers=[ScriptedTier(boxes)])

        detector.process(frame(0.0), DetectionContext(), now=0.0)
        second = detector.process(frame(0.1), DetectionContext(), now=0.1)
        assert second.x == pytest.approx(0.3)
        assert second.y == pytest.approx(0.3)
        assert second.confidence == pytest.approx(0.7)

        third = detector.process(frame(0.2), DetectionContext(), now=0.2)
        assert third.x == pytest.approx(0.4)
        assert third.confidence == pytest.approx(0.7)

        # capacity 3: the oldest entry drops out
        fourth = detector.process(frame(0.3), DetectionContext(), now=0.3)
        assert fourth.x == pytest.approx(0.6)
        assert fourth.y == pytest.approx((0.2 + 0.3 + 0.5) / 3)
        assert fourth.confidence == pytest.approx((0.6 + 0.7 + 0.9) / 3)

    def test_floor_failure_clears_immediately(self):
        boxes = [box(0.2, 0.2), box(0.3, 0.3), box(0.5, 0.5, confidence=0.3), box(0.9, 0.9)]
        detector = ImplementDetector(min_interval=0, tiers=[ScriptedTier(boxes)])

        detector.process(frame(0.0), DetectionContext(), now=0.0)
        detector.process(frame(0.1), DetectionContext(), now=0.1)
        assert detector.process(frame(0.2), DetectionContext(), now=0.2) is None
        assert len(detector.history) == 0
        assert detector.active_tier is None

        # history restarted: raw detection again
        assert detector.process(frame(0.3), DetectionContext(), now=0.3).x == pytest.approx(0.9)

    def test_missing_detection_clears(self):
        detector = ImplementDetector(min_interval=0, tiers=[ScriptedTier([box(0.2, 0.2), None])])
        detector.process(frame(0.0), DetectionContext(), now=0.0)
        assert detector.process(frame(0.1), DetectionContext(), now=0.1) is None

    def test_throttled_calls_skip_detection(self):
        tier = ScriptedTier([box(0.2, 0.2), box(0.4, 0.4)])
        detector = ImplementDetector(min_interval=0.1, tiers=[tier])

        first = detector.process(frame(0.0), DetectionContext(), now=0.0)
        again = detector.process(frame(0.05), DetectionContext(), now=0.05)

        assert again is first
        assert tier.calls == 1

    def test_invalid_frame_returns_current(self):
        detector = ImplementDetector(min_interval=0, tiers=[ScriptedTier([box(0.2, 0.2)])])
        current = detector.process(frame(), DetectionContext(), now=0.0)

        empty = Frame(np.zeros((0, 0, 3), dtype=np.uint8), 0.1)
        assert detector.process(empty, DetectionContext(), now=0.1) is current

    def test_tier_exception_is_a_miss(self):
        detector = ImplementDetector(min_interval=0, tiers=[BrokenTier()])
        assert detector.process(frame(), DetectionContext(), now=0.0) is None

    def test_pose_tier_end_to_end(self):
        detector = ImplementDetector(min_interval=0)
        result = detector.process(frame(), DetectionContext(pose=build_pose()), now=0.0)

        assert result.tier == "pose"
        assert result.center_x == pytest.approx(0.585)

    def test_reset(self):
        detector = ImplementDetector(min_interval=0, tiers=[ScriptedTier([box(0.2, 0.2)])])
        detector.process(frame(), DetectionContext(), now=0.0)
        detector.reset()

        assert detector.current is None
        assert len(detector.history) == 0
