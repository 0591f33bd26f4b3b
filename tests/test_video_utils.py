import numpy as np
import pytest

from conftest import FakeClock, dark_frame
from serve_analysis.utils.timing import Throttle
from serve_analysis.utils.video_utils import Frame, ProcessingBuffer, SequenceFrameSource


class TestFrame:
    def test_valid(self):
        frame = Frame(dark_frame(), 0.5)
        assert frame.is_valid
        assert (frame.width, frame.height) == (320, 240)

    @pytest.mark.parametrize(
        "pixels",
        [
            np.zeros((0, 0, 3), dtype=np.uint8),
            np.zeros((10, 10), dtype=np.uint8),
            np.zeros((10, 10, 1), dtype=np.uint8),
        ],
    )
    def test_invalid(self, pixels):
        assert not Frame(pixels, 0.0).is_valid


class TestThrottle:
    def test_min_interval(self):
        clock = FakeClock()
        throttle = Throttle(0.1, clock)

        assert throttle.ready()
        clock.advance(0.05)
        assert not throttle.ready()
        clock.advance(0.05)
        assert throttle.ready()

    def test_explicit_now(self):
        throttle = Throttle(1.0)
        assert throttle.ready(10.0)
        assert not throttle.ready(10.5)
        assert throttle.ready(11.0)

    def test_zero_interval(self):
        throttle = Throttle(0.0)
        assert all(throttle.ready(0.0) for _ in range(3))

    def test_reset(self):
        throttle = Throttle(1.0)
        throttle.ready(0.0)
        throttle.reset()
        assert throttle.ready(0.1)

    def test_negative_interval(self):
        with pytest.raises(ValueError):
            Throttle(-1.0)


class TestSequenceFrameSource:
    def make_source(self, n=3):
        return SequenceFrameSource([Frame(dark_frame(), i * 0.5) for i in range(n)])

    def test_reads_in_order(self):
        source = self.make_source()
        assert source.is_ready
        assert [source.read().timestamp for _ in range(3)] == [0.0, 0.5, 1.0]
        assert source.ended
        assert source.read() is None

    def test_seek(self):
        source = self.make_source()
        source.seek(0.4)
        assert source.read().timestamp == 0.5

    def test_pause(self):
        source = self.make_source()
        source.pause()
        assert source.paused
        source.play()
        assert not source.paused

    def test_dimensions(self):
        source = self.make_source()
        assert (source.width, source.height) == (320, 240)
        assert source.duration == 1.0

    def test_empty(self):
        source = SequenceFrameSource([])
        assert not source.is_ready
        assert source.ended


class TestProcessingBuffer:
    def test_small_frame_copied(self):
        buffer = ProcessingBuffer(320, 240)
        pixels = dark_frame(160, 120)

        work = buffer.prepare(pixels)

        assert work.shape == (120, 160, 3)
        assert buffer.scale == 1.0
        np.testing.assert_array_equal(work, pixels)

    def test_large_frame_downscaled(self):
        buffer = ProcessingBuffer(320, 240)
        work = buffer.prepare(dark_frame(1280, 720))

        assert buffer.scale == pytest.approx(0.25)
        assert work.shape == (180, 320, 3)

    def test_reallocates_only_on_size_change(self):
        buffer = ProcessingBuffer(320, 240)
        for _ in range(5):
            buffer.prepare(dark_frame(640, 480))
        assert buffer.allocations == 1

        buffer.prepare(dark_frame(320, 240))
        assert buffer.allocations == 2
