"""Frame sources, frame containers and reusable processing buffers."""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional, Sequence, Tuple

import cv2
import numpy as np
from tqdm import tqdm

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Frame:
    """
    A single RGB pixel buffer borrowed from a frame source.

    Attributes:
        pixels: Array of shape (height, width, 3), RGB order, uint8.
        timestamp: Presentation timestamp in seconds.
    """
    pixels: np.ndarray
    timestamp: float

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0]) if self.pixels.ndim >= 2 else 0

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1]) if self.pixels.ndim >= 2 else 0

    @property
    def is_valid(self) -> bool:
        """Whether the frame has usable dimensions and three color channels."""
        return (
            self.pixels.ndim == 3
            and self.pixels.shape[2] >= 3
            and self.width > 0
            and self.height > 0
        )


@dataclass
class VideoInfo:
    """
    Information about a video file.

    Attributes:
        path: Path to the video file.
        width: Frame width in pixels.
        height: Frame height in pixels.
        fps: Frames per second.
        total_frames: Total number of frames.
        duration_seconds: Duration in seconds.
        codec: Video codec fourcc code.
    """
    path: str
    width: int
    height: int
    fps: float
    total_frames: int
    duration_seconds: float
    codec: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "path": self.path,
            "width": self.width,
            "height": self.height,
            "fps": self.fps,
            "total_frames": self.total_frames,
            "duration_seconds": self.duration_seconds,
            "codec": self.codec,
        }


def get_video_info(video_path: str) -> Optional[VideoInfo]:
    """
    Get information about a video file.

    Args:
        video_path: Path to the video file.

    Returns:
        VideoInfo object or None if video cannot be opened.
    """
    cap = cv2.VideoCapture(video_path)

    if not cap.isOpened():
        logger.error(f"Could not open video: {video_path}")
        return None

    try:
        width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        fps = cap.get(cv2.CAP_PROP_FPS)
        total_frames = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
        duration = total_frames / fps if fps > 0 else 0
        codec_int = int(cap.get(cv2.CAP_PROP_FOURCC))
        codec = "".join([chr((codec_int >> 8 * i) & 0xFF) for i in range(4)])

        return VideoInfo(
            path=video_path,
            width=width,
            height=height,
            fps=fps,
            total_frames=total_frames,
            duration_seconds=duration,
            codec=codec,
        )
    finally:
        cap.release()


class FrameSource(ABC):
    """
    Read-only contract for anything that supplies timestamped frames.

    Implementations expose playback state (ready/paused/ended), the
    current playback time and a way to pull the current pixel buffer.
    """

    def __init__(self):
        self._paused = False

    @property
    @abstractmethod
    def width(self) -> int:
        """Frame width in pixels (0 until the source is ready)."""

    @property
    @abstractmethod
    def height(self) -> int:
        """Frame height in pixels (0 until the source is ready)."""

    @property
    @abstractmethod
    def current_time(self) -> float:
        """Current playback position in seconds."""

    @property
    @abstractmethod
    def is_ready(self) -> bool:
        """Whether a frame can be read right now."""

    @property
    @abstractmethod
    def ended(self) -> bool:
        """Whether the source has no more frames."""

    @property
    def duration(self) -> Optional[float]:
        """Total duration in seconds, or None for live sources."""
        return None

    @property
    def paused(self) -> bool:
        return self._paused

    def play(self) -> None:
        self._paused = False

    def pause(self) -> None:
        self._paused = True

    def seek(self, seconds: float) -> None:
        """Move the playback position. Live sources ignore seeks."""
        logger.debug(f"{self.__class__.__name__} does not support seeking")

    @abstractmethod
    def read(self) -> Optional[Frame]:
        """Return the next frame, or None if none is available."""

    def close(self) -> None:
        """Release any underlying capture device."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class VideoFileSource(FrameSource):
    """
    Frame source backed by a decoded video file.

    Frames are converted from OpenCV's BGR order to RGB on read.
    """

    def __init__(self, video_path: str):
        """
        Initialize the video file source.

        Args:
            video_path: Path to the video file.
        """
        super().__init__()
        self.video_path = Path(video_path)
        self._cap = None
        self._info: Optional[VideoInfo] = None
        self._ended = False
        self._position = 0.0

    @property
    def info(self) -> Optional[VideoInfo]:
        """Get video information."""
        if self._info is None:
            self._info = get_video_info(str(self.video_path))
        return self._info

    def open(self) -> None:
        """Open the video file."""
        if self._cap is not None:
            return

        self._cap = cv2.VideoCapture(str(self.video_path))
        if not self._cap.isOpened():
            raise ValueError(f"Could not open video: {self.video_path}")

        logger.debug(f"Opened video: {self.video_path}")

    def close(self) -> None:
        """Close the video file."""
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            logger.debug(f"Closed video: {self.video_path}")

    @property
    def width(self) -> int:
        return self.info.width if self.info else 0

    @property
    def height(self) -> int:
        return self.info.height if self.info else 0

    @property
    def fps(self) -> float:
        return self.info.fps if self.info and self.info.fps > 0 else 30.0

    @property
    def current_time(self) -> float:
        return self._position

    @property
    def duration(self) -> Optional[float]:
        return self.info.duration_seconds if self.info else None

    @property
    def is_ready(self) -> bool:
        return self._cap is not None and self._cap.isOpened() and not self._ended

    @property
    def ended(self) -> bool:
        return self._ended

    def seek(self, seconds: float) -> None:
        if self._cap is None:
            self.open()
        self._cap.set(cv2.CAP_PROP_POS_MSEC, max(0.0, seconds) * 1000.0)
        self._position = max(0.0, seconds)
        self._ended = False

    def read(self) -> Optional[Frame]:
        if self._cap is None:
            self.open()

        ret, frame = self._cap.read()
        if not ret:
            self._ended = True
            return None

        timestamp = self._cap.get(cv2.CAP_PROP_POS_MSEC) / 1000.0
        self._position = timestamp
        return Frame(pixels=cv2.cvtColor(frame, cv2.COLOR_BGR2RGB), timestamp=timestamp)

    def iterate_frames(self, show_progress: bool = True) -> Generator[Frame, None, None]:
        """
        Iterate over all frames in the video.

        Args:
            show_progress: Whether to show progress bar.

        Yields:
            Frame objects in presentation order.
        """
        self.open()
        total = self.info.total_frames if self.info else 0
        pbar = tqdm(total=total, desc="Analyzing video") if show_progress else None

        try:
            while True:
                frame = self.read()
                if frame is None:
                    break

                yield frame

                if pbar:
                    pbar.update(1)
        finally:
            if pbar:
                pbar.close()
            self.close()

    def __enter__(self):
        self.open()
        return self


class CameraSource(FrameSource):
    """Live frame source reading from a local camera device."""

    def __init__(self, index: int = 0, resolution: Tuple[int, int] = (1280, 720)):
        super().__init__()
        self.index = index
        self.resolution = resolution
        self._cap = None
        self._start = time.monotonic()
        self._ended = False

    def open(self) -> None:
        if self._cap is not None:
            return

        self._cap = cv2.VideoCapture(self.index)
        if not self._cap.isOpened():
            raise ValueError(f"Could not open camera {self.index}")

        self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.resolution[0])
        self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.resolution[1])
        self._start = time.monotonic()
        logger.info(f"Opened camera {self.index}")

    def close(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            logger.debug(f"Closed camera {self.index}")

    @property
    def width(self) -> int:
        return int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)) if self._cap else 0

    @property
    def height(self) -> int:
        return int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)) if self._cap else 0

    @property
    def current_time(self) -> float:
        return time.monotonic() - self._start

    @property
    def is_ready(self) -> bool:
        return self._cap is not None and self._cap.isOpened()

    @property
    def ended(self) -> bool:
        return self._ended

    def read(self) -> Optional[Frame]:
        if self._cap is None:
            self.open()

        ret, frame = self._cap.read()
        if not ret or frame is None:
            logger.debug(f"Camera {self.index} returned no frame")
            return None

        return Frame(pixels=cv2.cvtColor(frame, cv2.COLOR_BGR2RGB), timestamp=self.current_time)

    def __enter__(self):
        self.open()
        return self


class SequenceFrameSource(FrameSource):
    """Frame source replaying an in-memory sequence of frames."""

    def __init__(self, frames: Sequence[Frame]):
        super().__init__()
        self._frames: List[Frame] = list(frames)
        self._index = 0

    @property
    def width(self) -> int:
        return self._frames[0].width if self._frames else 0

    @property
    def height(self) -> int:
        return self._frames[0].height if self._frames else 0

    @property
    def current_time(self) -> float:
        if not self._frames:
            return 0.0
        return self._frames[min(self._index, len(self._frames) - 1)].timestamp

    @property
    def duration(self) -> Optional[float]:
        return self._frames[-1].timestamp if self._frames else 0.0

    @property
    def is_ready(self) -> bool:
        return bool(self._frames) and not self.ended

    @property
    def ended(self) -> bool:
        return self._index >= len(self._frames)

    def seek(self, seconds: float) -> None:
        self._index = next(
            (i for i, f in enumerate(self._frames) if f.timestamp >= seconds),
            len(self._frames),
        )

    def read(self) -> Optional[Frame]:
        if self.ended:
            return None
        frame = self._frames[self._index]
        self._index += 1
        return frame


class ProcessingBuffer:
    """
    Reusable off-screen pixel buffer for one pixel-consuming detector.

    Frames are downscaled into a preallocated array so steady-state
    processing does no per-frame allocation. The buffer is only
    reallocated when the source frame dimensions change.
    """

    def __init__(self, max_width: int = 320, max_height: int = 240):
        """
        Args:
            max_width: Maximum processing width in pixels.
            max_height: Maximum processing height in pixels.
        """
        self.max_width = max_width
        self.max_height = max_height
        self.scale = 1.0
        self.allocations = 0
        self._source_size: Optional[Tuple[int, int]] = None
        self._buffer: Optional[np.ndarray] = None

    @property
    def shape(self) -> Optional[Tuple[int, ...]]:
        return None if self._buffer is None else self._buffer.shape

    def resize(self, source_width: int, source_height: int) -> None:
        """Recompute the processing size for new source dimensions and reallocate."""
        if source_width <= 0 or source_height <= 0:
            raise ValueError(f"Invalid source size {source_width}x{source_height}")

        self.scale = min(1.0, self.max_width / source_width, self.max_height / source_height)
        width = max(1, int(round(source_width * self.scale)))
        height = max(1, int(round(source_height * self.scale)))
        self._buffer = np.empty((height, width, 3), dtype=np.uint8)
        self._source_size = (source_width, source_height)
        self.allocations += 1
        logger.debug(f"Processing buffer resized to {width}x{height} (scale {self.scale:.3f})")

    def prepare(self, pixels: np.ndarray) -> np.ndarray:
        """
        Copy or downscale a frame into the buffer.

        Args:
            pixels: Source RGB array (height, width, 3).

        Returns:
            The internal buffer holding the processing-resolution frame.
            Callers must not keep a reference across frames.
        """
        height, width = pixels.shape[:2]
        if self._source_size != (width, height):
            self.resize(width, height)

        rgb = pixels[:, :, :3]
        if self.scale == 1.0:
            np.copyto(self._buffer, rgb)
        else:
            cv2.resize(
                np.ascontiguousarray(rgb),
                (self._buffer.shape[1], self._buffer.shape[0]),
                dst=self._buffer,
                interpolation=cv2.INTER_AREA,
            )
        return self._buffer


def open_video_writer(
    output_path: str,
    width: int,
    height: int,
    fps: float = 30.0,
    codec: str = "mp4v",
) -> "cv2.VideoWriter":
    """
    Open a video writer for annotated output.

    Args:
        output_path: Path for output video file.
        width: Frame width in pixels.
        height: Frame height in pixels.
        fps: Frames per second.
        codec: Video codec fourcc code.

    Returns:
        An opened cv2.VideoWriter; the caller releases it.
    """
    Path(output_path).parent.mkdir(parents=True, exist_ok=True)
    fourcc = cv2.VideoWriter_fourcc(*codec)
    writer = cv2.VideoWriter(output_path, fourcc, fps, (width, height))
    if not writer.isOpened():
        raise ValueError(f"Could not open video writer: {output_path}")
    logger.info(f"Writing annotated video to {output_path}")
    return writer
