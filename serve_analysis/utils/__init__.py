"""Utility modules for serve analysis."""

from serve_analysis.utils.logging_config import (
    IntervalLogger,
    LoggerMixin,
    get_logger,
    setup_logging,
    setup_logging_from_config,
)
from serve_analysis.utils.timing import Throttle
from serve_analysis.utils.video_utils import (
    CameraSource,
    Frame,
    FrameSource,
    ProcessingBuffer,
    SequenceFrameSource,
    VideoFileSource,
    get_video_info,
)

__all__ = [
    "IntervalLogger",
    "LoggerMixin",
    "get_logger",
    "setup_logging",
    "setup_logging_from_config",
    "Throttle",
    "CameraSource",
    "Frame",
    "FrameSource",
    "ProcessingBuffer",
    "SequenceFrameSource",
    "VideoFileSource",
    "get_video_info",
]
