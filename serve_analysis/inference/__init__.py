"""Inference capability: model lifecycle and YOLO sessions."""

from serve_analysis.inference.lifecycle import ModelLifecycle, ModelLoadError, ModelState
from serve_analysis.inference.yolo import (
    MalformedOutputError,
    OnnxYoloSession,
    PixelBox,
    UltralyticsYoloSession,
    decode_output,
    load_yolo_session,
    prepare_input,
)

__all__ = [
    "ModelLifecycle",
    "ModelLoadError",
    "ModelState",
    "MalformedOutputError",
    "OnnxYoloSession",
    "PixelBox",
    "UltralyticsYoloSession",
    "decode_output",
    "load_yolo_session",
    "prepare_input",
]
