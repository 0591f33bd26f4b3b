"""
YOLO-style detection sessions.

Two interchangeable sessions return the best box of one class in source
pixel coordinates:

- ``OnnxYoloSession`` runs an exported ONNX model with onnxruntime and
  decodes the raw ``[batch, 4 + num_classes, num_anchors]`` output.
- ``UltralyticsYoloSession`` runs ``.pt`` weights through ultralytics.

``load_yolo_session`` picks one from the model path suffix.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_INPUT_SIZE = 416


class MalformedOutputError(ValueError):
    """Raised when an inference output tensor has an unexpected shape."""


@dataclass(frozen=True)
class PixelBox:
    """A detection in source-image pixels (top-left origin)."""
    x: float
    y: float
    width: float
    height: float
    confidence: float


def prepare_input(frame_rgb: np.ndarray, input_size: int = DEFAULT_INPUT_SIZE) -> np.ndarray:
    """
    Build a normalized NCHW float tensor from an RGB frame.

    Args:
        frame_rgb: RGB image (height, width, 3).
        input_size: Square model input edge.

    Returns:
        Array of shape (1, 3, input_size, input_size), values 0-1.
    """
    img = cv2.resize(frame_rgb[:, :, :3], (input_size, input_size))
    img = img.astype(np.float32) / 255.0
    img = np.transpose(img, (2, 0, 1))  # HWC -> CHW
    return np.expand_dims(img, axis=0)


def decode_output(
    output: np.ndarray,
    class_index: int,
    threshold: float,
    orig_width: int,
    orig_height: int,
    input_size: int = DEFAULT_INPUT_SIZE,
) -> Optional[PixelBox]:
    """
    Pick the highest-confidence box of one class from raw YOLO output.

    Rows 0-3 hold center x, center y, width and height in input pixels;
    row 4 + k holds the confidence of class k.

    Args:
        output: Array of shape (1, 4 + num_classes, num_anchors).
        class_index: Class to extract.
        threshold: Minimum (exclusive) class confidence.
        orig_width: Source frame width.
        orig_height: Source frame height.
        input_size: Model input edge the boxes are expressed in.

    Returns:
        PixelBox clipped to the source frame, or None if nothing clears the threshold.

    Raises:
        MalformedOutputError: If the tensor layout does not fit.
    """
    output = np.asarray(output)
    if output.ndim != 3 or output.shape[0] < 1:
        raise MalformedOutputError(f"Expected [batch, channels, anchors], got shape {output.shape}")
    if output.shape[1] < 5 + class_index:
        raise MalformedOutputError(
            f"Output has {output.shape[1]} channels, class {class_index} needs {5 + class_index}"
        )
    if output.shape[2] == 0:
        return None

    rows = output[0]
    scores = rows[4 + class_index]
    best = int(np.argmax(scores))
    confidence = float(scores[best])
    if not confidence > threshold:
        return None

    scale_x = orig_width / input_size
    scale_y = orig_height / input_size
    cx, cy, w, h = (float(v) for v in rows[:4, best])

    x = max(0.0, (cx - w / 2) * scale_x)
    y = max(0.0, (cy - h / 2) * scale_y)
    return PixelBox(
        x=x,
        y=y,
        width=min(w * scale_x, orig_width - x),
        height=min(h * scale_y, orig_height - y),
        confidence=confidence,
    )


class OnnxYoloSession:
    """ONNX Runtime session for an exported YOLO detector."""

    def __init__(self, model_path: str, input_size: int = DEFAULT_INPUT_SIZE):
        import onnxruntime as ort

        if not Path(model_path).exists():
            raise FileNotFoundError(f"Model not found: {model_path}")

        self.model_path = model_path
        self.input_size = input_size
        self._session = ort.InferenceSession(model_path, providers=["CPUExecutionProvider"])
        self._input_name = self._session.get_inputs()[0].name

    def detect_best(self, frame_rgb: np.ndarray, class_index: int, threshold: float) -> Optional[PixelBox]:
        """Run the model and return the best box of a class, or None."""
        tensor = prepare_input(frame_rgb, self.input_size)
        outputs = self._session.run(None, {self._input_name: tensor})
        if not outputs:
            raise MalformedOutputError("Model returned no outputs")

        height, width = frame_rgb.shape[:2]
        return decode_output(outputs[0], class_index, threshold, width, height, self.input_size)

    def close(self) -> None:
        self._session = None


class UltralyticsYoloSession:
    """Ultralytics YOLO model for ``.pt`` weights."""

    def __init__(self, model_path: str, input_size: int = DEFAULT_INPUT_SIZE):
        from ultralytics import YOLO

        self.model_path = model_path
        self.input_size = input_size
        self._model = YOLO(model_path)

    def detect_best(self, frame_rgb: np.ndarray, class_index: int, threshold: float) -> Optional[PixelBox]:
        """Run the model and return the best box of a class, or None."""
        # ultralytics expects BGR numpy input
        frame_bgr = cv2.cvtColor(frame_rgb[:, :, :3], cv2.COLOR_RGB2BGR)
        results = self._model(
            frame_bgr,
            classes=[class_index],
            conf=threshold,
            imgsz=self.input_size,
            verbose=False,
        )

        if not results or results[0].boxes is None or len(results[0].boxes) == 0:
            return None

        boxes = results[0].boxes
        confs = boxes.conf.cpu().numpy()
        best = int(np.argmax(confs))
        x1, y1, x2, y2 = boxes.xyxy[best].cpu().numpy()

        return PixelBox(
            x=float(x1),
            y=float(y1),
            width=float(x2 - x1),
            height=float(y2 - y1),
            confidence=float(confs[best]),
        )

    def close(self) -> None:
        self._model = None


def load_yolo_session(model_path: Optional[str], input_size: int = DEFAULT_INPUT_SIZE):
    """
    Load a YOLO session for a model path.

    Args:
        model_path: Path to a ``.onnx`` or ``.pt`` file.
        input_size: Model input edge.

    Returns:
        OnnxYoloSession or UltralyticsYoloSession.
    """
    if not model_path:
        raise ValueError("No model path configured")

    if Path(model_path).suffix.lower() == ".onnx":
        return OnnxYoloSession(model_path, input_size)
    return UltralyticsYoloSession(model_path, input_size)
