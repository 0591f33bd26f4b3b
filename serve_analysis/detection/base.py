"""
Shared detection types and the ordered tier fallback chain.

Every detector is a list of tiers tried highest first. A tier's result
is used only if it meets that tier's own minimum confidence; otherwise
(or if it is unavailable or raises) the next tier is consulted.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence

import numpy as np

from serve_analysis.inference.lifecycle import ModelLifecycle, ModelState
from serve_analysis.pose.base import Pose
from serve_analysis.utils.logging_config import IntervalLogger
from serve_analysis.vision.region_estimator import BodyRegion

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectionBox:
    """
    One frame's location estimate for an entity.

    Attributes:
        x: Left edge, normalized 0-1.
        y: Top edge, normalized 0-1.
        width: Width as a fraction of frame width.
        height: Height as a fraction of frame height.
        confidence: Confidence 0-1.
        timestamp: Frame timestamp in seconds.
        tier: Name of the tier that produced the box.
    """
    x: float
    y: float
    width: float
    height: float
    confidence: float
    timestamp: float = 0.0
    tier: str = ""

    @property
    def center_x(self) -> float:
        return self.x + self.width / 2

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2

    @classmethod
    def from_center(
        cls,
        center_x: float,
        center_y: float,
        width: float,
        height: float,
        confidence: float,
        timestamp: float = 0.0,
        tier: str = "",
    ) -> "DetectionBox":
        return cls(
            x=center_x - width / 2,
            y=center_y - height / 2,
            width=width,
            height=height,
            confidence=confidence,
            timestamp=timestamp,
            tier=tier,
        )

    def with_confidence(self, confidence: float) -> "DetectionBox":
        return replace(self, confidence=confidence)

    def to_dict(self) -> dict:
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "confidence": self.confidence,
            "timestamp": self.timestamp,
            "tier": self.tier,
        }


@dataclass(frozen=True)
class DetectionContext:
    """
    Most recent outputs of a detector's dependencies.

    Attributes:
        pose: Latest pose, if any.
        region: Latest body region, if any.
        exhaustive: Request a denser (slower) heuristic search.
    """
    pose: Optional[Pose] = None
    region: Optional[BodyRegion] = None
    exhaustive: bool = False


class DetectionTier(ABC):
    """One strategy in a detector's fallback chain."""

    name: str = "tier"
    min_confidence: float = 0.0

    @property
    def available(self) -> bool:
        """Whether the tier can run at all right now."""
        return True

    @abstractmethod
    def detect(
        self,
        pixels: np.ndarray,
        timestamp: float,
        context: DetectionContext,
    ) -> Optional[DetectionBox]:
        """
        Attempt a detection.

        Args:
            pixels: RGB frame (height, width, 3). Must not be modified.
            timestamp: Frame timestamp in seconds.
            context: Latest pose/region.

        Returns:
            DetectionBox or None.
        """
        pass

    def reset(self) -> None:
        """Clear any per-run state."""


class InferenceTier(DetectionTier):
    """Tier backed by a YOLO session for one class."""

    name = "inference"

    def __init__(self, lifecycle: ModelLifecycle, class_index: int, threshold: float):
        """
        Args:
            lifecycle: Lifecycle of the YOLO session.
            class_index: Class row to read from the model output.
            threshold: Minimum class confidence.
        """
        self.lifecycle = lifecycle
        self.class_index = class_index
        self.threshold = threshold
        self.min_confidence = threshold

    @property
    def available(self) -> bool:
        return self.lifecycle.state == ModelState.READY

    def detect(self, pixels, timestamp, context):
        session = self.lifecycle.session
        if session is None:
            return None

        box = session.detect_best(pixels, self.class_index, self.threshold)
        if box is None:
            return None

        height, width = pixels.shape[:2]
        return DetectionBox(
            x=box.x / width,
            y=box.y / height,
            width=box.width / width,
            height=box.height / height,
            confidence=box.confidence,
            timestamp=timestamp,
            tier=self.name,
        )


class TierChain:
    """
    Ordered tiers tried in sequence with a per-tier confidence gate.

    Attributes:
        tiers: Tiers, highest priority first.
        active_tier: Name of the tier that produced the last result, or None.
    """

    def __init__(self, tiers: Sequence[DetectionTier]):
        self.tiers: List[DetectionTier] = list(tiers)
        self.active_tier: Optional[str] = None
        self.failures = IntervalLogger(logger)

    def run(
        self,
        pixels: np.ndarray,
        timestamp: float,
        context: DetectionContext,
    ) -> Optional[DetectionBox]:
        """Return the first tier result meeting its tier's minimum confidence."""
        self.active_tier = None

        for tier in self.tiers:
            if not tier.available:
                continue

            try:
                box = tier.detect(pixels, timestamp, context)
            except Exception as e:
                self.failures.warning(tier.name, f"Tier '{tier.name}' failed at t={timestamp:.3f}s: {e}")
                continue

            if box is None:
                continue
            if box.confidence < tier.min_confidence:
                logger.debug(
                    f"Tier '{tier.name}' below minimum ({box.confidence:.2f} < {tier.min_confidence:.2f})"
                )
                continue

            self.active_tier = tier.name
            return box

        return None

    def reset(self) -> None:
        self.active_tier = None
        for tier in self.tiers:
            tier.reset()


def is_valid_pixels(pixels: Optional[np.ndarray]) -> bool:
    """Whether an array is a non-empty (height, width, 3+) image."""
    return (
        pixels is not None
        and pixels.ndim == 3
        and pixels.shape[0] > 0
        and pixels.shape[1] > 0
        and pixels.shape[2] >= 3
    )
