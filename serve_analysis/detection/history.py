"""Bounded detection history and the projectile motion trail."""

from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional, Tuple

from serve_analysis.detection.base import DetectionBox


class DetectionHistory:
    """Fixed-capacity ring buffer of accepted detections, oldest first."""

    def __init__(self, capacity: int = 3):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._entries: Deque[DetectionBox] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, box: DetectionBox) -> None:
        self._entries.append(box)

    def clear(self) -> None:
        self._entries.clear()

    def entries(self) -> List[DetectionBox]:
        return list(self._entries)

    @property
    def latest(self) -> Optional[DetectionBox]:
        return self._entries[-1] if self._entries else None

    def mean(self, last: Optional[int] = None) -> Optional[DetectionBox]:
        """
        Field-wise arithmetic mean of the stored boxes.

        Args:
            last: Only average the most recent entries.

        Returns:
            Mean box stamped with the latest entry's timestamp and tier.
        """
        entries = self.entries()
        if last is not None:
            entries = entries[-last:]
        if not entries:
            return None

        n = len(entries)
        return DetectionBox(
            x=sum(b.x for b in entries) / n,
            y=sum(b.y for b in entries) / n,
            width=sum(b.width for b in entries) / n,
            height=sum(b.height for b in entries) / n,
            confidence=sum(b.confidence for b in entries) / n,
            timestamp=entries[-1].timestamp,
            tier=entries[-1].tier,
        )


@dataclass(frozen=True)
class TrailPoint:
    """A past projectile position (normalized center)."""
    x: float
    y: float
    timestamp: float


class MotionTrail:
    """
    Time-windowed sequence of recent projectile positions.

    Entries older than the window are evicted before each append.
    """

    def __init__(self, window: float = 1.0):
        self.window = window
        self._points: Deque[TrailPoint] = deque()

    def __len__(self) -> int:
        return len(self._points)

    def evict(self, now: float) -> None:
        while self._points and now - self._points[0].timestamp > self.window:
            self._points.popleft()

    def append(self, point: TrailPoint) -> None:
        self.evict(point.timestamp)
        self._points.append(point)

    def clear(self) -> None:
        self._points.clear()

    def points(self) -> Tuple[TrailPoint, ...]:
        """Snapshot of the trail, oldest first."""
        return tuple(self._points)

    def velocity(self, samples: int = 3) -> Optional[Tuple[float, float, float]]:
        """
        Average velocity over the most recent samples.

        Returns:
            (vx, vy, frame_interval) in normalized units per second and
            seconds, or None with fewer than two samples or no elapsed time.
        """
        recent = list(self._points)[-samples:]
        if len(recent) < 2:
            return None

        elapsed = recent[-1].timestamp - recent[0].timestamp
        if elapsed <= 0:
            return None

        return (
            (recent[-1].x - recent[0].x) / elapsed,
            (recent[-1].y - recent[0].y) / elapsed,
            elapsed / (len(recent) - 1),
        )
