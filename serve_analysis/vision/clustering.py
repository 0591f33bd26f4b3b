"""Distance-based clustering of scored candidate points."""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np


@dataclass(frozen=True)
class ScoredPoint:
    """A candidate point in processing-resolution pixel space."""
    x: float
    y: float
    score: float
    intensity: float = 0.0
    label: Optional[str] = None


@dataclass
class Cluster:
    """
    A group of points connected by the distance threshold.

    The centroid is maintained as a running score-weighted average while
    points are added; points with zero score still count with a small
    floor weight so an all-zero cluster has a defined centre.
    """
    centroid_x: float = 0.0
    centroid_y: float = 0.0
    min_x: float = float("inf")
    min_y: float = float("inf")
    max_x: float = float("-inf")
    max_y: float = float("-inf")
    total_score: float = 0.0
    total_intensity: float = 0.0
    members: List[ScoredPoint] = field(default_factory=list)
    _weight: float = 0.0

    def add(self, point: ScoredPoint) -> None:
        """Absorb a point, updating centroid, extent and aggregates."""
        weight = max(point.score, 1e-6)
        self._weight += weight
        self.centroid_x += (point.x - self.centroid_x) * weight / self._weight
        self.centroid_y += (point.y - self.centroid_y) * weight / self._weight
        self.min_x = min(self.min_x, point.x)
        self.min_y = min(self.min_y, point.y)
        self.max_x = max(self.max_x, point.x)
        self.max_y = max(self.max_y, point.y)
        self.total_score += point.score
        self.total_intensity += point.intensity
        self.members.append(point)

    @property
    def count(self) -> int:
        return len(self.members)

    @property
    def width(self) -> float:
        return self.max_x - self.min_x if self.members else 0.0

    @property
    def height(self) -> float:
        return self.max_y - self.min_y if self.members else 0.0

    @property
    def mean_score(self) -> float:
        return self.total_score / self.count if self.members else 0.0

    @property
    def mean_intensity(self) -> float:
        return self.total_intensity / self.count if self.members else 0.0


def select_top_points(points: Sequence[ScoredPoint], max_points: int) -> List[ScoredPoint]:
    """
    Keep the highest-scoring points, with a deterministic tie-break on position.

    The ordering does not depend on the input order, so clustering the
    selection gives the same partition for any permutation of the input.
    """
    ranked = sorted(points, key=lambda p: (-p.score, p.y, p.x))
    return ranked[:max_points]


def cluster_points(
    points: Sequence[ScoredPoint],
    max_distance: float,
    max_points: Optional[int] = None,
) -> List[Cluster]:
    """
    Group points into clusters of points linked by distance.

    Starting from each unvisited point, every unvisited point within
    max_distance of any member is absorbed, so two points share a cluster
    exactly when a chain of hops of at most max_distance connects them.
    Cost is O(n^2); callers pass a pre-filtered candidate set and may cap it
    with max_points.

    Args:
        points: Candidate points.
        max_distance: Linking distance (inclusive) in the points' units.
        max_points: Optional cap, keeping the top points by score.

    Returns:
        Clusters ordered by member count, largest first.
    """
    candidates = select_top_points(points, max_points) if max_points else list(points)
    if not candidates:
        return []

    xs = np.array([p.x for p in candidates], dtype=np.float64)
    ys = np.array([p.y for p in candidates], dtype=np.float64)
    visited = np.zeros(len(candidates), dtype=bool)
    limit = max_distance * max_distance

    clusters: List[Cluster] = []
    for seed in range(len(candidates)):
        if visited[seed]:
            continue

        cluster = Cluster()
        visited[seed] = True
        frontier = [seed]
        while frontier:
            current = frontier.pop()
            cluster.add(candidates[current])

            dist_sq = (xs - xs[current]) ** 2 + (ys - ys[current]) ** 2
            neighbours = np.flatnonzero((dist_sq <= limit) & ~visited)
            visited[neighbours] = True
            frontier.extend(int(n) for n in neighbours)

        clusters.append(cluster)

    clusters.sort(key=lambda c: (-c.count, -c.total_score, c.min_y, c.min_x))
    return clusters


def largest_cluster(clusters: Sequence[Cluster]) -> Optional[Cluster]:
    """Return the cluster with the most members, or None."""
    if not clusters:
        return None
    return max(clusters, key=lambda c: (c.count, c.total_score))
