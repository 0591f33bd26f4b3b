import random

import pytest

from serve_analysis.vision.clustering import (
    Cluster,
    ScoredPoint,
    cluster_points,
    largest_cluster,
    select_top_points,
)


def _membership(clusters):
    return {frozenset((p.x, p.y) for p in c.members) for c in clusters}


class TestDistanceThreshold:
    def test_points_at_threshold_share_a_cluster(self):
        points = [ScoredPoint(0, 0, 1.0), ScoredPoint(3, 4, 1.0)]
        clusters = cluster_points(points, max_distance=5.0)
        assert len(clusters) == 1

    def test_points_beyond_threshold_are_split(self):
        points = [ScoredPoint(0, 0, 1.0), ScoredPoint(3, 4.01, 1.0)]
        clusters = cluster_points(points, max_distance=5.0)
        assert len(clusters) == 2

    def test_chain_links_distant_ends(self):
        points = [ScoredPoint(x, 0, 1.0) for x in (0, 4, 8, 12)]
        clusters = cluster_points(points, max_distance=4.0)

        assert len(clusters) == 1
        assert clusters[0].width == 12


class TestOrderInvariance:
    def test_any_permutation_gives_same_clusters(self):
        rng = random.Random(7)
        points = [ScoredPoint(float(rng.randint(0, 100)), float(rng.randint(0, 100)), rng.random()) for _ in range(60)]
        expected = _membership(cluster_points(points, max_distance=12.0))

        for _ in range(5):
            shuffled = points[:]
            rng.shuffle(shuffled)
            assert _membership(cluster_points(shuffled, max_distance=12.0)) == expected

    def test_capped_selection_is_order_independent(self):
        points = [ScoredPoint(float(i), 0.0, 1.0) for i in range(10)]
        top = select_top_points(points, 4)
        assert top == select_top_points(list(reversed(points)), 4)
        assert [p.x for p in top] == [0.0, 1.0, 2.0, 3.0]


class TestClusterAggregates:
    def test_weighted_centroid_and_extent(self):
        cluster = Cluster()
        cluster.add(ScoredPoint(0, 0, 1.0, intensity=0.2))
        cluster.add(ScoredPoint(10, 0, 3.0, intensity=0.6))

        assert cluster.centroid_x == pytest.approx(7.5)
        assert cluster.centroid_y == pytest.approx(0.0)
        assert (cluster.min_x, cluster.max_x) == (0, 10)
        assert cluster.count == 2
        assert cluster.mean_score == pytest.approx(2.0)
        assert cluster.mean_intensity == pytest.approx(0.4)

    def test_zero_scores_still_have_a_centre(self):
        cluster = Cluster()
        cluster.add(ScoredPoint(2, 2, 0.0))
        cluster.add(ScoredPoint(4, 6, 0.0))

        assert cluster.centroid_x == pytest.approx(3.0)
        assert cluster.centroid_y == pytest.approx(4.0)

    def test_clusters_sorted_largest_first(self):
        points = [ScoredPoint(0, 0, 1.0), ScoredPoint(100, 100, 1.0), ScoredPoint(101, 100, 1.0)]
        clusters = cluster_points(points, max_distance=5.0)

        assert [c.count for c in clusters] == [2, 1]
        assert largest_cluster(clusters) is clusters[0]

    def test_cap_keeps_top_scores(self):
        points = [ScoredPoint(0, 0, 0.1), ScoredPoint(1, 0, 0.9), ScoredPoint(50, 0, 0.8)]
        clusters = cluster_points(points, max_distance=5.0, max_points=2)

        assert sum(c.count for c in clusters) == 2
        assert _membership(clusters) == {frozenset({(1, 0)}), frozenset({(50, 0)})}

    def test_empty_input(self):
        assert cluster_points([], max_distance=5.0) == []
        assert largest_cluster([]) is None
