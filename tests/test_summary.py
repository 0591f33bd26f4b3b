import pytest

from serve_analysis.analysis.biomechanics import MetricsRecord, ServeMetrics, ServePhase
from serve_analysis.analysis.summary import history_to_frame, summarize_history


def record(t, elbow, similarity, phase=ServePhase.LOADING):
    metrics = ServeMetrics(
        elbow_angle=elbow,
        knee_angle=140.0,
        x_factor=45.0,
        contact_height=220.0,
        follow_through=15.0,
    )
    return MetricsRecord(timestamp=t, metrics=metrics, phase=phase, similarity=similarity)


class TestHistoryToFrame:
    def test_columns(self):
        df = history_to_frame([record(0.0, 150.0, 90.0)])
        assert list(df.columns) == [
            "timestamp",
            "phase",
            "similarity",
            "elbow_angle",
            "knee_angle",
            "x_factor",
            "contact_height",
            "follow_through",
        ]
        assert df.loc[0, "phase"] == "loading"

    def test_empty(self):
        df = history_to_frame([])
        assert df.empty
        assert "similarity" in df.columns


class TestSummarizeHistory:
    def test_statistics(self):
        history = [
            record(0.0, 140.0, 80.0, ServePhase.LOADING),
            record(0.1, 150.0, 90.0, ServePhase.LOADING),
            record(0.2, 160.0, 100.0, ServePhase.CONTACT),
        ]
        summary = summarize_history(history)

        assert summary["samples"] == 3
        elbow = summary["metrics"]["elbow_angle"]
        assert elbow["mean"] == pytest.approx(150.0)
        assert elbow["min"] == pytest.approx(140.0)
        assert elbow["max"] == pytest.approx(160.0)
        assert elbow["std"] == pytest.approx(10.0)
        assert summary["metrics"]["similarity"]["mean"] == pytest.approx(90.0)
        assert summary["phases"] == {"loading": 2, "contact": 1}

    def test_single_sample_has_zero_spread(self):
        summary = summarize_history([record(0.0, 150.0, 90.0)])
        assert summary["metrics"]["knee_angle"]["std"] == 0.0

    def test_empty(self):
        assert summarize_history([]) == {"samples": 0, "metrics": {}, "phases": {}}
