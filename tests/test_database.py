from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from serve_analysis.analysis.biomechanics import (
    CameraAngle,
    MetricsRecord,
    ServeMetrics,
    ServePhase,
    SessionSnapshot,
)
from serve_analysis.database.models import Base, MetricsSample, ServeSession
from serve_analysis.database.operations import SessionOperations
from serve_analysis.database.schema import (
    get_engine,
    get_session_factory,
    init_db,
    reset_engine,
    session_scope,
    sqlite_path,
)

METRICS = ServeMetrics(
    elbow_angle=150.0,
    knee_angle=140.0,
    x_factor=45.0,
    contact_height=220.0,
    follow_through=15.0,
)


def make_snapshot(when=None, similarity=80.0, samples=3):
    history = [
        MetricsRecord(timestamp=i * 0.1, metrics=METRICS, phase=ServePhase.LOADING, similarity=similarity)
        for i in range(samples)
    ]
    return SessionSnapshot(
        timestamp=when or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        camera_angle=CameraAngle.SIDE,
        final_metrics=METRICS,
        final_similarity=similarity,
        final_phase=ServePhase.CONTACT,
        metrics_history=history,
        duration_estimate=0.2,
    )


@pytest.fixture
def db_session():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def ops(db_session):
    return SessionOperations(db_session)


class TestSaveSnapshot:
    def test_saves_session_and_history(self, ops):
        saved = ops.save_snapshot(make_snapshot(), source="serve.mp4")

        assert saved.session_id is not None
        assert saved.camera_angle == "side"
        assert saved.final_phase == "contact"
        assert saved.final_similarity == pytest.approx(80.0)
        assert saved.source == "serve.mp4"
        assert saved.analysis_type == "tennis_serve"
        assert saved.final_metrics() == METRICS.to_dict()
        assert len(saved.samples) == 3

    def test_timestamp_stored_as_naive_utc(self, ops):
        when = datetime(2024, 5, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        saved = ops.save_snapshot(make_snapshot(when))
        assert saved.recorded_at == datetime(2024, 5, 1, 12, 0)

    def test_history_order(self, ops):
        saved = ops.save_snapshot(make_snapshot(samples=5))
        history = ops.get_history(saved.session_id)

        assert [s.sample_index for s in history] == [0, 1, 2, 3, 4]
        assert [s.timestamp for s in history] == pytest.approx([0.0, 0.1, 0.2, 0.3, 0.4])
        assert history[0].phase == "loading"
        assert history[0].elbow_angle == pytest.approx(150.0)

    def test_empty_history(self, ops):
        saved = ops.save_snapshot(make_snapshot(samples=0))
        assert ops.get_history(saved.session_id) == []


class TestQueries:
    def test_get_missing_session(self, ops):
        assert ops.get_session(42) is None

    def test_list_most_recent_first(self, ops):
        base = datetime(2024, 5, 1, tzinfo=timezone.utc)
        for days in (0, 2, 1):
            ops.save_snapshot(make_snapshot(base + timedelta(days=days)))

        sessions = ops.list_sessions()
        assert [s.recorded_at.day for s in sessions] == [3, 2, 1]
        assert len(ops.list_sessions(limit=2)) == 2

    def test_delete_cascades(self, ops, db_session):
        saved = ops.save_snapshot(make_snapshot())

        assert ops.delete_session(saved.session_id)
        assert not ops.delete_session(saved.session_id)
        assert db_session.query(MetricsSample).count() == 0

    def test_stats(self, ops):
        assert ops.get_database_stats() == {"sessions": 0, "samples": 0, "mean_similarity": None}

        ops.save_snapshot(make_snapshot(similarity=60.0, samples=2))
        ops.save_snapshot(make_snapshot(similarity=80.0, samples=3))

        stats = ops.get_database_stats()
        assert stats["sessions"] == 2
        assert stats["samples"] == 5
        assert stats["mean_similarity"] == pytest.approx(70.0)

    def test_to_dict(self, ops):
        data = ops.save_snapshot(make_snapshot()).to_dict()
        assert data["recorded_at"] == "2024-05-01T12:00:00"
        assert data["samples"] == 3


class TestSchema:
    def test_init_db_creates_file(self, tmp_path):
        reset_engine()
        db_path = tmp_path / "nested" / "sessions.db"
        try:
            engine = init_db(f"sqlite:///{db_path}")
            session = get_session_factory(engine)()
            try:
                SessionOperations(session).save_snapshot(make_snapshot())
                assert session.query(ServeSession).count() == 1
            finally:
                session.close()
            assert db_path.exists()
        finally:
            reset_engine()

    def test_session_scope(self, tmp_path):
        reset_engine()
        url = f"sqlite:///{tmp_path / 'scoped.db'}"
        try:
            with session_scope(url) as session:
                SessionOperations(session).save_snapshot(make_snapshot())
            with session_scope(url) as session:
                assert SessionOperations(session).get_database_stats()["sessions"] == 1
        finally:
            reset_engine()

    def test_engine_cached_per_url(self, tmp_path):
        reset_engine()
        try:
            first = get_engine(f"sqlite:///{tmp_path / 'a.db'}")
            assert get_engine(f"sqlite:///{tmp_path / 'a.db'}") is first
            assert get_engine(f"sqlite:///{tmp_path / 'b.db'}") is not first
        finally:
            reset_engine()

    def test_sqlite_path(self):
        assert str(sqlite_path("sqlite:///data/serve.db")) == "data/serve.db"
        assert sqlite_path("sqlite:///:memory:") is None
        assert sqlite_path("postgresql://localhost/serve") is None
