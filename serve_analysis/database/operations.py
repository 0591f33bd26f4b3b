"""Database operations for saved serve analysis sessions."""

import logging
from datetime import timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from serve_analysis.analysis.biomechanics import SessionSnapshot
from serve_analysis.database.models import MetricsSample, ServeSession

logger = logging.getLogger(__name__)


class SessionOperations:
    """
    Persistence sink for analysis sessions.

    Stores a session snapshot with its trimmed metrics history and
    provides lookups for the command line.
    """

    def __init__(self, session: Session):
        """
        Initialize session operations.

        Args:
            session: SQLAlchemy session instance.
        """
        self.session = session

    def save_snapshot(self, snapshot: SessionSnapshot, source: Optional[str] = None) -> ServeSession:
        """
        Store a session snapshot.

        Args:
            snapshot: Snapshot produced by the analyzer.
            source: Video path or camera label.

        Returns:
            Created ServeSession instance.
        """
        recorded_at = snapshot.timestamp
        if recorded_at.tzinfo is not None:
            recorded_at = recorded_at.astimezone(timezone.utc).replace(tzinfo=None)

        metrics = snapshot.final_metrics
        serve_session = ServeSession(
            recorded_at=recorded_at,
            camera_angle=snapshot.camera_angle.value,
            analysis_type=snapshot.analysis_type,
            source=source,
            elbow_angle=metrics.elbow_angle,
            knee_angle=metrics.knee_angle,
            x_factor=metrics.x_factor,
            contact_height=metrics.contact_height,
            follow_through=metrics.follow_through,
            final_similarity=snapshot.final_similarity,
            final_phase=snapshot.final_phase.value,
            duration_estimate=snapshot.duration_estimate,
        )

        for index, record in enumerate(snapshot.metrics_history):
            serve_session.samples.append(
                MetricsSample(
                    sample_index=index,
                    timestamp=record.timestamp,
                    phase=record.phase.value,
                    similarity=record.similarity,
                    **record.metrics.to_dict(),
                )
            )

        self.session.add(serve_session)
        self.session.commit()
        logger.info(f"Saved session {serve_session.session_id} with {len(serve_session.samples)} samples")
        return serve_session

    def get_session(self, session_id: int) -> Optional[ServeSession]:
        """Get a saved session by its primary key."""
        return self.session.get(ServeSession, session_id)

    def list_sessions(self, limit: int = 20) -> List[ServeSession]:
        """Most recent sessions first."""
        stmt = (
            select(ServeSession)
            .order_by(ServeSession.recorded_at.desc(), ServeSession.session_id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt))

    def get_history(self, session_id: int) -> List[MetricsSample]:
        """Metrics samples of a session in recorded order."""
        stmt = (
            select(MetricsSample)
            .where(MetricsSample.session_id == session_id)
            .order_by(MetricsSample.sample_index)
        )
        return list(self.session.scalars(stmt))

    def delete_session(self, session_id: int) -> bool:
        """
        Delete a session and its samples.

        Returns:
            True if a session was deleted.
        """
        serve_session = self.get_session(session_id)
        if serve_session is None:
            return False

        self.session.delete(serve_session)
        self.session.commit()
        logger.info(f"Deleted session {session_id}")
        return True

    def get_database_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the database contents.

        Returns:
            Dictionary with row counts and the mean saved similarity.
        """
        return {
            "sessions": self.session.query(func.count(ServeSession.session_id)).scalar(),
            "samples": self.session.query(func.count(MetricsSample.sample_id)).scalar(),
            "mean_similarity": self.session.query(func.avg(ServeSession.final_similarity)).scalar(),
        }
