"""SQLAlchemy models for saved serve analysis sessions."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class ServeSession(Base):
    """
    A saved analysis session with its final metrics.

    Attributes:
        session_id: Primary key.
        recorded_at: When the snapshot was taken (UTC).
        camera_angle: front / side / back.
        analysis_type: Kind of analysis (tennis_serve).
        final_phase: Serve phase at save time.
        final_similarity: Similarity score at save time.
        duration_estimate: Seconds of analyzed motion.
        source: Video path or camera label, if known.
    """
    __tablename__ = "serve_sessions"

    session_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    camera_angle: Mapped[str] = mapped_column(String(10), nullable=False)
    analysis_type: Mapped[str] = mapped_column(String(50), nullable=False, default="tennis_serve")
    source: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    elbow_angle: Mapped[float] = mapped_column(Float, nullable=False)
    knee_angle: Mapped[float] = mapped_column(Float, nullable=False)
    x_factor: Mapped[float] = mapped_column(Float, nullable=False)
    contact_height: Mapped[float] = mapped_column(Float, nullable=False)
    follow_through: Mapped[float] = mapped_column(Float, nullable=False)

    final_similarity: Mapped[float] = mapped_column(Float, nullable=False)
    final_phase: Mapped[str] = mapped_column(String(20), nullable=False)
    duration_estimate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Relationships
    samples: Mapped[List["MetricsSample"]] = relationship(
        "MetricsSample",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="MetricsSample.sample_index",
    )

    def final_metrics(self) -> Dict[str, float]:
        return {
            "elbow_angle": self.elbow_angle,
            "knee_angle": self.knee_angle,
            "x_factor": self.x_factor,
            "contact_height": self.contact_height,
            "follow_through": self.follow_through,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "recorded_at": self.recorded_at.isoformat() if self.recorded_at else None,
            "camera_angle": self.camera_angle,
            "analysis_type": self.analysis_type,
            "source": self.source,
            "final_metrics": self.final_metrics(),
            "final_similarity": self.final_similarity,
            "final_phase": self.final_phase,
            "duration_estimate": self.duration_estimate,
            "samples": len(self.samples),
        }

    def __repr__(self) -> str:
        return (
            f"<ServeSession(id={self.session_id}, {self.recorded_at}, "
            f"phase={self.final_phase}, similarity={self.final_similarity:.1f})>"
        )


class MetricsSample(Base):
    """One entry of a session's trimmed metrics history."""
    __tablename__ = "metrics_samples"

    sample_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("serve_sessions.session_id"), nullable=False, index=True
    )
    sample_index: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp: Mapped[float] = mapped_column(Float, nullable=False)
    phase: Mapped[str] = mapped_column(String(20), nullable=False)
    similarity: Mapped[float] = mapped_column(Float, nullable=False)

    elbow_angle: Mapped[float] = mapped_column(Float, nullable=False)
    knee_angle: Mapped[float] = mapped_column(Float, nullable=False)
    x_factor: Mapped[float] = mapped_column(Float, nullable=False)
    contact_height: Mapped[float] = mapped_column(Float, nullable=False)
    follow_through: Mapped[float] = mapped_column(Float, nullable=False)

    # Relationships
    session: Mapped["ServeSession"] = relationship("ServeSession", back_populates="samples")

    __table_args__ = (
        Index("idx_sample_session_index", "session_id", "sample_index"),
    )

    def __repr__(self) -> str:
        return f"<MetricsSample(session={self.session_id}, index={self.sample_index}, phase={self.phase})>"
