"""Persistence of finished analysis sessions."""

from serve_analysis.database.models import Base, MetricsSample, ServeSession
from serve_analysis.database.operations import SessionOperations
from serve_analysis.database.schema import (
    get_engine,
    get_session_factory,
    init_db,
    reset_engine,
    session_scope,
)

__all__ = [
    "Base",
    "MetricsSample",
    "ServeSession",
    "SessionOperations",
    "get_engine",
    "get_session_factory",
    "init_db",
    "reset_engine",
    "session_scope",
]
