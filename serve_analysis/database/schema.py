"""Engine, table creation and session scopes for the session store."""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from serve_analysis.database.models import Base

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///data/serve_sessions.db"

# One engine and session factory per database URL
_engines: Dict[str, Engine] = {}
_factories: Dict[str, sessionmaker] = {}


def sqlite_path(database_url: str) -> Optional[Path]:
    """File behind a sqlite URL, or None for in-memory and non-sqlite databases."""
    prefix = "sqlite:///"
    if not database_url.startswith(prefix):
        return None
    path = database_url[len(prefix):]
    if not path or path == ":memory:":
        return None
    return Path(path)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine(database_url: str = DEFAULT_DATABASE_URL, echo: bool = False) -> Engine:
    """
    Get or create the engine for a database URL.

    File-backed SQLite databases get their parent directory created and
    foreign key enforcement switched on.

    Args:
        database_url: SQLAlchemy connection URL.
        echo: Log every SQL statement.

    Returns:
        Cached engine for the URL.
    """
    engine = _engines.get(database_url)
    if engine is not None:
        return engine

    db_file = sqlite_path(database_url)
    if db_file is not None:
        db_file.parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(database_url, echo=echo, pool_pre_ping=True)
    if database_url.startswith("sqlite"):
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)

    _engines[database_url] = engine
    logger.info(f"Database engine created: {database_url}")
    return engine


def get_session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    """
    Get or create the session factory bound to an engine.

    Args:
        engine: Engine to bind; the default database engine when omitted.
    """
    engine = engine or get_engine()
    key = str(engine.url)
    factory = _factories.get(key)
    if factory is None:
        factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        _factories[key] = factory
    return factory


def init_db(database_url: str = DEFAULT_DATABASE_URL, echo: bool = False) -> Engine:
    """Create the session tables if they do not exist and return the engine."""
    engine = get_engine(database_url, echo)
    Base.metadata.create_all(bind=engine)
    logger.debug(f"Session tables ready in {database_url}")
    return engine


@contextmanager
def session_scope(database_url: str = DEFAULT_DATABASE_URL) -> Iterator[Session]:
    """
    Open a session on an initialized database, closing it afterwards.

    Example:
        with session_scope(url) as session:
            SessionOperations(session).list_sessions()
    """
    session = get_session_factory(init_db(database_url))()
    try:
        yield session
    finally:
        session.close()


def reset_engine() -> None:
    """Dispose every cached engine (tests, switching databases)."""
    for engine in _engines.values():
        engine.dispose()
    _engines.clear()
    _factories.clear()
    logger.debug("Database engines reset")
