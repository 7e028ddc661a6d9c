"""
SQLAlchemy engine, session, and base. DB path from config or default.
"""
import logging
from pathlib import Path
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()

_engine = None
_SessionLocal = None


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Context manager for a single DB session. Commits on success, rolls back on error."""
    if _SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    session = _SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_engine():
    return _engine


def _default_db_url() -> str:
    base = Path.home() / ".ramadan_goals"
    base.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{base / 'ramadan_goals.db'}"


def init_db(config_data: Optional[dict] = None, db_url: Optional[str] = None) -> None:
    """
    Initialize database engine and create tables.
    config_data: app config dict; used for database.path if db_url not given.
    db_url: optional SQLAlchemy URL override.
    """
    global _engine, _SessionLocal

    if _engine is not None:
        logger.debug("Database already initialized")
        return

    if db_url is None and config_data:
        path = (config_data.get("database") or {}).get("path")
        if path:
            path = Path(path).expanduser().resolve()
            path.parent.mkdir(parents=True, exist_ok=True)
            db_url = f"sqlite:///{path}"

    if not db_url:
        db_url = _default_db_url()

    engine_kwargs = {"echo": False, "future": True}
    if db_url.startswith("sqlite"):
        # Store calls run in worker threads
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in db_url or db_url == "sqlite://":
            engine_kwargs["poolclass"] = StaticPool
    _engine = create_engine(db_url, **engine_kwargs)

    # Import model modules so tables are registered with Base
    from ramadan_goals.core import models as _core_models  # noqa: F401

    Base.metadata.create_all(_engine)
    _SessionLocal = sessionmaker(bind=_engine, autocommit=False, autoflush=False, expire_on_commit=False)
    logger.info(f"Database initialized: {db_url.split('?')[0]}")


def dispose_db() -> None:
    """Close the engine so init_db() can be called again (shutdown, tests)."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
        logger.debug("Database engine disposed")
    _engine = None
    _SessionLocal = None
