# core/db.py
"""
Database access for the compensation engine.

One engine per process, created lazily from Config.DATABASE_URL.
Services never open sessions themselves: callers (CLI, event handlers,
scripts) obtain one here and hand it to the service constructor.
"""
import logging
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker, Session

from config import Config
from models import Base

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///affiliate_engine.db"

_engine: Optional[Engine] = None
_SessionFactory = None


def _connect_args(url: str) -> dict:
    # Event handlers may run the session on a different thread than the one that opened it
    if make_url(url).get_backend_name() == "sqlite":
        return {"check_same_thread": False}
    return {}


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        url = Config.get(Config.DATABASE_URL, DEFAULT_DATABASE_URL)
        _engine = create_engine(
            url,
            echo=False,
            pool_pre_ping=True,
            connect_args=_connect_args(url),
        )
        logger.info(f"Compensation database engine created: {make_url(url).render_as_string(hide_password=True)}")
    return _engine


def get_session_factory():
    global _SessionFactory
    if _SessionFactory is None:
        _SessionFactory = sessionmaker(bind=get_engine(), expire_on_commit=True)
    return _SessionFactory


def bind_engine(engine: Optional[Engine]):
    """
    Replace the process engine (None drops it so the next call rebuilds
    from Config.DATABASE_URL). Tests bind an in-memory engine here.
    """
    global _engine, _SessionFactory
    _engine = engine
    _SessionFactory = None


def get_session() -> Session:
    """New session; the caller commits and closes it."""
    return get_session_factory()()


@contextmanager
def session_scope():
    """
    Session committed on success, rolled back on any error.

    Usage:
        with session_scope() as session:
            BinaryPlacementService(session).placeNode("n2", "n1")
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Rolled back compensation transaction: {e}")
        raise
    finally:
        session.close()


def setup_database():
    """Create nodes, ledger, marker, pending and rank history tables."""
    engine = get_engine()
    Base.metadata.create_all(engine)
    logger.info(f"Tables ready: {', '.join(sorted(Base.metadata.tables))}")


def drop_all_tables():
    """Drop every engine table, ledger included. Irreversible."""
    engine = get_engine()
    logger.warning(f"Dropping tables: {', '.join(sorted(Base.metadata.tables))}")
    Base.metadata.drop_all(engine)
