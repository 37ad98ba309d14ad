# models/base.py
"""
Database plumbing for the order store and the callback event log.

DATABASE_URL picks the backend (Postgres in deployment, SQLite in tests).
The engine is built on first use, so importing the models never needs a
database.
"""
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy import create_engine
from contextlib import contextmanager
import os


class Base(DeclarativeBase):
    pass


def make_engine(url: str):
    kwargs = {"pool_pre_ping": True, "future": True}
    if url.startswith("sqlite"):
        # callback dispatch runs the store on a worker thread
        kwargs["connect_args"] = {"check_same_thread": False}
    return create_engine(url, **kwargs)


def make_engine_from_env():
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set; the order store has no database")
    return make_engine(url)


_Engine = None
_SessionFactory = None


def init_engine_and_session():
    """Engine and session factory for the order tables, created once per process."""
    global _Engine, _SessionFactory
    if _Engine is None:
        _Engine = make_engine_from_env()
        _SessionFactory = sessionmaker(
            bind=_Engine,
            autoflush=False,
            autocommit=False,
            future=True,
            # order rows are read after the session closes (status lookups)
            expire_on_commit=False,
        )
    return _Engine, _SessionFactory


def SessionLocal():
    _, factory = init_engine_and_session()
    return factory()


@contextmanager
def session_scope():
    """
    One order store write: commit on success, roll back and re-raise on
    any error so the callback handler can acknowledge KO.
    """
    s = SessionLocal()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
