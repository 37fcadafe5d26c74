# db.py
import os
import logging
from contextlib import contextmanager

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

load_dotenv()

logger = logging.getLogger(__name__)

# Fallback to local SQLite database if DATABASE_URL not set
DEFAULT_DATABASE_URL = "sqlite:///./local.db"
DATABASE_URL = os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL


def _build_engine(url):
    return create_engine(url, pool_pre_ping=True, future=True)


engine = _build_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    future=True,
    expire_on_commit=False,
)

# Base class for declarative models
Base = declarative_base()


def get_engine():
    return engine


def configure_engine(url):
    """Point the engine and every SessionLocal() at a different database."""
    global engine, DATABASE_URL
    if url == DATABASE_URL:
        return engine

    engine.dispose()
    engine = _build_engine(url)
    DATABASE_URL = url
    SessionLocal.configure(bind=engine)

    if url.startswith("sqlite"):
        logger.info("Using SQLite database at %s", url)
    else:
        logger.info("Using hosted database")
    return engine


@contextmanager
def session_scope():
    """One unit of work: commit on success, roll back on any error."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

