"""
Database connection and session management.

Each store instance owns its engine; every operation acquires a session through
session_scope(), which commits on success, rolls back on error and always
closes. Driver-level connectivity failures are translated to StoreUnavailable;
constraint violations pass through untouched for the store to interpret.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from backend_zombie.core.exceptions import StoreUnavailable
from backend_zombie.zombie_logging import get_logger

logger = get_logger(__name__)

SQLITE_BUSY_TIMEOUT_SEC = 5.0


def redact_url(url: str) -> str:
    """Strip credentials and query string for logging."""
    return url.split("?")[0].split("@")[-1].split("//")[-1]


def create_store_engine(url: str) -> Engine:
    """Create an engine for `url`. In-memory SQLite shares one connection across threads."""
    connect_args: dict = {}
    kwargs: dict = {"pool_pre_ping": True}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = SQLITE_BUSY_TIMEOUT_SEC
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    engine = create_engine(url, connect_args=connect_args, **kwargs)
    logger.info("store_engine_created", url=redact_url(url))
    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """Context manager for a single session. Commits on success, rolls back on error."""
    try:
        session = factory()
    except OperationalError as e:
        raise StoreUnavailable(f"Could not open a store session: {e.orig or e}") from e
    try:
        yield session
        session.commit()
    except IntegrityError:
        session.rollback()
        raise
    except DBAPIError as e:
        session.rollback()
        logger.warning("store_session_failed", error=str(e.orig or e))
        raise StoreUnavailable(f"Store unavailable: {e.orig or e}") from e
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
