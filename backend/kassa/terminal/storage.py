# Overview: Embedded SQLite storage shared by the journal and the staff receipt cache.

from __future__ import annotations

import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

logger = logging.getLogger(__name__)

LocalBase = declarative_base()


def _set_sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=FULL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def create_local_engine(path: str) -> Engine:
    """
    Open (and create if needed) the till database at path.

    WAL with synchronous=FULL: a committed append survives a crash or power
    loss right after checkout.
    """
    engine = create_engine(
        f"sqlite:///{path}",
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _set_sqlite_pragmas)

    # Table classes register on LocalBase at import time.
    from . import journal, staff_cache  # noqa: F401

    LocalBase.metadata.create_all(engine)
    logger.debug("Opened local store at %s", path)
    return engine
