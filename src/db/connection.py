"""Database connection management for ChatRelay.

Provides synchronous database access using SQLAlchemy. The routing core
treats the store as synchronous-from-its-perspective and moves calls off
the event loop with asyncio.to_thread() at the call sites.

Usage:
    from src.db.connection import SessionLocal, init_db

    init_db()  # Create tables
    store = ConversationStore(SessionLocal)
"""

import logging
import os
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from src.db.models import Base

logger = logging.getLogger(__name__)


# Configuration
def get_database_url() -> str:
    """Get database URL from environment or use default SQLite.

    Precedence:
    1. DATABASE_URL (canonical)
    2. CHATRELAY_DB_PATH (converted to sqlite URL)
    3. sqlite:///<data dir>/chatrelay.db
    """
    database_url = os.environ.get("DATABASE_URL", "").strip()
    if database_url:
        return database_url

    db_path = os.environ.get("CHATRELAY_DB_PATH", "").strip()
    if db_path:
        if db_path.startswith("sqlite:"):
            return db_path
        return f"sqlite:///{db_path}"

    from src.utils.paths import get_default_db_path
    return f"sqlite:///{get_default_db_path()}"


# Engine creation
DATABASE_URL = get_database_url()

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False}
    if DATABASE_URL.startswith("sqlite")
    else {},
    echo=os.environ.get("SQL_ECHO", "").lower() == "true",
)


@event.listens_for(engine, "connect")
def set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
    """Configure SQLite pragmas for correctness and concurrency.

    Enables:
    - foreign_keys=ON: Referential integrity, needed for the message
      cascade (disabled by default in SQLite).
    - journal_mode=WAL: Concurrent readers alongside the single writer,
      so dashboard polling does not block ingestion.
    - synchronous=NORMAL: WAL durability without a full fsync per commit.
    """
    if DATABASE_URL.startswith("sqlite"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA synchronous=NORMAL;")
        cursor.close()


# Session factories
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,
)


def init_db() -> None:
    """Create all database tables synchronously.

    Safe to call multiple times - will not recreate existing tables.
    """
    Base.metadata.create_all(bind=engine)


def close_db() -> None:
    """Close the engine and dispose of the connection pool."""
    engine.dispose()
