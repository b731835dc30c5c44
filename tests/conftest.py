"""Root-level pytest fixtures for all tests.

Provides shared fixtures including:
- Database fixtures (file-based SQLite, session factory, store)
- Configuration with short session timeouts
"""

import os
import tempfile
from collections.abc import Callable, Generator
from typing import Any

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

# Keep the module-level engine in src.db.connection off the real data dir.
os.environ.setdefault("CHATRELAY_DATA_DIR", tempfile.mkdtemp(prefix="chatrelay-test-"))

from src.config import ChatRelayConfig, SessionConfig
from src.db.models import Base
from src.services.conversation_store import ConversationStore


# ============================================================================
# Pytest Markers
# ============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests that take a long time to run"
    )


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def file_based_db() -> Generator[str, None, None]:
    """Create a file-based SQLite database.

    Unlike in-memory databases, this is safe to use from the worker
    threads the store runs in via asyncio.to_thread.
    """
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(engine)
    engine.dispose()

    yield path

    os.unlink(path)


@pytest.fixture
def session_factory(file_based_db: str) -> Generator[Callable[[], Session], None, None]:
    """Session factory bound to the temp database, foreign keys enforced."""
    engine = create_engine(
        f"sqlite:///{file_based_db}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _fk_on(dbapi_connection: Any, connection_record: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory: Callable[[], Session]) -> ConversationStore:
    return ConversationStore(session_factory)


@pytest.fixture
def fast_config() -> ChatRelayConfig:
    """Config with session waits short enough for tests."""
    return ChatRelayConfig(
        session=SessionConfig(start_timeout_seconds=0.5, send_start_timeout_seconds=0.5)
    )
