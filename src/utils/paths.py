"""File path resolution using platformdirs.

CHATRELAY_DATA_DIR wins when set (containers, tests). Otherwise data
lives in the platform user data dir:
  macOS: ~/Library/Application Support/chatrelay/
  Linux: ~/.local/share/chatrelay/
"""

import os
from pathlib import Path

import platformdirs

APP_NAME = "chatrelay"


def get_data_dir() -> Path:
    """Return the directory for persistent data (database, bridge state)."""
    override = os.environ.get("CHATRELAY_DATA_DIR", "").strip()
    if override:
        return Path(override).expanduser()
    return Path(platformdirs.user_data_dir(APP_NAME, appauthor=False))


def get_default_db_path() -> Path:
    """Return the default SQLite database file path.

    Creates the data directory if needed so SQLite can open the file.
    """
    data_dir = get_data_dir()
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir / "chatrelay.db"
