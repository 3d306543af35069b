"""File path resolution using platformdirs.

Paths resolve to the platform user data directory unless CONVOSIM_HOME
points somewhere else:
  macOS: ~/Library/Application Support/convosim/
  Linux: ~/.local/share/convosim/
  Windows: %LOCALAPPDATA%/convosim/
"""

import os
from pathlib import Path

import platformdirs

APP_NAME = "convosim"


def get_data_dir() -> Path:
    """Return the directory for persistent data (DB, reports)."""
    override = os.environ.get("CONVOSIM_HOME", "").strip()
    if override:
        return Path(override).expanduser()
    return Path(platformdirs.user_data_dir(APP_NAME, appauthor=False))


def get_reports_dir() -> Path:
    """Return the directory CSV reports are written to by default."""
    return get_data_dir() / "reports"


def get_default_db_path() -> Path:
    """Return the default SQLite database file path."""
    return get_data_dir() / "convosim.db"


def ensure_dirs_exist() -> None:
    """Create all required directories if they don't exist."""
    for d in [get_data_dir(), get_reports_dir()]:
        d.mkdir(parents=True, exist_ok=True)
