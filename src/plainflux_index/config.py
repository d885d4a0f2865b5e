"""Configuration module for the Plainflux index."""

import logging
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from plainflux_index import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config lives next to the application's settings folder
_USER_ENV = Path.home() / ".plainflux" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

DEFAULT_RESERVED_FOLDERS = ".plainflux,images,.git"


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def _split_folders(raw: str) -> List[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


class IndexConfig(BaseModel):
    """Configuration for the note index."""

    # Base directory used to anchor relative paths
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("PLAINFLUX_BASE_DIR", "."))
    )
    # Root of the knowledge base (the folder containing the .md files)
    notes_dir: Path = Field(
        default_factory=lambda: Path(
            os.getenv("PLAINFLUX_NOTES_DIR", str(Path.home() / "Notes"))
        )
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("PLAINFLUX_DATABASE_PATH", "notes_cache.db")
        )
    )
    # When True the index lives only in memory and is rebuilt by the first sync
    in_memory_db: bool = Field(
        default_factory=lambda: _env_flag("PLAINFLUX_IN_MEMORY_DB", "false")
    )
    # Folders (matched by name at any depth) that never contain indexable notes
    reserved_folders: List[str] = Field(
        default_factory=lambda: _split_folders(
            os.getenv("PLAINFLUX_RESERVED_FOLDERS", DEFAULT_RESERVED_FOLDERS)
        )
    )
    # Folder (relative to notes_dir) that holds one note per day
    daily_notes_folder: str = Field(
        default_factory=lambda: os.getenv("PLAINFLUX_DAILY_NOTES_FOLDER", "Daily Notes")
    )
    search_limit: int = Field(
        default_factory=lambda: int(os.getenv("PLAINFLUX_SEARCH_LIMIT", "100"))
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("PLAINFLUX_LOG_LEVEL", "INFO")
    )
    version: str = Field(default=__version__)

    @field_validator("search_limit")
    @classmethod
    def _validate_search_limit(cls, value: int) -> int:
        if value < 1:
            raise ValueError("search_limit must be >= 1")
        return value

    @field_validator("daily_notes_folder")
    @classmethod
    def _validate_daily_notes_folder(cls, value: str) -> str:
        if not value or ".." in Path(value).parts or Path(value).is_absolute():
            raise ValueError("daily_notes_folder must be a relative folder name")
        return value

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        path = Path(path).expanduser()
        if path.is_absolute():
            return path
        return (self.base_dir / path).resolve()

    def get_notes_dir(self) -> Path:
        """Get the absolute notes root."""
        return self.get_absolute_path(self.notes_dir)

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        if self.in_memory_db:
            return "sqlite:///:memory:"
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"

    def get_daily_notes_dir(self, notes_dir: Optional[Path] = None) -> Path:
        """Get the absolute daily-notes folder for a notes root."""
        root = Path(notes_dir) if notes_dir else self.get_notes_dir()
        return root / self.daily_notes_folder


# Create a global config instance
config = IndexConfig()
