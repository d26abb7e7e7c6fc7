"""
Runtime configuration.

Values come from environment variables, optionally seeded from a .env file:

- BOMTRAIL_AUTO_VERSION_THRESHOLD: bulk operations touching at least this many
  items create a version automatically (default 10)
- BOMTRAIL_MAX_BATCH_SIZE: per-commit operation cap of the item store
  (default 500)
- BOMTRAIL_DB_URL (or DATABASE_URL): PostgreSQL connection string for
  PostgresItemStore
"""

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

DEFAULT_AUTO_VERSION_THRESHOLD = 10
DEFAULT_MAX_BATCH_SIZE = 500


@dataclass(frozen=True)
class Settings:
    auto_version_threshold: int = DEFAULT_AUTO_VERSION_THRESHOLD
    max_batch_size: int = DEFAULT_MAX_BATCH_SIZE
    database_url: Optional[str] = None


def _positive_int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if value < 1:
        raise ValueError(f"{name} must be at least 1, got {value}")
    return value


def load_settings(env_file: Optional[str] = None) -> Settings:
    """
    Build Settings from the environment.

    Args:
        env_file: Optional path to a .env file. When omitted, python-dotenv
                  searches for one starting from the working directory.
                  Variables already present in the environment win.

    Returns:
        Settings instance

    Raises:
        ValueError: If a numeric variable is not a positive integer
    """
    load_dotenv(env_file)

    return Settings(
        auto_version_threshold=_positive_int_from_env(
            "BOMTRAIL_AUTO_VERSION_THRESHOLD", DEFAULT_AUTO_VERSION_THRESHOLD
        ),
        max_batch_size=_positive_int_from_env(
            "BOMTRAIL_MAX_BATCH_SIZE", DEFAULT_MAX_BATCH_SIZE
        ),
        database_url=os.getenv("BOMTRAIL_DB_URL") or os.getenv("DATABASE_URL"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, loaded once."""
    return load_settings()
