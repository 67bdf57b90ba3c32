import os
import logging
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

from .engine.dates import DEFAULT_TIMEZONE
from .engine.levels import DEFAULT_LEVELS, LevelDefinition, load_level_table_file, validate_level_table

logger = logging.getLogger(__name__)

DEFAULT_ORIGINS = [
    "http://localhost:3000",
]


@dataclass(frozen=True)
class Settings:
    reference_timezone: str = DEFAULT_TIMEZONE
    level_table_path: str | None = None
    allowed_origins: tuple[str, ...] = tuple(DEFAULT_ORIGINS)
    cron_secret: str | None = None
    progress_max_attempts: int = 5


def _split_origins(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return tuple(DEFAULT_ORIGINS)
    return tuple(o.strip() for o in raw.split(",") if o.strip())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    load_dotenv()
    return Settings(
        reference_timezone=os.environ.get("REFERENCE_TIMEZONE") or DEFAULT_TIMEZONE,
        level_table_path=os.environ.get("LEVEL_TABLE_PATH") or None,
        allowed_origins=_split_origins(os.environ.get("ALLOWED_ORIGINS")),
        cron_secret=os.environ.get("CRON_SECRET") or None,
        progress_max_attempts=max(1, int(os.environ.get("PROGRESS_MAX_ATTEMPTS", "5"))),
    )


@lru_cache(maxsize=1)
def get_level_table() -> tuple[LevelDefinition, ...]:
    """Load the level table once per process. Raises ConfigurationError if it is invalid."""
    path = get_settings().level_table_path
    if path:
        table = load_level_table_file(path)
        logger.info("Loaded %d levels from %s", len(table), path)
        return table
    return validate_level_table(DEFAULT_LEVELS)
