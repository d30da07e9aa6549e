"""Configuration management for spillgrid."""

import logging
import os

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings(BaseModel):
    """Engine settings."""

    # Level applied to the "spillgrid" logger by configure_logging()
    log_level: str = os.getenv("SPILLGRID_LOG_LEVEL", "WARNING")

    # Default number of rows SHOWDATA previews
    showdata_rows: int = int(os.getenv("SPILLGRID_SHOWDATA_ROWS", "5"))

    # Array results with more cells than this are reported as #SPILL!
    max_spill_cells: int = int(os.getenv("SPILLGRID_MAX_SPILL_CELLS", "100000"))

    # Record FORMULA_INPUT / CELL_EDIT entries for the scoring subsystem
    log_operations: bool = _env_flag("SPILLGRID_LOG_OPERATIONS", "true")


def configure_logging(config: Settings | None = None) -> None:
    """Apply ``log_level`` to the package logger. Handlers are left to the host."""
    config = config or settings
    level = logging.getLevelName(config.log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {config.log_level!r}")
    logging.getLogger("spillgrid").setLevel(level)


settings = Settings()
