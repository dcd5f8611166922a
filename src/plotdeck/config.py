"""Configuration management for the document processor."""

import os
import logging
from dataclasses import dataclass, field
from typing import List
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class Settings:
    """Processor settings with validation."""
    log_level: str = "WARNING"
    default_data_source: str = ":memory:"
    block_names: List[str] = field(default_factory=lambda: ["plotdeck"])

    def __post_init__(self):
        """Validate settings after initialization."""
        errors = []

        if self.log_level.upper() not in LOG_LEVELS:
            errors.append(f"PLOTDECK_LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}")

        if not self.default_data_source:
            errors.append("PLOTDECK_DEFAULT_DATA_SOURCE cannot be empty")

        if not self.block_names:
            errors.append("PLOTDECK_BLOCK_NAMES must name at least one block type")

        if errors:
            error_message = "Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            raise ValueError(error_message)


def load_settings() -> Settings:
    """
    Load settings from environment variables.

    Loads from .env file if present, then from environment variables.

    Returns:
        Settings object with validated values
    """
    load_dotenv()

    block_names = os.getenv("PLOTDECK_BLOCK_NAMES", "plotdeck")

    try:
        settings = Settings(
            log_level=os.getenv("PLOTDECK_LOG_LEVEL", "WARNING"),
            default_data_source=os.getenv("PLOTDECK_DEFAULT_DATA_SOURCE", ":memory:"),
            block_names=[n.strip() for n in block_names.split(",") if n.strip()],
        )
        logger.debug("Settings loaded successfully")
        return settings
    except ValueError as error:
        logger.error(f"Failed to load settings: {error}")
        raise


def setup_logging(log_level: str = "WARNING"):
    """
    Setup logging configuration.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
