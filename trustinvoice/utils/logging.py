"""
Logging setup.

Configures the loguru logger for the settlement engine.
"""

import sys

from loguru import logger

from trustinvoice.config.settings import Settings


def setup_logging(settings: Settings) -> None:
    """Configure stderr sink and optional rotating file sink."""
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)

    if settings.log_file:
        logger.add(
            settings.log_file,
            rotation="1 day",
            retention="7 days",
            level=settings.log_level,
            encoding="utf-8",
        )

    logger.info(f"Settlement engine logging configured ({settings.environment})")
