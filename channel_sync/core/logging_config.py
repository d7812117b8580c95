# channel_sync/core/logging_config.py
"""
Centralized logging configuration for the application.

Keeps sync engine logs visible while reducing noise from HTTP clients,
the database driver and the scheduler.
"""

import logging
import os


def configure_logging():
    """
    Configure logging for the application.

    - App code: INFO (or whatever LOG_LEVEL says)
    - HTTP clients (httpx, httpcore): WARNING only
    - Database and scheduler: WARNING only
    """

    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, log_level, logging.INFO)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler()]
    )

    # Quiet noisy HTTP client loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    # Quiet database loggers
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    # APScheduler logs every job submission at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    logging.getLogger("channel_sync").setLevel(level)
    logging.getLogger("__main__").setLevel(level)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured at level: {log_level}")
