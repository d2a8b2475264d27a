"""Logging configuration for the application"""
import logging

from app.core.config import settings

# Named channels modules log to with logging.getLogger("<name>")
AUDIT_LOGGERS = ("payments", "security")

NOISY_LOGGERS = ("stripe", "openai", "httpx", "httpcore", "sqlalchemy.engine")


def setup_logging():
    """Configure root logging from LOG_LEVEL

    Payment and security events stay at INFO or finer whatever LOG_LEVEL says,
    so webhook outcomes and rejected tokens are always on record.
    """
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        force=True
    )

    for name in AUDIT_LOGGERS:
        logging.getLogger(name).setLevel(min(level, logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
