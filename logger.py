"""
Logging setup for the SageExcel API.

Usage:
    from logger import get_logger

    logger = get_logger(__name__)
    logger.info("File %s uploaded by %s", file_id, email)
"""
import logging
import os
import sys

_configured = False


def setup_logging(level: str = None) -> None:
    """Configure root logging. Call once at startup; later calls are no-ops."""
    global _configured
    if _configured:
        return

    level = level or os.getenv("LOG_LEVEL", "INFO")
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stdout,
        force=True,
    )
    _configured = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
