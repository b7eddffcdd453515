"""
Logging configuration for Still Space.

One stdout handler on the "stillspace" logger; every module asks for a
child logger through get_logger(). Level comes from LOG_LEVEL.
"""
import logging
import os
import sys

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger("stillspace")
logger.setLevel(LOG_LEVEL)

if not logger.handlers:
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(LOG_LEVEL)
    console_handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(console_handler)

# Prevent propagation to root logger (avoid duplicate logs under uvicorn)
logger.propagate = False

# Every proxied request would otherwise log twice
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str = None) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Optional name for the logger (will be appended to 'stillspace')

    Returns:
        Logger instance
    """
    if name:
        return logging.getLogger(f"stillspace.{name}")
    return logger
