# shared.py
"""
Shared state module - prevents circular imports between main.py and ship_checker.py.

This module contains:
- Timezone configuration
- Registered push tokens (the live recipient set read by the ship checker)
- Process start time for uptime reporting
- Loguru sink configuration
"""
import sys
import time
from typing import Set

import pytz
from loguru import logger

from config import TIMEZONE_NAME, LOG_LEVEL

# Timezone of the watch point (scheduler and human-facing timestamps)
TIMEZONE = pytz.timezone(TIMEZONE_NAME)

# Registered push tokens (Expo or native FCM). Mutated by the HTTP handlers,
# read fresh by every ship check cycle.
registered_tokens: Set[str] = set()

# Monotonic process start, for /health uptime
started_at = time.monotonic()


def configure_logging(level: str = LOG_LEVEL) -> None:
    """Replace loguru's default sink with the compact service format."""
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        level=level,
        enqueue=False,
        colorize=False  # Disable colors for Docker
    )
