"""
Logging setup.

The package logs through loguru and is disabled on import so that host
applications decide whether they want its output.
"""

import sys
from typing import Optional

from loguru import logger


def setup_logging(level: str = "INFO", sink: Optional[str] = None) -> int:
    """
    Enable superpay_sdk log output.

    Args:
        level: Minimum level to emit
        sink: Log file path; stderr when omitted

    Returns:
        The loguru handler id, for logger.remove()
    """
    logger.enable("superpay_sdk")
    if sink is None:
        return logger.add(sys.stderr, level=level)
    return logger.add(
        sink,
        rotation="1 day",
        retention="7 days",
        level=level,
        encoding="utf-8",
    )
