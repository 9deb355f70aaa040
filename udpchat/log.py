"""
Logging setup for the command-line apps. Library code only emits records.
"""
import sys

from loguru import logger

LOG_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <7}</level> | "
    "<cyan>{name}</cyan> | {message}"
)


def configure_logging(level: str = "INFO") -> None:
    # replace loguru's default sink so the level flag is honoured
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)
