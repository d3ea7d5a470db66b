"""
Logging setup for Clarity, built on Loguru.

One console sink, plus rotating file sinks when enabled: the main log
(optionally JSON-serialized) and a warnings-and-above log used to review
inference and parse failures.
"""

import sys
from pathlib import Path

from loguru import logger

from clarity.config import LoggingConfig

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[component]}:{line} - {message}"


def setup_logging(config: LoggingConfig | None = None) -> list[int]:
    """
    Replace Loguru's default sink with Clarity's sinks.

    Args:
        config: Logging section of the app config (defaults when omitted)

    Returns:
        Ids of the sinks added, for callers that want to remove them again
    """
    config = config or LoggingConfig()
    logger.remove()
    logger.configure(extra={"component": "clarity"})

    sink_ids = [
        logger.add(sys.stderr, level=config.level, format=CONSOLE_FORMAT, colorize=True)
    ]

    if config.log_to_file:
        log_path = Path(config.log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        sink_ids.append(
            logger.add(
                log_path / "clarity_{time:YYYY-MM-DD}.log",
                level=config.level,
                format=FILE_FORMAT,
                rotation=config.file_rotation,
                retention=config.file_retention,
                compression=config.compression,
                serialize=config.serialize,
                enqueue=True,
            )
        )
        sink_ids.append(
            logger.add(
                log_path / "clarity_errors.log",
                level="WARNING",
                format=FILE_FORMAT,
                rotation=config.file_rotation,
                retention=config.file_retention,
                enqueue=True,
            )
        )

    return sink_ids


def get_logger(name: str):
    """Logger bound to the short component name of a module."""
    return logger.bind(component=name.rsplit(".", 1)[-1], module=name)
