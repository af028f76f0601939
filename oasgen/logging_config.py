"""Logging setup for applications embedding oasgen error handling."""

import sys
from pathlib import Path
from typing import List, Optional, Union

from loguru import logger

from oasgen.config.schemas import LoggingConfig

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"

# Records bound with this key belong to the handler's error log sink.
ERROR_SINK_KEY = "error_sink"


def _not_error_sink(record) -> bool:
    return ERROR_SINK_KEY not in record["extra"]


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Union[str, Path]] = None,
    rotation: str = "10 MB",
    retention: str = "1 week",
) -> List[int]:
    """Configure loguru sinks for the application.

    Replaces existing sinks with a coloured stderr sink and, when
    ``log_file`` is given, a rotating file sink at DEBUG level.

    Returns:
        Ids of the added sinks
    """
    logger.remove()

    sink_ids = [
        logger.add(
            sys.stderr,
            format=CONSOLE_FORMAT,
            level=level.upper(),
            filter=_not_error_sink,
        )
    ]

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        sink_ids.append(
            logger.add(
                path,
                format=FILE_FORMAT,
                rotation=rotation,
                retention=retention,
                level="DEBUG",
                filter=_not_error_sink,
            )
        )

    logger.debug(f"Logging configured at {level.upper()}")
    return sink_ids


def setup_logging_from_config(config: LoggingConfig) -> List[int]:
    return setup_logging(config.level, config.file, config.rotation, config.retention)
