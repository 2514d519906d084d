"""Logging infrastructure setup."""

import logging
import os
from pathlib import Path

_FORMAT = "%(asctime)s | %(levelname)-8s | %(module)s.%(funcName)s | %(message)s"


def setup_logger(
    name: str = "oqscore",
    log_file: str | None = None,
    level: int = logging.INFO,
) -> logging.Logger:
    """
    Configure and return the pipeline logger (file + console).

    Args:
        name (str): The name of the logger.
        log_file (str | None): Path to the log file. Defaults to ``$OQ_LOG_FILE``
            or ``output/pipeline.log``.
        level (int): Minimum level emitted by both handlers.

    Returns:
        logging.Logger: The configured logger instance.
    """
    log_path = Path(log_file or os.getenv("OQ_LOG_FILE", "output/pipeline.log"))
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)

    # Avoid adding multiple handlers if setup is called multiple times
    if logger.hasHandlers():
        return logger

    logger.setLevel(level)

    formatter = logging.Formatter(fmt=_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


# Create a default logger instance
logger = setup_logger()
