"""Centralized logging configuration for scenecoder"""

import logging
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler

from .config import LOG_LEVEL
from .utils import get_timestamp


def configure_logging(log_level: Optional[str] = None, log_dir: Optional[Path] = None) -> Optional[Path]:
    """Central logging configuration for all modules

    Returns the path of the run's log file when file logging is enabled.
    """
    level = (log_level or LOG_LEVEL).upper()
    numeric_level = logging.getLevelName(level)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    logger = logging.getLogger("scenecoder")
    logger.setLevel(numeric_level)

    # Remove existing handlers
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    console_handler = RichHandler(show_path=False, rich_tracebacks=True)
    console_handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    logger.addHandler(console_handler)

    log_file = None
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / f"scenecoder_{get_timestamp()}.log"
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        ))
        # The file always gets the full story
        file_handler.setLevel(logging.DEBUG)
        logger.setLevel(min(numeric_level, logging.DEBUG))
        console_handler.setLevel(numeric_level)
        logger.addHandler(file_handler)

    logger.propagate = False
    logging.captureWarnings(True)
    return log_file
