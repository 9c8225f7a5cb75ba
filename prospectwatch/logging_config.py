import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DEFAULT_DEBUG_LOG = "debug.log"


def setup_logging(debug: bool = False, log_file: Optional[str | Path] = None) -> logging.Logger:
    """Configure the ``prospectwatch`` logger tree.

    Warnings and errors always reach the console. With ``debug`` on, every
    record also goes to ``log_file`` (``debug.log`` by default), truncated at
    startup.
    """
    logger = logging.getLogger("prospectwatch")
    logger.setLevel(logging.DEBUG if debug else logging.INFO)

    if not logger.handlers:
        formatter = logging.Formatter(LOG_FORMAT)

        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG if debug else logging.WARNING)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

        if debug:
            file_handler = logging.FileHandler(log_file or DEFAULT_DEBUG_LOG, mode="w", encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    return logger
