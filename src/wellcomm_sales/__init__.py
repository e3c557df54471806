"""Sales ingestion and commission toolkit for Wellcomm installation records.

Importing the package configures the shared ``log`` object used by every
layer: a rotating file under ``.logs/`` plus a stderr stream.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


__version__ = "0.1.0"

PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.environ.get("WELLCOMM_SALES_LOG_DIR", PROJECT_ROOT / ".logs"))
LOG_FILE = LOG_DIR / "wellcomm_sales.log"
LOG_LEVEL = os.environ.get("WELLCOMM_SALES_LOG_LEVEL", "INFO").upper()


def _configure_logging() -> logging.Logger:
    """Attach file and console handlers to the package logger once."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level = logging.getLevelName(LOG_LEVEL)
    if not isinstance(level, int):
        level = logging.INFO
    logger.setLevel(level)
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as exc:
        print(
            f"Warning: unable to initialize log file at '{LOG_FILE}': {exc}",
            file=sys.stderr,
        )

    # Reports go to stdout; keep the console quiet unless something is off.
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(max(level, logging.WARNING))
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


log = _configure_logging()
log.debug("Logger initialized for the 'wellcomm_sales' package.")
