"""Restaurant back office kept in a single Excel workbook.

Importing the package sets up the shared ``resto_erp`` logger that every
module uses through ``from . import log``. Records go to a rotating file under
``.logs/`` at the project root and to stderr. ``RESTO_ERP_LOG_LEVEL`` (a
standard level name such as ``DEBUG``) overrides the default ``INFO``.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


__version__ = "0.1.0"

PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = PROJECT_ROOT / ".logs"
LOG_FILE = LOG_DIR / "resto_erp.log"
LOG_LEVEL_ENV = "RESTO_ERP_LOG_LEVEL"


def _resolve_level(value: str | None) -> int:
    """Map a level name to its number; unknown or missing names mean ``INFO``."""

    level = logging.getLevelName((value or "").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _configure_logging() -> logging.Logger:
    """Attach the file and console handlers once per process."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level = _resolve_level(os.environ.get(LOG_LEVEL_ENV))
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
            f"Warning: restaurant ERP log file '{LOG_FILE}' is unavailable, logging to stderr only: {exc}",
            file=sys.stderr,
        )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


log = _configure_logging()
log.info("Restaurant ERP %s started (log level %s)", __version__, logging.getLevelName(log.level))
