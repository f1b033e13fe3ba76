"""
Logging setup for harvest runs.

Every module logs through ``get_logger(__name__)``; a run calls
``init_harvest_logging`` once to attach a console handler and a dated file
handler (``<log_dir>/harvest_YYYYMMDD.log``) to the root logger.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

DEFAULT_LOG_LEVEL = "INFO"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Chatty at INFO/DEBUG and irrelevant to a run's story.
QUIET_LOGGERS = ("asyncio", "hpack", "httpx", "httpcore", "aiohttp.access")


def _resolve_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _handler(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    level: Union[str, int] = DEFAULT_LOG_LEVEL,
    log_file: Optional[str] = None,
    console: bool = True,
    log_dir: Optional[Path] = None,
) -> logging.Logger:
    """
    Configure the root logger for a harvest run.

    Args:
        level: Level name or number; unknown names fall back to INFO
        log_file: Explicit log file path (default: <log_dir>/harvest_<date>.log)
        console: Also log to stdout
        log_dir: Directory for the dated default log file (default: logs)

    Returns:
        The configured root logger

    Example:
        >>> logger = setup_logging(level="DEBUG", log_dir=Path("logs"))
        >>> logger.info("Harvest started")
    """
    numeric = _resolve_level(level)
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric)
    # Re-running setup (CLI in tests, repeated runs) must not stack handlers.
    root_logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    if console:
        root_logger.addHandler(_handler(logging.StreamHandler(sys.stdout), numeric, formatter))

    if log_file:
        log_path = Path(log_file)
    else:
        log_path = Path(log_dir or "logs") / f"harvest_{datetime.now():%Y%m%d}.log"
    log_path.parent.mkdir(exist_ok=True, parents=True)
    root_logger.addHandler(_handler(logging.FileHandler(log_path, encoding="utf-8"), numeric, formatter))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric, logging.WARNING))

    root_logger.info(f"Logging initialized - Level: {logging.getLevelName(numeric)}, File: {log_path}")
    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Module logger; pass ``__name__``."""
    return logging.getLogger(name)


def init_harvest_logging(verbose: bool = False, log_dir: Optional[Path] = None,
                         level: Optional[str] = None) -> logging.Logger:
    """
    Initialize logging for a harvest run.

    ``verbose`` forces DEBUG; otherwise ``level`` (usually ``Config.log_level``)
    or INFO is used.
    """
    if verbose:
        level = "DEBUG"
    return setup_logging(level=level or DEFAULT_LOG_LEVEL, log_dir=log_dir)
