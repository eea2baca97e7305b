import logging
import os
from datetime import datetime
from pathlib import Path

DEFAULT_LOG_DIR = Path("logs")

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_LOGGERS = {}


def _log_dir() -> Path:
    raw = os.getenv("SCORING_LOG_DIR")
    return Path(raw) if raw else DEFAULT_LOG_DIR


def _console_level() -> int:
    raw = (os.getenv("SCORING_LOG_LEVEL") or "INFO").upper()
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else logging.INFO


def _console_handler(formatter: logging.Formatter) -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    handler.setLevel(_console_level())
    return handler


def _file_handler(formatter: logging.Formatter, runtime: str) -> logging.Handler:
    log_dir = _log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")

    handler = logging.FileHandler(log_dir / f"{runtime}-{timestamp}.log", encoding="utf-8")
    handler.setFormatter(formatter)
    return handler


def get_logger(
    name: str,
    *,
    runtime: str = "scoring",
) -> logging.Logger:
    """
    Create or retrieve a named logger.

    Parameters:
    - name: logger namespace (e.g. scoring.ledger, services.results_api)
    - runtime: log file prefix (scoring | api)

    Environment:
    - SCORING_LOG_LEVEL: console threshold (default INFO); files get DEBUG
    - SCORING_LOG_DIR: where per-run log files go (default ./logs)
    - SCORING_LOG_FILE=0: console only
    """
    cache_key = f"{runtime}:{name}"
    if cache_key in _LOGGERS:
        return _LOGGERS[cache_key]

    logger = logging.getLogger(cache_key)
    logger.setLevel(logging.DEBUG)

    formatter = logging.Formatter(_FORMAT)
    logger.addHandler(_console_handler(formatter))
    if os.getenv("SCORING_LOG_FILE", "1") != "0":
        logger.addHandler(_file_handler(formatter, runtime))

    logger.propagate = False
    _LOGGERS[cache_key] = logger

    return logger
