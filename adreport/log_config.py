"""Logging setup for report runs.

Log files live in `logs/` (relative to CWD unless configured) and rotate
daily through TimedRotatingFileHandler.

- Rotation: daily (midnight, UTC).
- Retention: `retention_days` rotated files (default 30).
- Level: `level` (default INFO), applied to file and console handlers.
"""
from __future__ import annotations

import logging
import os
import glob
import time
from logging.handlers import TimedRotatingFileHandler

from .utils.numbers import clamp_int

_LOG_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"
_LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_LOG_FILE = "adreport.log"

# Our handlers, removed again when logging is reconfigured.
_file_handler: logging.Handler | None = None
_console_handler: logging.Handler | None = None


def setup_logging(
    level: str = "INFO",
    log_dir: str = "logs",
    retention_days: int = 30,
    *,
    to_file: bool = True,
) -> None:
    """Configure the root logger: rotating file handler + console handler."""
    global _file_handler, _console_handler

    level_str = (level or "INFO").strip().upper()
    if level_str not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        level_str = "INFO"
    log_level = getattr(logging, level_str, logging.INFO)

    retention_days = clamp_int(retention_days, default=30, min_v=1, max_v=365)

    root = logging.getLogger()

    if _file_handler and _file_handler in root.handlers:
        root.removeHandler(_file_handler)
        _file_handler.close()
        _file_handler = None
    if _console_handler and _console_handler in root.handlers:
        root.removeHandler(_console_handler)

    formatter = logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATE_FORMAT)

    if to_file:
        log_dir = log_dir or "logs"
        os.makedirs(log_dir, exist_ok=True)
        fh = TimedRotatingFileHandler(
            os.path.join(log_dir, _LOG_FILE),
            when="midnight",
            interval=1,
            backupCount=retention_days,
            encoding="utf-8",
            utc=True,
        )
        fh.suffix = "%Y-%m-%d"
        fh.setLevel(log_level)
        fh.setFormatter(formatter)
        root.addHandler(fh)
        _file_handler = fh
        _cleanup_old_logs(log_dir, retention_days)

    ch = logging.StreamHandler()
    ch.setLevel(log_level)
    ch.setFormatter(formatter)
    root.addHandler(ch)
    _console_handler = ch

    root.setLevel(log_level)

    # ldap3 is chatty at DEBUG
    logging.getLogger("ldap3").setLevel(max(log_level, logging.WARNING))

    logging.getLogger("adreport").debug(
        "Логирование настроено: уровень=%s, каталог=%s, хранение=%d дней",
        level_str, log_dir, retention_days,
    )


def _cleanup_old_logs(log_dir: str, retention_days: int) -> None:
    """Remove rotated log files older than retention_days."""
    cutoff = time.time() - (retention_days * 86400)
    for f in glob.glob(os.path.join(log_dir, _LOG_FILE + ".*")):
        try:
            if os.path.getmtime(f) < cutoff:
                os.remove(f)
        except OSError:
            logging.getLogger(__name__).debug("Не удалось удалить старый лог %s", f, exc_info=True)
