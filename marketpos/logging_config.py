# Logging configuration - rotating file, console, error alert hook

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

LOG_DIR = Path(__file__).resolve().parent.parent / "logs"
LOG_FILE = LOG_DIR / "marketpos.log"
LOG_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
LOG_BACKUP_COUNT = 5
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
# Libraries whose DEBUG output drowns the till's own records
QUIET_LOGGERS = ("urllib3",)

# callback(message, level), called for ERROR and CRITICAL records
_error_alert_callback: Optional[Callable[[str, str], None]] = None


def set_error_alert_callback(callback: Optional[Callable[[str, str], None]]):
    global _error_alert_callback
    _error_alert_callback = callback


class ErrorAlertHandler(logging.Handler):
    """Forwards ERROR and CRITICAL records to the registered callback"""

    def emit(self, record: logging.LogRecord):
        callback = _error_alert_callback
        if record.levelno < logging.ERROR or callback is None:
            return
        try:
            callback(self.format(record), record.levelname)
        except Exception:
            self.handleError(record)


def resolve_level(level: Union[int, str, None]) -> int:
    """'debug' / 'WARNING' / 10 -> logging level; unknown names fall back to INFO"""
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level or 'INFO').upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logging(
    log_path: Optional[Path] = None,
    max_bytes: int = LOG_MAX_BYTES,
    backup_count: int = LOG_BACKUP_COUNT,
    console: bool = True,
    level: Union[int, str] = logging.INFO,
) -> None:
    log_path = Path(log_path or LOG_FILE)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    level = resolve_level(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)

    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)

    alert_handler = ErrorAlertHandler()
    alert_handler.setLevel(logging.ERROR)
    alert_handler.setFormatter(formatter)
    root.addHandler(alert_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def setup_from_config(config: Dict[str, Any]) -> Path:
    """Apply the log_path, log_level and log_console keys; returns the log file in use"""
    log_path = Path(config.get('log_path') or LOG_FILE)
    setup_logging(
        log_path,
        console=bool(config.get('log_console', True)),
        level=config.get('log_level', 'INFO'),
    )
    return log_path
