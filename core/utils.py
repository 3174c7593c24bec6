"""
Logging and time formatting helpers

Log lines look like:
    [2024/05/01 21:04:11] [INFO] [Scan] Index ready: 5120 songs
Warnings and errors go to stderr, everything else to stdout.
"""
import sys
import threading
from datetime import datetime

# Log levels
LOG_LEVEL_DEBUG = 0
LOG_LEVEL_INFO = 1
LOG_LEVEL_WARNING = 2
LOG_LEVEL_ERROR = 3

_LEVEL_NAMES = {
    LOG_LEVEL_DEBUG: "DEBUG",
    LOG_LEVEL_INFO: "INFO",
    LOG_LEVEL_WARNING: "WARN",
    LOG_LEVEL_ERROR: "ERROR",
}

# Set from config.DEBUG or --debug at startup
_current_log_level = LOG_LEVEL_INFO

# Scan workers log from executor threads
_log_lock = threading.Lock()


def set_log_level(level: int):
    global _current_log_level
    _current_log_level = level


def get_log_level() -> int:
    return _current_log_level


def log(tag: str, message: str, level: int = LOG_LEVEL_INFO):
    """
    Write one log line.

    Args:
        tag: Subsystem tag ("Scan", "Subscription", "WebServer", ...)
        message: Log message
        level: One of the LOG_LEVEL_* constants
    """
    if level < _current_log_level:
        return

    stamp = datetime.now().strftime("%Y/%m/%d %H:%M:%S")
    line = f"[{stamp}] [{_LEVEL_NAMES.get(level, 'INFO')}] [{tag}] {message}"
    stream = sys.stderr if level >= LOG_LEVEL_WARNING else sys.stdout
    with _log_lock:
        print(line, file=stream, flush=True)


def log_debug(tag: str, message: str):
    log(tag, message, LOG_LEVEL_DEBUG)


def log_info(tag: str, message: str):
    log(tag, message, LOG_LEVEL_INFO)


def log_warning(tag: str, message: str):
    log(tag, message, LOG_LEVEL_WARNING)


def log_error(tag: str, message: str):
    log(tag, message, LOG_LEVEL_ERROR)


def format_hms(seconds: int) -> str:
    """
    Format seconds as a UPnP "HH:MM:SS" time value.

    Args:
        seconds: Whole seconds

    Returns:
        String like "00:03:25"
    """
    seconds = max(0, int(seconds))
    return f"{seconds // 3600:02d}:{(seconds // 60) % 60:02d}:{seconds % 60:02d}"
