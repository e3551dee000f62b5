# price_monitor/config/logging_config.py

"""Per-run log file for the API server and the one-shot check.

A process gets one ``logs/run_YYYYMMDD_HHMMSS.log``.  Everything under
the ``price_monitor`` logger tree lands there at DEBUG, so a monitoring
pass can be followed product by product after the fact; the console
only echoes what the caller asks for.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

from price_monitor.config.settings import Settings

PROJECT_LOGGER = "price_monitor"

_FILE_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | %(threadName)s | "
    "%(module)s:%(funcName)s:%(lineno)d | %(message)s"
)
_CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _run_log_path() -> Path:
    Settings.LOGS_DIR.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return Settings.LOGS_DIR / f"run_{stamp}.log"


def _handler(
    handler: logging.Handler, level: int, fmt: str,
) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=_DATE_FORMAT))
    return handler


def setup_logging(
    console_level: int = logging.WARNING,
    include: tuple[str, ...] = (),
) -> Path:
    """Attach the run file and console handlers to ``price_monitor``.

    Args:
        console_level: Minimum level echoed to stderr.  ``serve`` passes
            ``logging.INFO``; ``check`` keeps the default so the Rich
            output stays readable.
        include: Extra third-party loggers (e.g. ``"werkzeug"``) whose
            records should also be written to the run file.

    Returns:
        Path of this run's log file.  When handlers are already
        installed the existing setup is kept and a fresh path is
        returned without creating it.
    """
    log_file = _run_log_path()
    project = logging.getLogger(PROJECT_LOGGER)
    project.setLevel(logging.DEBUG)

    if project.handlers:
        return log_file

    file_handler = _handler(
        logging.FileHandler(log_file, encoding="utf-8"),
        logging.DEBUG,
        _FILE_FORMAT,
    )
    console_handler = _handler(
        logging.StreamHandler(sys.stderr), console_level, _CONSOLE_FORMAT,
    )
    project.addHandler(file_handler)
    project.addHandler(console_handler)

    for name in include:
        extra = logging.getLogger(name)
        extra.setLevel(logging.INFO)
        extra.addHandler(file_handler)

    project.info("Logging initialised, log file: %s", log_file)
    return log_file
