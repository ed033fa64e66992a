# rentwatch/config/logging_config.py

"""Per-run log files for the rentwatch pipeline.

Every invocation (scheduled run, ``run`` from the CLI, a health check)
writes to its own ``logs/run_<YYYYMMDD>_<HHMMSS>.log``.  All
``rentwatch.*`` loggers propagate to the package logger configured
here, so acquirer, extractor, ingestor and alert output for one run
ends up in a single file.

The console only shows ``RENTWATCH_CONSOLE_LOG_LEVEL`` and above
(WARNING by default); stdout is left free for ``--json`` output.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

from rentwatch.config.settings import Settings

PACKAGE_LOGGER = "rentwatch"

_FILE_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | "
    "%(module)s:%(funcName)s:%(lineno)d | %(message)s"
)
_CONSOLE_FORMAT = "%(levelname)-8s %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _run_log_path(directory: Path) -> Path:
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return directory / f"run_{stamp}.log"


def _file_handler(path: Path) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, _DATE_FORMAT))
    return handler


def _console_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    return handler


def setup_logging(logs_dir: Path | None = None) -> Path:
    """Attach the run file and console handlers to the package logger.

    Safe to call more than once: when handlers are already attached
    they are kept and only the would-be path is returned.
    """
    directory = logs_dir or Settings.LOGS_DIR
    directory.mkdir(parents=True, exist_ok=True)
    log_file = _run_log_path(directory)

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(logging.DEBUG)
    if package_logger.handlers:
        return log_file

    console_level = logging.getLevelName(Settings.CONSOLE_LOG_LEVEL)
    if not isinstance(console_level, int):
        console_level = logging.WARNING

    package_logger.addHandler(_file_handler(log_file))
    package_logger.addHandler(_console_handler(console_level))
    package_logger.debug(
        "Run log %s (console level %s)",
        log_file,
        logging.getLevelName(console_level),
    )
    return log_file
