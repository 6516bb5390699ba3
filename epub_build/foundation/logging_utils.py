"""Logging helpers that avoid heavy dependencies."""

from __future__ import annotations

import logging
import os
from datetime import datetime

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"


def generate_run_id() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def _attach(logger: logging.Logger, handler: logging.Handler, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)


def setup_build_logger(
    log_dir: str | None,
    run_id: str,
    *,
    verbose: bool = False,
) -> tuple[logging.Logger, str | None]:
    """
    Configure the operational logger for one build invocation.

    Logs go to stderr (INFO, or DEBUG when verbose) and, when `log_dir` is set,
    to a UTF-8 file `<run_id>_build.log` at DEBUG.
    """

    logger = logging.getLogger(f"epub_build.{run_id}")
    close_logger(logger)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    _attach(logger, logging.StreamHandler(), logging.DEBUG if verbose else logging.INFO)

    log_file: str | None = None
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        log_file = os.path.join(log_dir, f"{run_id}_build.log")
        _attach(logger, logging.FileHandler(log_file, encoding="utf-8"), logging.DEBUG)
        logger.debug("Build log file: %s", log_file)

    return logger, log_file


def close_logger(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
