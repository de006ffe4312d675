"""Logger construction for the shell. One logger per session, passed down explicitly."""

import logging
import os
import time
from typing import Optional

LOGGER_NAME = "ax_shell"
LOG_DIR = "/tmp/ax-shell-logs"
LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(threadName)s] %(name)s: %(message)s"


def default_log_path() -> str:
    """Transient debug log path, e.g. /tmp/ax-shell-logs/debug_2024-05-01_10-00-00.log"""
    stamp = time.strftime("%Y-%m-%d_%H-%M-%S")
    return os.path.join(LOG_DIR, f"debug_{stamp}.log")


def setup_logger(debug: bool = False, log_file: Optional[str] = None,
                 name: str = LOGGER_NAME) -> logging.Logger:
    """Configure and return the session logger.

    Console gets warnings (everything with debug=True). When log_file is given
    the full debug stream also goes to that file.
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setLevel(logging.DEBUG if debug else logging.WARNING)
    console.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    logger.addHandler(console)

    if log_file:
        folder = os.path.dirname(log_file)
        if folder:
            os.makedirs(folder, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)
        logger.info("--- ax-shell debug log started at %s ---", time.strftime("%Y-%m-%d %H:%M:%S"))

    return logger


def get_logger(logger: Optional[logging.Logger] = None, component: Optional[str] = None) -> logging.Logger:
    """Injected logger if given, else the shared ax_shell logger (optionally a child)."""
    base = logger if logger is not None else logging.getLogger(LOGGER_NAME)
    return base.getChild(component) if component else base
