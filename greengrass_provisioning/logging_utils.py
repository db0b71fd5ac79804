from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from .lib.env import PATHS

DEFAULT_LOG_PATH = PATHS.log_default
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 3


def _file_handler(path: str, fmt: logging.Formatter) -> logging.Handler:
    Path(os.path.dirname(path) or ".").mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS)
    handler.setFormatter(fmt)
    handler.setLevel(logging.DEBUG)
    return handler


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    verbose: bool = False,
    also_console: bool = True,
) -> str:
    """Configure the root logger once per process.

    The file always receives DEBUG. If ``log_path`` cannot be opened (no
    /var/log write access when run unprivileged) the log goes next to the
    working directory instead.

    Returns the actual file path being used.
    """

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    if getattr(root, "_ggprov_configured", False):
        return getattr(root, "_ggprov_log_path", log_path)

    fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )

    handlers: list[logging.Handler] = []
    try:
        handlers.append(_file_handler(log_path, fmt))
        chosen_path = log_path
    except OSError:
        chosen_path = str(Path.cwd() / Path(log_path).name)
        handlers.append(_file_handler(chosen_path, fmt))

    if also_console:
        console = logging.StreamHandler()
        console.setFormatter(fmt)
        console.setLevel(logging.DEBUG if verbose else logging.INFO)
        handlers.append(console)

    for h in handlers:
        root.addHandler(h)

    setattr(root, "_ggprov_configured", True)
    setattr(root, "_ggprov_log_path", chosen_path)
    setattr(root, "_ggprov_handlers", handlers)

    logging.getLogger(__name__).info(
        "Logging initialized (requested=%s, actual=%s)", log_path, chosen_path
    )
    return chosen_path


def reset_logging(log: Optional[logging.Logger] = None) -> None:
    """Drop handlers installed by configure_logging (tests re-run main())."""

    root = log or logging.getLogger()
    if not getattr(root, "_ggprov_configured", False):
        return
    for h in getattr(root, "_ggprov_handlers", []):
        root.removeHandler(h)
        h.close()
    setattr(root, "_ggprov_handlers", [])
    setattr(root, "_ggprov_configured", False)
