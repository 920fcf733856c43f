from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from .errors import InstallerError
from .lib.env import PATHS

DEFAULT_LOG_PATH = PATHS.log_default


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    level: int = logging.INFO,
    also_console: bool = True,
) -> str:
    """Configure logging once per process.

    Every stage decision and external command goes to the log file. When the
    requested path is not writable (e.g. /var/log for an unprivileged stage)
    we fall back to ./arch-installer.log.

    Returns the actual file path being used.
    """

    root = logging.getLogger()
    root.setLevel(level)

    if getattr(root, "_arch_installer_configured", False):
        return getattr(root, "_arch_installer_log_path", log_path)

    chosen_path = log_path
    handlers: list[logging.Handler] = []

    file_fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )

    file_handler: Optional[logging.Handler] = None
    try:
        Path(os.path.dirname(log_path) or ".").mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
    except OSError:
        chosen_path = str(Path.cwd() / "arch-installer.log")
        file_handler = logging.FileHandler(chosen_path)
    file_handler.setFormatter(file_fmt)
    handlers.append(file_handler)

    if also_console:
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(fmt="[%(levelname)s] %(message)s"))
        handlers.append(console)

    for h in handlers:
        root.addHandler(h)

    setattr(root, "_arch_installer_configured", True)
    setattr(root, "_arch_installer_log_path", chosen_path)

    logging.getLogger(__name__).debug("Logging initialized (requested=%s, actual=%s)", log_path, chosen_path)
    return chosen_path


def log_error(logger: logging.Logger, error: InstallerError) -> None:
    lines = error.render()
    logger.error(lines[0])
    for line in lines[1:]:
        logger.error("  %s", line)
