from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

CHROOT = "chroot"
LIVECD = "livecd"
INSTALLED = "installed"
UNKNOWN = "unknown"


def is_chroot(proc: str = "/proc") -> Optional[bool]:
    """Compare device/inode of / with PID 1's root. None when it cannot be determined."""

    try:
        ours = os.stat("/")
        init = os.stat(os.path.join(proc, "1", "root", "."))
    except OSError:
        return None
    return (ours.st_dev, ours.st_ino) != (init.st_dev, init.st_ino)


def is_live_media(cmdline: str = "/proc/cmdline") -> bool:
    try:
        return "archiso" in Path(cmdline).read_text(encoding="utf-8", errors="ignore")
    except OSError:
        return False


def detect_environment(
    *,
    proc: str = "/proc",
    arch_release: str = "/etc/arch-release",
) -> str:
    """Where are we running: chroot | livecd | installed | unknown."""

    if is_chroot(proc) is True:
        env = CHROOT
    elif is_live_media(os.path.join(proc, "cmdline")):
        env = LIVECD
    elif Path(arch_release).exists():
        env = INSTALLED
    else:
        env = UNKNOWN
    logger.debug("Detected environment: %s", env)
    return env
