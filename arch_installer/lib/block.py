from __future__ import annotations

import logging
import os
import re
import stat

from ..errors import ExternalCommandFailed
from .command import run_cmd

logger = logging.getLogger(__name__)


def is_block_device(dev: str) -> bool:
    try:
        return stat.S_ISBLK(os.stat(dev).st_mode)
    except OSError:
        return False


def is_mountpoint(path: str) -> bool:
    return os.path.ismount(path)


def mount_source(path: str) -> str:
    """Device backing a mount point ('' if not mounted)."""

    r = run_cmd(["findmnt", "-n", "-o", "SOURCE", path], check=False)
    return r.stdout.strip() if r.returncode == 0 else ""


def mount_fstype(path: str) -> str:
    r = run_cmd(["findmnt", "-n", "-o", "FSTYPE", path], check=False)
    return (r.stdout.strip() if r.returncode == 0 else "") or "unknown"


def strip_subvolume(source: str) -> str:
    """findmnt reports btrfs subvolume mounts as /dev/sda2[/@]; return the device part."""

    return re.sub(r"\[.*\]$", "", source)


def parent_disk(partition: str) -> str:
    """/dev/sda3 -> /dev/sda, /dev/nvme0n1p2[/@] -> /dev/nvme0n1."""

    dev = strip_subvolume(partition)
    m = re.fullmatch(r"(/dev/(?:nvme\d+n\d+|mmcblk\d+|loop\d+))p\d+", dev)
    if m:
        return m.group(1)
    return re.sub(r"\d+$", "", dev)


def get_uuid(dev: str, *, dry_run: bool = False) -> str:
    """Return filesystem UUID for a block device."""

    r = run_cmd(["blkid", "-s", "UUID", "-o", "value", dev], dry_run=dry_run)
    uuid = (r.stdout or "").strip()
    if not uuid and not dry_run:
        raise ExternalCommandFailed(
            f"Unable to determine UUID for {dev}",
            "The boot entry must reference the root filesystem by UUID",
            f"Check the device with: blkid {dev}",
        )
    return uuid
