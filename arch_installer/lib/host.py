from __future__ import annotations

import os
import pwd
import shutil
from typing import Optional

from .block import is_block_device, is_mountpoint, mount_fstype, mount_source
from .chroot import detect_environment
from .hwdetect import detect_boot_mode, detect_cpu_vendor
from .net import is_online


class Host:
    """Facts about the machine the stage runs on.

    Stages only reach the running system through this object so they can be
    exercised against a fake host.
    """

    def is_root(self) -> bool:
        return os.geteuid() == 0

    def username(self) -> str:
        return pwd.getpwuid(os.geteuid()).pw_name

    def environment(self) -> str:
        return detect_environment()

    def is_online(self, host: str, timeout: int) -> bool:
        return is_online(host, timeout)

    def is_mountpoint(self, path: str) -> bool:
        return is_mountpoint(path)

    def is_block_device(self, dev: str) -> bool:
        return is_block_device(dev)

    def mount_source(self, path: str) -> str:
        return mount_source(path)

    def mount_fstype(self, path: str) -> str:
        return mount_fstype(path)

    def boot_mode(self) -> str:
        return detect_boot_mode()

    def cpu_vendor(self) -> str:
        return detect_cpu_vendor()

    def free_mb(self, path: str) -> int:
        return shutil.disk_usage(path).free // (1024 * 1024)

    def user_exists(self, name: str) -> bool:
        try:
            pwd.getpwnam(name)
        except KeyError:
            return False
        return True

    def which(self, command: str) -> Optional[str]:
        return shutil.which(command)
