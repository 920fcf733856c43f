from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

UEFI = "UEFI"
BIOS = "BIOS"

_MICROCODE = {
    "intel": "intel-ucode",
    "amd": "amd-ucode",
}


def detect_boot_mode(sys_root: str = "/sys") -> str:
    firmware = Path(sys_root) / "firmware" / "efi"
    return UEFI if firmware.is_dir() else BIOS


def detect_cpu_vendor(cpuinfo: str = "/proc/cpuinfo") -> str:
    """intel | amd | unknown."""

    try:
        txt = Path(cpuinfo).read_text(encoding="utf-8", errors="ignore")
    except OSError:
        return "unknown"
    if "GenuineIntel" in txt:
        return "intel"
    if "AuthenticAMD" in txt:
        return "amd"
    return "unknown"


def microcode_package(vendor: str) -> Optional[str]:
    return _MICROCODE.get(vendor)
