"""Input grammars for values a human types during a stage.

Each validator returns the (possibly normalized) value or raises InvalidInput
with a diagnostic; callers re-prompt instead of substituting a default.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Callable, Optional, Sequence

from .errors import InvalidInput

HOSTNAME_RE = re.compile(r"[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?")
TIMEZONE_RE = re.compile(r"UTC|[A-Z][A-Za-z0-9_+-]+/[A-Z][A-Za-z0-9_+-]+(/[A-Z][A-Za-z0-9_+-]+)?")
LOCALE_RE = re.compile(r"[a-z]{2,3}_[A-Z]{2}\.([Uu][Tt][Ff]-?8)")
KEYMAP_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.-]*")
USERNAME_RE = re.compile(r"[a-z_][a-z0-9_-]{0,31}")

ZONEINFO = "/usr/share/zoneinfo"


def validate_hostname(value: str) -> str:
    value = value.strip()
    if not value:
        raise InvalidInput("Hostname cannot be empty", fix="Example: arch-desktop")
    if not HOSTNAME_RE.fullmatch(value):
        raise InvalidInput(
            f"Invalid hostname: {value}",
            "Use only letters, numbers and hyphens (max 63 characters)",
            "Hostname must start and end with an alphanumeric character",
        )
    return value


def validate_timezone(value: str, *, zoneinfo: str = ZONEINFO) -> str:
    value = value.strip().replace("../", "").strip("/")
    if not value:
        raise InvalidInput("Timezone cannot be empty", fix="Example: America/New_York")
    if not TIMEZONE_RE.fullmatch(value):
        raise InvalidInput(
            f"Invalid timezone format: {value}",
            "Expected Region/City or Region/Subregion/City",
            "Example: America/New_York",
        )
    root = Path(zoneinfo)
    if root.is_dir() and not (root / value).is_file():
        regions = sorted(p.name for p in root.iterdir() if p.is_dir() and p.name[:1].isupper())
        raise InvalidInput(
            f"Unknown timezone: {value}",
            f"No such zone under {zoneinfo}",
            f"Available regions: {', '.join(regions[:20])}" if regions else f"List zones in {zoneinfo}",
        )
    return value


def validate_locale(value: str) -> str:
    value = value.strip()
    if not LOCALE_RE.fullmatch(value):
        raise InvalidInput(
            f"Invalid locale format: {value}",
            "Expected language_TERRITORY.UTF-8",
            "Example: en_US.UTF-8",
        )
    return value


def validate_keymap(value: str) -> str:
    value = value.strip()
    if not KEYMAP_RE.fullmatch(value):
        raise InvalidInput(
            f"Invalid keyboard layout: {value!r}",
            "Keymap names contain letters, digits, '-', '_' and '.'",
            "List layouts with: localectl list-keymaps",
        )
    return value


def validate_username(value: str) -> str:
    value = value.strip()
    if value == "root":
        raise InvalidInput("The desktop user cannot be root", fix="Choose a regular user name")
    if not USERNAME_RE.fullmatch(value):
        raise InvalidInput(
            f"Invalid username: {value!r}",
            "Start with a lowercase letter or '_', then lowercase letters, digits, '-' or '_' (max 32)",
            "Example: alex",
        )
    return value


def block_device_validator(is_block_device: Callable[[str], bool]) -> Callable[[str], str]:
    def validate(value: str) -> str:
        value = value.strip()
        if not value:
            raise InvalidInput("Disk cannot be empty", fix="Example: /dev/sda")
        if not is_block_device(value):
            raise InvalidInput(
                f"{value} is not a valid block device",
                "The bootloader is written to a whole disk",
                "List disks with: lsblk -d -o NAME,SIZE,TYPE",
            )
        return value

    return validate


def choice_validator(choices: Sequence[str], label: Optional[str] = None) -> Callable[[str], str]:
    def validate(value: str) -> str:
        value = value.strip()
        if value not in choices:
            raise InvalidInput(
                f"Invalid {label or 'choice'}: {value!r}",
                fix=f"Choose one of: {', '.join(choices)}",
            )
        return value

    return validate
