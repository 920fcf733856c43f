from __future__ import annotations

import logging
from typing import Dict, List, Sequence, Tuple

from ..errors import PreconditionFailed
from ..lib.pkg import aur_install
from ..lib.privilege import privileged
from ..pipeline import INSTALLED_SYSTEM, USER, Gate, Stage, StageContext, require_desktop_user
from ..validators import choice_validator
from .step_05_aur_helper import AUR_HELPERS

logger = logging.getLogger(__name__)

# group id -> (label, packages, services enabled once the group installed cleanly)
PACKAGE_GROUPS: Dict[str, Tuple[str, List[str], List[str]]] = {
    "cli-tools": ("Command line tools", ["htop", "btop", "fastfetch", "bat", "eza", "ripgrep", "fd", "tree"], []),
    "browsers": ("Web browser", ["firefox"], []),
    "multimedia": ("Multimedia", ["vlc", "mpv", "gst-plugins-good", "gst-libav"], []),
    "office": ("Office suite", ["libreoffice-fresh"], []),
    "printing": ("Printer support", ["cups", "cups-pdf", "system-config-printer"], ["cups.service"]),
    "bluetooth": ("Bluetooth", ["bluez", "bluez-utils", "blueman"], ["bluetooth.service"]),
    "laptop": ("Laptop power management", ["tlp", "powertop"], ["tlp.service"]),
    "fonts": ("Extra fonts", ["noto-fonts", "noto-fonts-emoji", "ttf-dejavu", "ttf-ms-fonts"], []),
}


def expand_groups(groups: Sequence[str]) -> List[str]:
    packages: List[str] = []
    for group in groups:
        for package in PACKAGE_GROUPS[group][1]:
            if package not in packages:
                packages.append(package)
    return packages


class PackagesStep(Stage):
    stage_id = "packages"
    marker = "05-packages-installed"
    title = "Install additional packages"
    privilege = USER
    context = INSTALLED_SYSTEM
    needs_network = True
    gates = (
        Gate(
            "04-aur-helper-installed",
            hard=True,
            reason="Packages are installed through the AUR helper",
            fix="Run: arch-installer run aur-helper",
        ),
    )

    def check(self, ctx: StageContext) -> None:
        require_desktop_user(ctx)

    def interact(self, ctx: StageContext) -> None:
        helper = ctx.recall("AUR_HELPER", "AUR helper", choice_validator(AUR_HELPERS, "AUR helper"), default="yay")
        if not ctx.dry_run and not ctx.host.which(helper):
            raise PreconditionFailed(
                f"AUR helper {helper} not found",
                "Packages are installed through it",
                "Run: arch-installer run aur-helper --force",
            )

        groups = ctx.choose_many(
            "PACKAGE_GROUPS",
            "Package groups to install",
            [(group, label) for group, (label, _, _) in PACKAGE_GROUPS.items()],
            checked=["cli-tools", "browsers"],
        )
        ctx.pending.set_list("SELECTED_PACKAGES", expand_groups(groups))

    def execute(self, ctx: StageContext) -> None:
        helper = ctx.get("AUR_HELPER") or "yay"
        tool = ctx.get("PRIVILEGE_TOOL") or "sudo"

        installed, failed = aur_install(ctx.run, helper, ctx.get_list("SELECTED_PACKAGES"))
        ctx.pending.set_list("FAILED_PACKAGES", failed)

        for group in ctx.get_list("PACKAGE_GROUPS"):
            _, packages, services = PACKAGE_GROUPS[group]
            if not services:
                continue
            if any(p in failed for p in packages):
                logger.warning("Not enabling services of %s: some packages failed", group)
                continue
            for service in services:
                ctx.run(privileged(["systemctl", "enable", service], tool), operation="service-enable")

        logger.info("Installed %d package(s)", len(installed))
        if failed:
            logger.warning("Failed packages (install later with %s -S): %s", helper, " ".join(failed))
