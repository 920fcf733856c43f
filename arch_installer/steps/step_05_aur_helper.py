from __future__ import annotations

import logging
import tempfile
from pathlib import Path

from ..lib.pkg import missing_packages, pacman_install
from ..lib.privilege import PRIVILEGE_TOOLS, detect_privilege_tool, privileged
from ..pipeline import INSTALLED_SYSTEM, USER, Gate, Stage, StageContext, require_desktop_user
from ..validators import choice_validator

logger = logging.getLogger(__name__)

AUR_HELPERS = ["yay", "paru"]
AUR_URL = "https://aur.archlinux.org/{name}.git"
BUILD_DEPENDENCIES = ["git", "base-devel"]


class AurHelperStep(Stage):
    stage_id = "aur-helper"
    marker = "04-aur-helper-installed"
    title = "Install an AUR helper"
    privilege = USER
    context = INSTALLED_SYSTEM
    needs_network = True
    gates = (
        Gate(
            "03-desktop-installed",
            hard=False,
            reason="The AUR helper is normally installed for the desktop user",
            fix="Run as root: arch-installer run desktop",
        ),
    )

    def check(self, ctx: StageContext) -> None:
        require_desktop_user(ctx)

    def interact(self, ctx: StageContext) -> None:
        ctx.detected(
            "PRIVILEGE_TOOL",
            lambda: detect_privilege_tool(ctx.session.get("PRIVILEGE_TOOL")),
            validate=choice_validator(PRIVILEGE_TOOLS, "privilege tool"),
        )
        ctx.choose(
            "AUR_HELPER",
            "AUR helper",
            [("yay", "yay (Go, most popular)"), ("paru", "paru (Rust, feature rich)")],
            default="yay",
        )

    def execute(self, ctx: StageContext) -> None:
        helper = ctx.get("AUR_HELPER") or "yay"
        tool = ctx.get("PRIVILEGE_TOOL") or "sudo"

        pacman_install(ctx.run, missing_packages(BUILD_DEPENDENCIES), prefix=privileged([], tool))

        if ctx.host.which(helper):
            logger.info("%s is already installed", helper)
            return

        with tempfile.TemporaryDirectory(prefix="arch-installer-aur-") as tmp:
            build_dir = Path(tmp) / helper
            ctx.run(
                ["git", "clone", "--depth", "1", AUR_URL.format(name=helper), str(build_dir)],
                operation="aur-fetch",
            )
            ctx.run(
                ["makepkg", "-si", "--noconfirm"],
                operation="aur-build",
                cwd=str(build_dir),
                env={"PACMAN_AUTH": tool},
                capture=False,
            )
        logger.info("%s installed", helper)

    def handoff(self, ctx: StageContext) -> None:
        logger.info("Next: arch-installer run packages")
