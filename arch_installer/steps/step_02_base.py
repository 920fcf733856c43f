from __future__ import annotations

import logging
import os
from typing import List

from ..errors import CommandError, ExternalCommandFailed, PreconditionFailed, UserCancelled
from ..lib.command import run_cmd
from ..lib.files import append_file, guarded_file
from ..lib.hwdetect import UEFI, microcode_package
from ..lib.pkg import pacman_install, pacstrap
from ..pipeline import HOST_SIDE, ROOT, Gate, Stage, StageContext
from ..session import target_state_dir

logger = logging.getLogger(__name__)

BASE_PACKAGES = ["base", "linux-firmware", "networkmanager", "grub", "vim", "sudo", "nano"]

KERNELS = [
    ("linux", "linux (stable)"),
    ("linux-lts", "linux-lts (long-term support)"),
    ("linux-zen", "linux-zen (desktop tuned)"),
    ("linux-hardened", "linux-hardened (security focused)"),
]

MIN_FREE_MB = 2048
LOW_FREE_MB = 5120

MIRRORLIST = "/etc/pacman.d/mirrorlist"


class BaseInstallStep(Stage):
    stage_id = "base"
    marker = "02-base-installed"
    title = "Install the base system"
    privilege = ROOT
    context = HOST_SIDE
    needs_network = True
    gates = (
        Gate(
            "01-partitions-ready",
            hard=False,
            reason="Partitions are expected to be verified and mounted",
            fix="arch-installer run partitions",
        ),
    )

    def check(self, ctx: StageContext) -> None:
        root = ctx.config.target_root
        if not ctx.host.is_mountpoint(root):
            raise PreconditionFailed(
                f"Root partition not mounted at {root}",
                "pacstrap installs into the mounted target",
                "Run: arch-installer run partitions",
            )
        free = ctx.host.free_mb(root)
        if free < MIN_FREE_MB:
            raise PreconditionFailed(
                f"Insufficient space on {root}: {free} MB free",
                f"The base system needs at least {MIN_FREE_MB} MB",
                "Use a larger root partition",
            )

    def interact(self, ctx: StageContext) -> None:
        root = ctx.config.target_root
        free = ctx.host.free_mb(root)
        if free < LOW_FREE_MB and not ctx.confirm(
            f"Low disk space on {root}: {free} MB. Installation may fail. Continue anyway?"
        ):
            raise UserCancelled(f"Stopped: low disk space on {root}")

        ctx.choose_many("SELECTED_KERNELS", "Kernels to install", KERNELS, checked=["linux"], required=True)

        if ctx.get("BOOT_MODE") is None:
            ctx.detected("BOOT_MODE", ctx.host.boot_mode)
        if ctx.get("MICROCODE_PKG") is None:
            vendor = ctx.detected("CPU_VENDOR", ctx.host.cpu_vendor)
            ctx.set("MICROCODE_PKG", microcode_package(vendor) or "")

    def packages(self, ctx: StageContext) -> List[str]:
        packages = BASE_PACKAGES + ctx.get_list("SELECTED_KERNELS")
        microcode = ctx.get("MICROCODE_PKG")
        if microcode:
            packages.append(microcode)
        if ctx.get("BOOT_MODE") == UEFI:
            packages.append("efibootmgr")
        return packages

    def execute(self, ctx: StageContext) -> None:
        root = ctx.config.target_root

        if pacman_install(ctx.run, ["reflector"], operation="mirror-optimize"):
            ctx.run(
                ["reflector", "--latest", "20", "--protocol", "https", "--sort", "rate", "--save", MIRRORLIST],
                operation="mirror-optimize",
            )

        pacstrap(ctx.run, root, self.packages(ctx))

        fstab = os.path.join(root, "etc", "fstab")
        with guarded_file(fstab, backup_dir=ctx.config.backup_dir, dry_run=ctx.dry_run):
            try:
                result = run_cmd(["genfstab", "-U", root], dry_run=ctx.dry_run)
            except CommandError as e:
                op = ctx.config.operations["fstab"]
                raise ExternalCommandFailed(e.what, op.why, op.fix) from e
            append_file(fstab, result.stdout, dry_run=ctx.dry_run)
        logger.info("fstab generated at %s", fstab)

    def handoff(self, ctx: StageContext) -> None:
        root = ctx.config.target_root
        target = target_state_dir(root)
        if ctx.dry_run:
            logger.info("Would carry session into %s", str(target))
        else:
            ctx.session.carry_into(target)
        logger.info("Next: arch-chroot %s, then: arch-installer run configure", root)
