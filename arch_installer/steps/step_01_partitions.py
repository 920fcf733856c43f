from __future__ import annotations

import logging
import os

from ..errors import PreconditionFailed
from ..lib.block import strip_subvolume
from ..lib.hwdetect import BIOS, UEFI, microcode_package
from ..pipeline import HOST_SIDE, ROOT, Stage, StageContext
from ..validators import choice_validator

logger = logging.getLogger(__name__)


class PartitionsStep(Stage):
    """Verify the mounted target and record what the later stages need to know about it.

    Partitioning itself is left to the human (fdisk/cfdisk + mkfs + mount).
    """

    stage_id = "partitions"
    marker = "01-partitions-ready"
    title = "Verify target partitions"
    privilege = ROOT
    context = HOST_SIDE

    def check(self, ctx: StageContext) -> None:
        root = ctx.config.target_root
        if not ctx.host.is_mountpoint(root):
            raise PreconditionFailed(
                f"Root partition not mounted at {root}",
                "Every later stage installs into the mounted target",
                f"Partition the disk, create the filesystems and mount the root partition: mount /dev/<root> {root}",
            )

    def interact(self, ctx: StageContext) -> None:
        root = ctx.config.target_root
        host = ctx.host

        boot_mode = ctx.detected("BOOT_MODE", host.boot_mode, validate=choice_validator([UEFI, BIOS], "boot mode"))
        ctx.set("ROOT_PARTITION", strip_subvolume(host.mount_source(root)))
        ctx.set("ROOT_FS", host.mount_fstype(root))

        boot = os.path.join(root, "boot")
        if boot_mode == UEFI:
            if not host.is_mountpoint(boot):
                raise PreconditionFailed(
                    f"EFI partition not mounted at {boot}",
                    "UEFI systems boot from the EFI system partition",
                    f"Mount it: mount --mkdir /dev/<efi> {boot}",
                )
            ctx.set("EFI_PARTITION", host.mount_source(boot))
        else:
            ctx.set("EFI_PARTITION", "")

        vendor = ctx.detected("CPU_VENDOR", host.cpu_vendor)
        ctx.set("MICROCODE_PKG", microcode_package(vendor) or "")

    def execute(self, ctx: StageContext) -> None:
        for key in ("BOOT_MODE", "ROOT_PARTITION", "ROOT_FS", "EFI_PARTITION", "CPU_VENDOR", "MICROCODE_PKG"):
            logger.info("  %s=%s", key, ctx.get(key) or "-")
