from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Sequence

from .files import write_file
from .hwdetect import UEFI

logger = logging.getLogger(__name__)

Runner = Callable[..., bool]

GRUB = "grub"
SYSTEMD_BOOT = "systemd-boot"
LIMINE = "limine"
BOOTLOADERS = [GRUB, SYSTEMD_BOOT, LIMINE]

LIMINE_SHARE = "/usr/share/limine"


def install_grub(run: Runner, *, boot_mode: str, disk: str = "", efi_dir: str = "/boot") -> None:
    if boot_mode == UEFI:
        argv = [
            "grub-install",
            "--target=x86_64-efi",
            f"--efi-directory={efi_dir}",
            "--bootloader-id=GRUB",
            "--recheck",
        ]
    else:
        argv = ["grub-install", "--target=i386-pc", "--recheck", disk]
    run(argv, operation="bootloader-install")
    run(["grub-mkconfig", "-o", "/boot/grub/grub.cfg"], operation="bootloader-config")
    logger.info("GRUB installed (%s)", boot_mode)


def install_systemd_boot(
    run: Runner,
    *,
    root_uuid: str,
    kernels: Sequence[str],
    microcode: str = "",
    boot_dir: str = "/boot",
    dry_run: bool = False,
) -> None:
    """bootctl install plus one loader entry per kernel."""

    run(["bootctl", "install"], operation="bootloader-install")

    entries = Path(boot_dir) / "loader" / "entries"
    for kernel in kernels:
        lines = [f"title   Arch Linux ({kernel})", f"linux   /vmlinuz-{kernel}"]
        if microcode:
            lines.append(f"initrd  /{microcode}.img")
        lines.append(f"initrd  /initramfs-{kernel}.img")
        lines.append(f"options root=UUID={root_uuid} rw")
        write_file(str(entries / f"arch-{kernel}.conf"), "\n".join(lines) + "\n", dry_run=dry_run)

    default = kernels[0] if kernels else "linux"
    write_file(
        str(Path(boot_dir) / "loader" / "loader.conf"),
        f"default arch-{default}.conf\ntimeout 3\neditor no\n",
        dry_run=dry_run,
    )
    logger.info("systemd-boot installed with %d entr%s", len(kernels), "y" if len(kernels) == 1 else "ies")


def render_limine_conf(*, root_uuid: str, kernels: Sequence[str], microcode: str = "") -> str:
    lines = ["timeout: 3", ""]
    for kernel in kernels:
        lines.append(f"/Arch Linux ({kernel})")
        lines.append("    protocol: linux")
        lines.append(f"    path: boot():/vmlinuz-{kernel}")
        lines.append(f"    cmdline: root=UUID={root_uuid} rw")
        if microcode:
            lines.append(f"    module_path: boot():/{microcode}.img")
        lines.append(f"    module_path: boot():/initramfs-{kernel}.img")
        lines.append("")
    return "\n".join(lines)


def install_limine(
    run: Runner,
    *,
    boot_mode: str,
    root_uuid: str,
    kernels: Sequence[str],
    microcode: str = "",
    disk: str = "",
    boot_dir: str = "/boot",
    efi_dir: str = "/boot",
    dry_run: bool = False,
) -> None:
    """Deploy the Limine binaries and write limine.conf next to the kernels.

    UEFI uses the removable fallback path, so no NVRAM entry is needed.
    """

    if boot_mode == UEFI:
        run(
            ["install", "-D", "-m", "0644", f"{LIMINE_SHARE}/BOOTX64.EFI", f"{efi_dir}/EFI/BOOT/BOOTX64.EFI"],
            operation="bootloader-install",
        )
    else:
        run(
            ["install", "-D", "-m", "0644", f"{LIMINE_SHARE}/limine-bios.sys", f"{efi_dir}/limine/limine-bios.sys"],
            operation="bootloader-install",
        )
        run(["limine", "bios-install", disk], operation="bootloader-install")

    write_file(
        str(Path(boot_dir) / "limine.conf"),
        render_limine_conf(root_uuid=root_uuid, kernels=kernels, microcode=microcode),
        dry_run=dry_run,
    )
    logger.info("Limine installed (%s) with %d entr%s", boot_mode, len(kernels), "y" if len(kernels) == 1 else "ies")
