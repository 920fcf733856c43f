from __future__ import annotations

import logging
from contextlib import ExitStack
from pathlib import Path

from ..errors import InvalidInput, PreconditionFailed
from ..lib.block import get_uuid, parent_disk, strip_subvolume
from ..lib.bootloader import (
    BOOTLOADERS,
    GRUB,
    LIMINE,
    SYSTEMD_BOOT,
    install_grub,
    install_limine,
    install_systemd_boot,
)
from ..lib.files import guarded_file, replace_symlink, write_file
from ..lib.hwdetect import BIOS, UEFI
from ..lib.pkg import pacman_install, pacman_sync
from ..lib.sysconf import enable_locale, render_hosts, tune_pacman_conf
from ..pipeline import IN_CHROOT, ROOT, Gate, Stage, StageContext
from ..validators import (
    block_device_validator,
    choice_validator,
    validate_hostname,
    validate_keymap,
    validate_locale,
    validate_timezone,
)

logger = logging.getLogger(__name__)

AUDIO_SERVERS = {
    "pipewire": ["pipewire", "pipewire-alsa", "pipewire-pulse", "pipewire-jack", "wireplumber"],
    "pulseaudio": ["pulseaudio", "pulseaudio-alsa"],
}

# BIOS bootloader -> key of the disk it is installed to
BOOT_DISK_KEYS = {GRUB: "GRUB_DISK", LIMINE: "LIMINE_DISK"}

# Files rewritten by this stage; restored together if any later step of the stage fails.
SYSTEM_FILES = [
    "/etc/localtime",
    "/etc/locale.gen",
    "/etc/locale.conf",
    "/etc/vconsole.conf",
    "/etc/hostname",
    "/etc/hosts",
    "/etc/pacman.conf",
]


def _read(path: str) -> str:
    p = Path(path)
    return p.read_text(encoding="utf-8") if p.exists() else ""


class ConfigureSystemStep(Stage):
    stage_id = "configure"
    marker = "02-system-configured"
    title = "Configure the installed system"
    privilege = ROOT
    context = IN_CHROOT
    needs_network = True
    gates = (
        Gate(
            "01-partitions-ready",
            hard=True,
            reason="The system being configured lives on the prepared partitions",
            fix="Run the partitions and base stages from the installation media first",
        ),
        Gate(
            "02-base-installed",
            hard=False,
            reason="The base system is expected to be installed with pacstrap",
            fix="Exit the chroot and run: arch-installer run base",
        ),
    )

    def interact(self, ctx: StageContext) -> None:
        ctx.ask("HOSTNAME", "Hostname", validate_hostname)
        ctx.ask(
            "TIMEZONE",
            "Timezone (Region/City)",
            lambda v: validate_timezone(v, zoneinfo=ctx.path("/usr/share/zoneinfo")),
        )
        ctx.ask("LOCALE", "Locale", validate_locale, default="en_US.UTF-8")
        ctx.ask("KEYMAP", "Console keyboard layout", validate_keymap, default="us")

        if ctx.get("BOOT_MODE") is None:
            boot_mode = ctx.detected("BOOT_MODE", ctx.host.boot_mode)
        else:
            boot_mode = ctx.recall("BOOT_MODE", "Boot mode (UEFI/BIOS)", choice_validator([UEFI, BIOS], "boot mode"))

        if boot_mode == BIOS:
            if ctx.answers.get("BOOTLOADER", "").strip() == SYSTEMD_BOOT:
                raise InvalidInput(
                    "systemd-boot cannot be used in BIOS mode",
                    "systemd-boot only boots UEFI systems",
                    f"Pass --set BOOTLOADER={GRUB} or --set BOOTLOADER={LIMINE}",
                )
            bootloader = ctx.choose("BOOTLOADER", "Bootloader", [(GRUB, "GRUB"), (LIMINE, "Limine")], default=GRUB)
            root_partition = ctx.get("ROOT_PARTITION") or ""
            ctx.ask(
                BOOT_DISK_KEYS[bootloader],
                f"Disk to install {bootloader} to (e.g. /dev/sda)",
                block_device_validator(ctx.host.is_block_device),
                default=parent_disk(root_partition) if root_partition else None,
            )
        else:
            if not ctx.host.is_mountpoint("/boot"):
                raise PreconditionFailed(
                    "/boot is not mounted",
                    "UEFI installation requires the EFI partition mounted at /boot",
                    "Mount it before continuing: mount /dev/<efi> /boot",
                )
            ctx.choose(
                "BOOTLOADER",
                "Bootloader",
                [(GRUB, "GRUB"), (SYSTEMD_BOOT, "systemd-boot"), (LIMINE, "Limine")],
                default=GRUB,
            )

        ctx.choose(
            "AUDIO_SERVER",
            "Audio server",
            [("pipewire", "PipeWire (recommended)"), ("pulseaudio", "PulseAudio")],
            default="pipewire",
        )

    def write_system_files(self, ctx: StageContext) -> None:
        dry = ctx.dry_run
        hostname = ctx.get("HOSTNAME") or ""
        locale = ctx.get("LOCALE") or "en_US.UTF-8"

        replace_symlink(ctx.path("/etc/localtime"), f"/usr/share/zoneinfo/{ctx.get('TIMEZONE')}", dry_run=dry)
        ctx.run(["hwclock", "--systohc"], operation="hwclock")

        locale_gen = ctx.path("/etc/locale.gen")
        write_file(locale_gen, enable_locale(_read(locale_gen), locale), dry_run=dry)
        ctx.run(["locale-gen"], operation="locale-gen")
        write_file(ctx.path("/etc/locale.conf"), f"LANG={locale}\n", dry_run=dry)
        write_file(ctx.path("/etc/vconsole.conf"), f"KEYMAP={ctx.get('KEYMAP')}\n", dry_run=dry)

        write_file(ctx.path("/etc/hostname"), hostname + "\n", dry_run=dry)
        write_file(ctx.path("/etc/hosts"), render_hosts(hostname), dry_run=dry)

        pacman_conf = ctx.path("/etc/pacman.conf")
        write_file(pacman_conf, tune_pacman_conf(_read(pacman_conf)), dry_run=dry)

    def install_bootloader(self, ctx: StageContext) -> None:
        bootloader = ctx.get("BOOTLOADER") or GRUB
        if bootloader not in BOOTLOADERS:
            bootloader = GRUB
        boot_mode = ctx.get("BOOT_MODE") or UEFI

        if bootloader == GRUB:
            install_grub(ctx.run, boot_mode=boot_mode, disk=ctx.get("GRUB_DISK") or "")
            return

        root_uuid = get_uuid(strip_subvolume(ctx.host.mount_source("/")), dry_run=ctx.dry_run)
        kernels = ctx.get_list("SELECTED_KERNELS") or ["linux"]
        microcode = ctx.get("MICROCODE_PKG") or ""
        if bootloader == LIMINE:
            pacman_install(ctx.run, ["limine"])
            install_limine(
                ctx.run,
                boot_mode=boot_mode,
                disk=ctx.get("LIMINE_DISK") or "",
                root_uuid=root_uuid,
                kernels=kernels,
                microcode=microcode,
                boot_dir=ctx.path("/boot"),
                dry_run=ctx.dry_run,
            )
            return

        install_systemd_boot(
            ctx.run,
            root_uuid=root_uuid,
            kernels=kernels,
            microcode=microcode,
            boot_dir=ctx.path("/boot"),
            dry_run=ctx.dry_run,
        )

    def execute(self, ctx: StageContext) -> None:
        with ExitStack() as guard:
            for name in SYSTEM_FILES:
                guard.enter_context(
                    guarded_file(ctx.path(name), backup_dir=ctx.config.backup_dir, dry_run=ctx.dry_run)
                )
            self.write_system_files(ctx)

            pacman_sync(ctx.run)
            pacman_install(ctx.run, AUDIO_SERVERS[ctx.get("AUDIO_SERVER") or "pipewire"])

            if ctx.interactive:
                logger.info("Set a strong password for the root account")
                ctx.run(["passwd"], operation="password", capture=False)
            else:
                logger.warning("Non-interactive run: root password not set; run passwd before rebooting")

            self.install_bootloader(ctx)

            ctx.run(["systemctl", "enable", "NetworkManager"], operation="service-enable")
            if pacman_install(ctx.run, ["reflector"], operation="optional-packages"):
                ctx.run(["systemctl", "enable", "reflector.timer"], operation="service-enable")

    def handoff(self, ctx: StageContext) -> None:
        logger.info("Next: exit the chroot, unmount with umount -R /mnt and reboot")
        logger.info("Then log in as root and run: arch-installer run desktop")
