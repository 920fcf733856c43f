from __future__ import annotations

import logging
import os
from typing import Dict, List

from ..lib.files import guarded_file, write_file
from ..lib.pkg import pacman_install
from ..pipeline import INSTALLED_SYSTEM, ROOT, Gate, Stage, StageContext
from ..validators import validate_username

logger = logging.getLogger(__name__)

USER_GROUPS = ["wheel", "storage", "optical", "audio", "video", "network", "input", "power", "lp"]

XORG_PACKAGES = ["xorg-server", "xorg-xinit", "xorg-xrandr", "mesa", "xdg-user-dirs"]
WAYLAND_PACKAGES = ["mesa", "xdg-user-dirs", "xdg-desktop-portal", "polkit-gnome"]

FULL_DESKTOP = "desktop"
X11_WM = "x11-wm"
WAYLAND_WM = "wayland-wm"

DESKTOP_KINDS = [
    (FULL_DESKTOP, "Full desktop environment"),
    (X11_WM, "Window manager (X11)"),
    (WAYLAND_WM, "Window manager (Wayland)"),
]

DESKTOPS: Dict[str, List[str]] = {
    "cinnamon": ["cinnamon", "nemo-fileroller", "gnome-terminal", "gnome-keyring"],
    "gnome": ["gnome", "gnome-tweaks"],
    "plasma": ["plasma-meta", "konsole", "dolphin"],
    "xfce": ["xfce4", "xfce4-goodies", "network-manager-applet"],
}

DESKTOP_LABELS = {
    "cinnamon": "Cinnamon",
    "gnome": "GNOME",
    "plasma": "KDE Plasma",
    "xfce": "Xfce",
}

# kind -> {name: packages}
WINDOW_MANAGERS: Dict[str, Dict[str, List[str]]] = {
    X11_WM: {
        "i3": ["i3-wm", "i3status", "i3lock", "dmenu"],
        "bspwm": ["bspwm", "sxhkd"],
        "awesome": ["awesome"],
    },
    WAYLAND_WM: {
        "sway": ["sway", "swaybg", "swayidle", "swaylock", "xorg-xwayland"],
        "hyprland": ["hyprland", "xdg-desktop-portal-hyprland", "qt5-wayland", "qt6-wayland"],
        "labwc": ["labwc", "xorg-xwayland"],
    },
}

# Terminal, launcher, bar and notification tools a bare WM session needs.
WM_ESSENTIALS = {
    X11_WM: ["alacritty", "rofi", "polybar", "picom", "feh", "dunst"],
    WAYLAND_WM: ["alacritty", "wofi", "waybar", "mako", "grim", "slurp", "wl-clipboard"],
}

DEFAULT_WINDOW_MANAGER = {X11_WM: "i3", WAYLAND_WM: "sway"}

DISPLAY_MANAGERS: Dict[str, List[str]] = {
    "lightdm": ["lightdm", "lightdm-slick-greeter"],
    "gdm": ["gdm"],
    "sddm": ["sddm"],
}

DEFAULT_DISPLAY_MANAGER = {
    "cinnamon": "lightdm",
    "gnome": "gdm",
    "plasma": "sddm",
    "xfce": "lightdm",
    X11_WM: "lightdm",
    WAYLAND_WM: "sddm",
}

SUDOERS_DROPIN = "/etc/sudoers.d/10-wheel"


def session_packages(kind: str, name: str) -> List[str]:
    """Packages for a desktop environment or window manager session."""

    if kind == FULL_DESKTOP:
        return XORG_PACKAGES + DESKTOPS[name]
    if kind == X11_WM:
        return XORG_PACKAGES + WINDOW_MANAGERS[kind][name] + WM_ESSENTIALS[kind]
    return WAYLAND_PACKAGES + WINDOW_MANAGERS[kind][name] + WM_ESSENTIALS[kind]


class DesktopStep(Stage):
    stage_id = "desktop"
    marker = "03-desktop-installed"
    title = "Create the desktop user and install a desktop environment or window manager"
    privilege = ROOT
    context = INSTALLED_SYSTEM
    needs_network = True
    gates = (
        Gate(
            "02-system-configured",
            hard=True,
            reason="The desktop builds on the configured base system",
            fix="Run the configure stage inside arch-chroot first",
        ),
    )

    def interact(self, ctx: StageContext) -> None:
        ctx.ask("DESKTOP_USER", "Desktop user name", validate_username)
        kind = ctx.choose("DESKTOP_KIND", "Desktop type", DESKTOP_KINDS, default=FULL_DESKTOP)
        if kind == FULL_DESKTOP:
            session = ctx.choose(
                "DESKTOP_ENVIRONMENT",
                "Desktop environment",
                [(name, DESKTOP_LABELS[name]) for name in DESKTOPS],
                default="cinnamon",
            )
            dm_default = DEFAULT_DISPLAY_MANAGER[session]
        else:
            ctx.choose(
                "WINDOW_MANAGER",
                "Window manager",
                [(name, name) for name in WINDOW_MANAGERS[kind]],
                default=DEFAULT_WINDOW_MANAGER[kind],
            )
            dm_default = DEFAULT_DISPLAY_MANAGER[kind]
        ctx.choose(
            "DISPLAY_MANAGER",
            "Display manager",
            [(name, name) for name in DISPLAY_MANAGERS],
            default=dm_default,
        )

    def create_user(self, ctx: StageContext, user: str) -> None:
        groups = ",".join(USER_GROUPS)
        if ctx.host.user_exists(user):
            logger.info("User %s exists; adding to groups %s", user, groups)
            ctx.run(["usermod", "-aG", groups, user], operation="user-create")
            return

        ctx.run(["useradd", "-m", "-G", groups, user], operation="user-create")
        if ctx.interactive:
            logger.info("Set a password for %s", user)
            ctx.run(["passwd", user], operation="password", capture=False)
        else:
            logger.warning("Non-interactive run: no password set for %s; run passwd %s", user, user)

    def execute(self, ctx: StageContext) -> None:
        user = ctx.get("DESKTOP_USER") or ""
        kind = ctx.get("DESKTOP_KIND") or FULL_DESKTOP
        if kind == FULL_DESKTOP:
            name = ctx.get("DESKTOP_ENVIRONMENT") or "cinnamon"
            dm = ctx.get("DISPLAY_MANAGER") or DEFAULT_DISPLAY_MANAGER[name]
        else:
            name = ctx.get("WINDOW_MANAGER") or DEFAULT_WINDOW_MANAGER[kind]
            dm = ctx.get("DISPLAY_MANAGER") or DEFAULT_DISPLAY_MANAGER[kind]

        self.create_user(ctx, user)

        # The drop-in is rolled back if anything later in the stage fails.
        dropin = ctx.path(SUDOERS_DROPIN)
        with guarded_file(dropin, backup_dir=ctx.config.backup_dir, dry_run=ctx.dry_run):
            write_file(dropin, "%wheel ALL=(ALL:ALL) ALL\n", dry_run=ctx.dry_run)
            if not ctx.dry_run:
                os.chmod(dropin, 0o440)

            logger.info("Installing %s session: %s", kind, name)
            pacman_install(ctx.run, session_packages(kind, name) + DISPLAY_MANAGERS[dm])
            ctx.run(["systemctl", "enable", dm], operation="service-enable")

    def handoff(self, ctx: StageContext) -> None:
        logger.info("Next: log in as %s and run: arch-installer run aur-helper", ctx.get("DESKTOP_USER"))
