from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Paths:
    target_root: str = "/mnt"
    live_state_dir: str = "/tmp/arch-installer"
    system_state_dir: str = "/var/lib/arch-installer"
    user_state_dir: str = "~/.local/state/arch-installer"
    info_name: str = "install-info"
    progress_name: str = "progress"
    log_default: str = "/var/log/arch-installer.log"
    config_default: str = "/etc/arch-installer.yaml"
    backup_dir: str = "/var/backups/arch-installer"


PATHS = Paths()
