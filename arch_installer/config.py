from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .lib.command import Operation, operation_table
from .lib.env import PATHS


@dataclass(frozen=True)
class InstallerConfig:
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def state_dir(self) -> Optional[str]:
        value = (self.raw.get("paths") or {}).get("state_dir")
        return str(value) if value else None

    @property
    def log_path(self) -> str:
        return str(((self.raw.get("paths") or {}).get("log")) or PATHS.log_default)

    @property
    def backup_dir(self) -> str:
        return str(((self.raw.get("paths") or {}).get("backup_dir")) or PATHS.backup_dir)

    @property
    def target_root(self) -> str:
        return str(((self.raw.get("paths") or {}).get("target_root")) or PATHS.target_root)

    @property
    def test_host(self) -> str:
        return str(((self.raw.get("network") or {}).get("test_host")) or "archlinux.org")

    @property
    def network_timeout(self) -> int:
        return int(((self.raw.get("network") or {}).get("timeout")) or 5)

    @property
    def retry_delay_seconds(self) -> float:
        value = (self.raw.get("retry") or {}).get("delay_seconds")
        return 3.0 if value is None else float(value)

    @property
    def operations(self) -> Dict[str, Operation]:
        return operation_table(self.raw.get("operations") or {})


def load_installer_config(path: Optional[str] = None) -> InstallerConfig:
    """Load the YAML config.

    The default location is optional; an explicitly requested file must exist.
    """

    p = Path(path or PATHS.config_default)
    if not p.exists():
        if path:
            raise FileNotFoundError(path)
        return InstallerConfig()

    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise ValueError("installer config must be YAML")

    raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{p} must contain a mapping/object")

    for section in ("paths", "network", "retry"):
        if not isinstance(raw.get(section) or {}, dict):
            raise ValueError(f"{p}: '{section}' must be a mapping")

    for section, key, cast in (("network", "timeout", int), ("retry", "delay_seconds", float)):
        value = (raw.get(section) or {}).get(key)
        if value is None:
            continue
        try:
            number = cast(value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"{p}: {section}.{key} must be a number, got {value!r}") from e
        if number < 0:
            raise ValueError(f"{p}: {section}.{key} must not be negative")

    ops = raw.get("operations") or {}
    if not isinstance(ops, dict) or not all(isinstance(v, dict) for v in ops.values()):
        raise ValueError(f"{p}: 'operations' must map operation names to {{attempts, critical}}")
    for name, patch in ops.items():
        if "attempts" not in patch:
            continue
        try:
            int(patch["attempts"])
        except (TypeError, ValueError) as e:
            raise ValueError(f"{p}: operations.{name}.attempts must be an integer, got {patch['attempts']!r}") from e

    return InstallerConfig(raw=raw)
