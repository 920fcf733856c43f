from __future__ import annotations

import logging
import subprocess
from typing import Dict, Iterable, List, Optional, Sequence

import pytest

from arch_installer.config import InstallerConfig
from arch_installer.lib import command
from arch_installer.lib.chroot import LIVECD
from arch_installer.lib.host import Host
from arch_installer.lib.hwdetect import UEFI
from arch_installer.pipeline import StageContext
from arch_installer.session import InstallationSession, SessionPaths


class FakeHost(Host):
    def __init__(
        self,
        *,
        root: bool = True,
        environment: str = LIVECD,
        online: bool = True,
        mounts: Optional[Dict[str, str]] = None,
        block_devices: Iterable[str] = (),
        users: Iterable[str] = (),
        commands: Iterable[str] = (),
        username: str = "root",
        boot_mode: str = UEFI,
        cpu_vendor: str = "intel",
        free_mb: int = 20000,
    ) -> None:
        self.root = root
        self.env = environment
        self.online = online
        self.mounts = dict(mounts or {})
        self.block_devices = set(block_devices)
        self.users = set(users)
        self.commands = set(commands)
        self.user = username
        self.mode = boot_mode
        self.vendor = cpu_vendor
        self.free = free_mb
        self.online_checks: List[str] = []

    def is_root(self) -> bool:
        return self.root

    def username(self) -> str:
        return self.user

    def environment(self) -> str:
        return self.env

    def is_online(self, host: str, timeout: int) -> bool:
        self.online_checks.append(host)
        return self.online

    def is_mountpoint(self, path: str) -> bool:
        return path in self.mounts

    def is_block_device(self, dev: str) -> bool:
        return dev in self.block_devices

    def mount_source(self, path: str) -> str:
        return self.mounts.get(path, "")

    def mount_fstype(self, path: str) -> str:
        return "ext4" if path in self.mounts else "unknown"

    def boot_mode(self) -> str:
        return self.mode

    def cpu_vendor(self) -> str:
        return self.vendor

    def free_mb(self, path: str) -> int:
        return self.free

    def user_exists(self, name: str) -> bool:
        return name in self.users

    def which(self, name: str) -> Optional[str]:
        return f"/usr/bin/{name}" if name in self.commands else None


class ScriptedPrompter:
    """Answers prompts from prepared lists and records what was shown."""

    def __init__(
        self,
        *,
        texts: Sequence[str] = (),
        selects: Sequence[str] = (),
        checkboxes: Sequence[List[str]] = (),
        confirms: Sequence[bool] = (),
    ) -> None:
        self.texts = list(texts)
        self.selects = list(selects)
        self.checkboxes = [list(c) for c in checkboxes]
        self.confirms = list(confirms)
        self.messages: List[str] = []
        self.errors: list = []

    def text(self, message, *, default=""):
        self.messages.append(message)
        return self.texts.pop(0)

    def select(self, message, options, *, default=None):
        self.messages.append(message)
        return self.selects.pop(0)

    def checkbox(self, message, options, *, checked=()):
        self.messages.append(message)
        return self.checkboxes.pop(0)

    def confirm(self, message, *, default=False):
        self.messages.append(message)
        return self.confirms.pop(0)

    def show_error(self, error):
        self.errors.append(error)


class FakeRun:
    """Stands in for subprocess.run; `failures` maps argv[0] to how many calls fail."""

    def __init__(self) -> None:
        self.calls: List[List[str]] = []
        self.failures: Dict[str, int] = {}
        self.outputs: Dict[str, str] = {}
        self.interrupt_on: Optional[str] = None

    def __call__(self, argv, **kwargs):
        argv = list(argv)
        self.calls.append(argv)
        name = argv[0]
        if name == self.interrupt_on:
            raise KeyboardInterrupt
        rc = 0
        if self.failures.get(name, 0) > 0:
            self.failures[name] -= 1
            rc = 1
        return subprocess.CompletedProcess(
            argv,
            rc,
            stdout=self.outputs.get(name, ""),
            stderr="error: simulated failure\n" if rc else "",
        )

    def programs(self) -> List[str]:
        return [c[0] for c in self.calls]


@pytest.fixture
def fake_run(monkeypatch) -> FakeRun:
    fake = FakeRun()
    monkeypatch.setattr(command.subprocess, "run", fake)
    return fake


@pytest.fixture
def state_dir(tmp_path):
    return tmp_path / "state"


@pytest.fixture
def session(state_dir) -> InstallationSession:
    return InstallationSession(SessionPaths(state_dir))


@pytest.fixture
def config(tmp_path) -> InstallerConfig:
    return InstallerConfig(
        raw={
            "paths": {
                "target_root": str(tmp_path / "mnt"),
                "backup_dir": str(tmp_path / "backups"),
            },
            "retry": {"delay_seconds": 0},
        }
    )


@pytest.fixture
def make_ctx(session, config):
    def _make(host=None, **kwargs) -> StageContext:
        return StageContext(session=session, host=host or FakeHost(), config=config, **kwargs)

    return _make


@pytest.fixture(autouse=True)
def reset_root_logging():
    root = logging.getLogger()
    before = list(root.handlers)
    level = root.level
    yield
    for h in list(root.handlers):
        if h not in before:
            root.removeHandler(h)
            h.close()
    for attr in ("_arch_installer_configured", "_arch_installer_log_path"):
        if hasattr(root, attr):
            delattr(root, attr)
    root.setLevel(level)
