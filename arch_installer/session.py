from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from .lib.chroot import LIVECD
from .lib.env import PATHS, Paths
from .progress import ProgressTracker
from .state_store import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionPaths:
    state_dir: Path
    inherited_dirs: Tuple[Path, ...] = ()

    @property
    def info_path(self) -> Path:
        return self.state_dir / PATHS.info_name

    @property
    def progress_path(self) -> Path:
        return self.state_dir / PATHS.progress_name


def resolve_session_paths(
    *,
    environment: str,
    is_root: bool,
    override: Optional[str] = None,
    paths: Paths = PATHS,
) -> SessionPaths:
    """Pick the state directory for this run.

    - explicit override (--state-dir / config paths.state_dir)
    - unprivileged user: per-user dir layered over the system dir
    - installation media (before the chroot boundary): live dir
    - chroot or installed system: system dir
    """

    if override:
        return SessionPaths(Path(override).expanduser())
    if not is_root:
        return SessionPaths(
            Path(os.path.expanduser(paths.user_state_dir)),
            (Path(paths.system_state_dir),),
        )
    if environment == LIVECD:
        return SessionPaths(Path(paths.live_state_dir))
    return SessionPaths(Path(paths.system_state_dir))


def target_state_dir(target_root: str, paths: Paths = PATHS) -> Path:
    """The system state dir of the target, as seen from the installation media."""

    return Path(target_root) / paths.system_state_dir.lstrip("/")


class InstallationSession:
    """Config store + progress markers for one installation, rooted at a state directory."""

    def __init__(self, paths: SessionPaths) -> None:
        self.paths = paths
        self.inherited = KeyValueStore()
        for d in paths.inherited_dirs:
            try:
                self.inherited.merge(KeyValueStore.load(d / PATHS.info_name))
            except PermissionError:
                logger.warning("Cannot read %s; continuing without it", str(d / PATHS.info_name))
        self.store = KeyValueStore.load(paths.info_path)
        self.progress = ProgressTracker(
            paths.progress_path,
            inherited=[d / PATHS.progress_name for d in paths.inherited_dirs],
        )
        logger.info(
            "Session at %s (%d values, %d markers)",
            str(paths.state_dir),
            len(self.store) + len(self.inherited),
            len(self.progress.markers()),
        )

    @property
    def info_path(self) -> Path:
        return self.paths.info_path

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self.store.get(key)
        if value is not None:
            return value
        return self.inherited.get(key, default)

    def effective(self) -> KeyValueStore:
        return self.inherited.copy().merge(self.store)

    def save(self) -> None:
        self.store.save(self.paths.info_path)

    def carry_into(self, state_dir: Path) -> None:
        """Copy this session across the chroot boundary (merge values, union markers)."""

        target = KeyValueStore.load(state_dir / PATHS.info_name).merge(self.effective())
        target.save(state_dir / PATHS.info_name)
        ProgressTracker(state_dir / PATHS.progress_name).absorb(self.progress.markers())
        logger.info("Carried session into %s", str(state_dir))

    def files(self) -> List[Path]:
        return [self.paths.info_path, self.paths.progress_path, self.progress.log_path]

    def clear(self) -> None:
        self.progress.clear()
        if self.paths.info_path.exists():
            self.paths.info_path.unlink()
        self.store = KeyValueStore()
        logger.info("Progress and configuration cleared in %s", str(self.paths.state_dir))
