from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Union

from .errors import PreconditionFailed, UserCancelled

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]


def _read_markers(path: Path) -> List[str]:
    if not path.exists():
        return []
    out: List[str] = []
    for line in path.read_text(encoding="utf-8", errors="replace").splitlines():
        marker = line.strip()
        if marker and marker not in out:
            out.append(marker)
    return out


class ProgressTracker:
    """Set of completed-stage markers, persisted as an append-only file.

    `inherited` files are read-only layers (e.g. the system tracker seen from an
    unprivileged stage): their markers count as done but are never rewritten.
    """

    def __init__(self, path: PathLike, *, inherited: Sequence[PathLike] = ()) -> None:
        self.path = Path(path)
        self._own: List[str] = _read_markers(self.path)
        self._inherited: List[str] = []
        for p in inherited:
            for marker in _read_markers(Path(p)):
                if marker not in self._inherited:
                    self._inherited.append(marker)

    @property
    def log_path(self) -> Path:
        return self.path.with_name(self.path.name + ".log")

    def markers(self) -> List[str]:
        return self._inherited + [m for m in self._own if m not in self._inherited]

    def is_done(self, stage_id: str) -> bool:
        return stage_id in self._own or stage_id in self._inherited

    def mark_done(self, stage_id: str) -> None:
        stage_id = stage_id.strip()
        if not stage_id or "\n" in stage_id:
            raise ValueError(f"Invalid progress marker: {stage_id!r}")
        if stage_id in self._own:
            logger.debug("Marker %s already recorded", stage_id)
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as fh:
            fh.write(stage_id + "\n")
            fh.flush()
            os.fsync(fh.fileno())
        with self.log_path.open("a", encoding="utf-8") as fh:
            fh.write(f"{datetime.now().strftime('%Y-%m-%d %H:%M:%S')} - {stage_id}\n")
        self._own.append(stage_id)
        logger.info("Recorded progress marker %s", stage_id)

    def require_done(
        self,
        stage_id: str,
        *,
        hard: bool = True,
        reason: str = "",
        fix: str = "",
        confirm: Optional[Callable[[str], bool]] = None,
    ) -> None:
        """Gate on a prerequisite stage.

        hard: missing marker raises PreconditionFailed.
        soft: `confirm` asks the human to continue anyway; declining raises
        UserCancelled. Without `confirm` a soft gate cannot be overridden and
        fails like a hard one.
        """

        if self.is_done(stage_id):
            return

        what = f"Required stage not completed: {stage_id}"
        why = reason or "This stage builds on the result of that stage"
        if hard:
            raise PreconditionFailed(what, why, fix or f"Complete the stage that records {stage_id} first")

        logger.warning("Expected progress marker %s not found", stage_id)
        if confirm is None:
            raise PreconditionFailed(
                what, why, fix or "Run that stage first, or pass --yes to continue at your own risk"
            )
        if not confirm(f"Marker {stage_id} not found. {why}. Continue anyway?"):
            raise UserCancelled(f"Stopped: {stage_id} not completed")
        logger.warning("Continuing without %s (overridden by user)", stage_id)

    def absorb(self, markers: Iterable[str]) -> None:
        for marker in markers:
            self.mark_done(marker)

    def clear(self) -> None:
        for p in (self.path, self.log_path):
            if p.exists():
                p.unlink()
        self._own = []
