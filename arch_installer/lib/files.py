from __future__ import annotations

import logging
import os
import shutil
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from .env import PATHS

logger = logging.getLogger(__name__)


def write_file(path: str, contents: str, *, dry_run: bool = False) -> None:
    p = Path(path)
    if dry_run:
        logger.info("Would write %s", str(p))
        return
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(contents, encoding="utf-8")
    logger.info("Wrote %s", str(p))


def append_file(path: str, contents: str, *, dry_run: bool = False) -> None:
    p = Path(path)
    if dry_run:
        logger.info("Would append to %s", str(p))
        return
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("a", encoding="utf-8") as fh:
        fh.write(contents)


def backup_file(path: str, *, backup_dir: str = PATHS.backup_dir) -> Optional[Path]:
    """Copy `path` to <backup_dir>/<name>.<timestamp>.bak. Returns None if there is nothing to back up."""

    p = Path(path)
    if not p.exists():
        logger.info("No existing file to back up: %s", str(p))
        return None
    d = Path(backup_dir)
    d.mkdir(parents=True, exist_ok=True)
    dst = d / f"{p.name}.{datetime.now().strftime('%Y%m%d-%H%M%S')}.bak"
    shutil.copy2(p, dst, follow_symlinks=False)
    logger.info("Backup created: %s", str(dst))
    return dst


@contextmanager
def guarded_file(path: str, *, backup_dir: str = PATHS.backup_dir, dry_run: bool = False) -> Iterator[Optional[Path]]:
    """Back up `path` before modification; restore it if the block raises.

    The original content (or symlink target) is restored in place; a file that
    did not exist before is removed again. The dated backup copy is kept.
    """

    p = Path(path)
    if dry_run:
        logger.info("Would back up %s", str(p))
        yield None
        return

    link_target: Optional[str] = None
    content: Optional[bytes] = None
    if p.is_symlink():
        link_target = os.readlink(p)
    elif p.exists():
        content = p.read_bytes()
    backup = backup_file(str(p), backup_dir=backup_dir)

    try:
        yield backup
    except BaseException:
        if p.is_symlink() or p.exists():
            p.unlink()
        if link_target is not None:
            os.symlink(link_target, p)
        elif content is not None:
            p.write_bytes(content)
            if backup is not None:
                shutil.copystat(backup, p)
        logger.warning("Restored %s after failure", str(p))
        raise


def replace_symlink(path: str, target: str, *, dry_run: bool = False) -> None:
    p = Path(path)
    if dry_run:
        logger.info("Would link %s -> %s", str(p), target)
        return
    p.parent.mkdir(parents=True, exist_ok=True)
    if p.is_symlink() or p.exists():
        p.unlink()
    os.symlink(target, p)
    logger.info("Linked %s -> %s", str(p), target)
