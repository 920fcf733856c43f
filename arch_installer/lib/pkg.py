from __future__ import annotations

import logging
from typing import Callable, List, Sequence, Tuple

from .command import run_cmd

logger = logging.getLogger(__name__)

# run(argv, operation=...) -> bool, i.e. StageContext.run
Runner = Callable[..., bool]


def pacman_install(
    run: Runner,
    packages: Sequence[str],
    *,
    operation: str = "package-install",
    prefix: Sequence[str] = (),
) -> bool:
    if not packages:
        return True
    logger.info("Installing packages: %s", " ".join(packages))
    return run([*prefix, "pacman", "-S", "--needed", "--noconfirm", *packages], operation=operation)


def pacman_sync(run: Runner, *, upgrade: bool = True, prefix: Sequence[str] = ()) -> bool:
    flags = "-Syu" if upgrade else "-Syy"
    return run([*prefix, "pacman", flags, "--noconfirm"], operation="pacman-sync")


def is_installed(package: str) -> bool:
    return run_cmd(["pacman", "-Qq", package], check=False).returncode == 0


def missing_packages(packages: Sequence[str]) -> List[str]:
    return [p for p in packages if not is_installed(p)]


def pacstrap(run: Runner, target_root: str, packages: Sequence[str]) -> bool:
    logger.info("Installing base system into %s (%d packages)", target_root, len(packages))
    return run(["pacstrap", "-K", target_root, *packages], operation="pacstrap")


def aur_install(run: Runner, helper: str, packages: Sequence[str]) -> Tuple[List[str], List[str]]:
    """Install through the AUR helper: whole batch first, then one by one.

    Returns (installed, failed).
    """

    if not packages:
        return [], []
    argv = [helper, "-S", "--needed", "--noconfirm"]
    if run([*argv, *packages], operation="aur-install"):
        return list(packages), []

    logger.warning("Batch installation failed, trying individual packages")
    installed: List[str] = []
    failed: List[str] = []
    for package in packages:
        if run([*argv, package], operation="aur-install"):
            installed.append(package)
        else:
            failed.append(package)
    if failed:
        logger.warning("Failed packages: %s", " ".join(failed))
    return installed, failed
