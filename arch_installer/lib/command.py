from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from ..errors import CommandError, ExternalCommandFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str


@dataclass(frozen=True)
class Operation:
    """Retry policy and criticality for one kind of external operation.

    critical=True: final failure aborts the stage.
    critical=False: final failure is logged as a warning and the stage continues.
    """

    name: str
    attempts: int
    critical: bool
    why: str = ""
    fix: str = ""


# Every externally-invoked operation a stage performs is classified here.
OPERATIONS: Dict[str, Operation] = {
    op.name: op
    for op in [
        Operation(
            "mirror-optimize",
            attempts=2,
            critical=False,
            why="The default mirrorlist still works, only slower",
            fix="Run reflector manually later: reflector --latest 20 --protocol https --sort rate",
        ),
        Operation(
            "pacman-sync",
            attempts=3,
            critical=True,
            why="Package databases must be current before installing anything",
            fix="Check network connectivity and mirror status, then retry: pacman -Syu",
        ),
        Operation(
            "package-install",
            attempts=3,
            critical=True,
            why="Required packages are missing from the system",
            fix="Check network, repository status and free disk space; verify names with pacman -Ss",
        ),
        Operation(
            "optional-packages",
            attempts=3,
            critical=False,
            why="Optional packages can be installed later without affecting the base system",
            fix="Install the missing packages manually once the system is up",
        ),
        Operation(
            "pacstrap",
            attempts=3,
            critical=True,
            why="Without the base system the target cannot boot",
            fix="Check network and that the target root is mounted at /mnt, then re-run the stage",
        ),
        Operation(
            "fstab",
            attempts=1,
            critical=True,
            why="The installed system needs an fstab to mount its filesystems",
            fix="Run genfstab -U /mnt >> /mnt/etc/fstab manually and review it",
        ),
        Operation(
            "locale-gen",
            attempts=1,
            critical=True,
            why="Without generated locales programs fall back to the C locale",
            fix="Check /etc/locale.gen and run locale-gen",
        ),
        Operation(
            "hwclock",
            attempts=1,
            critical=False,
            why="The hardware clock can be synchronized later",
            fix="Run hwclock --systohc",
        ),
        Operation(
            "bootloader-install",
            attempts=1,
            critical=True,
            why="Without a bootloader the installed system cannot start",
            fix="Check that the EFI partition is mounted at /boot (UEFI) or the disk is correct (BIOS)",
        ),
        Operation(
            "bootloader-config",
            attempts=1,
            critical=True,
            why="The bootloader has no entries to boot the installed kernel",
            fix="Regenerate the configuration: grub-mkconfig -o /boot/grub/grub.cfg",
        ),
        Operation(
            "password",
            attempts=3,
            critical=True,
            why="An account without a password cannot log in",
            fix="Set it manually with passwd",
        ),
        Operation(
            "user-create",
            attempts=1,
            critical=True,
            why="The desktop user is required by the remaining stages",
            fix="Create it manually: useradd -m -G wheel <user>",
        ),
        Operation(
            "service-enable",
            attempts=1,
            critical=True,
            why="The service will not start at boot",
            fix="Enable it manually with systemctl enable <unit>",
        ),
        Operation(
            "aur-fetch",
            attempts=3,
            critical=True,
            why="The AUR helper sources could not be downloaded",
            fix="Check network access to aur.archlinux.org",
        ),
        Operation(
            "aur-build",
            attempts=1,
            critical=True,
            why="The AUR helper could not be built and installed",
            fix="Check the makepkg output and that base-devel is installed",
        ),
        Operation(
            "aur-install",
            attempts=1,
            critical=False,
            why="Some packages will be missing until installed manually",
            fix="Install them later with the AUR helper",
        ),
    ]
}


def operation_table(overrides: Optional[Mapping[str, Mapping[str, Any]]] = None) -> Dict[str, Operation]:
    """Return OPERATIONS with per-operation overrides (attempts/critical) applied."""

    table = dict(OPERATIONS)
    for name, patch in (overrides or {}).items():
        base = table.get(name) or Operation(name, attempts=1, critical=True)
        changes: Dict[str, Any] = {}
        if "attempts" in patch:
            changes["attempts"] = max(1, int(patch["attempts"]))
        if "critical" in patch:
            changes["critical"] = bool(patch["critical"])
        table[name] = replace(base, **changes)
    return table


def fmt_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def run_cmd(
    argv: Sequence[str],
    *,
    check: bool = True,
    env: Mapping[str, str] | None = None,
    cwd: str | None = None,
    input_text: str | None = None,
    capture: bool = True,
    dry_run: bool = False,
) -> CmdResult:
    """Run a command with consistent logging.

    - Always logs the command.
    - Captures stdout/stderr unless capture=False (interactive tools such as passwd).
    - dry_run logs but does not execute.
    """

    argv_list = list(argv)
    logger.info("CMD %s", fmt_argv(argv_list))

    if dry_run:
        return CmdResult(argv=argv_list, returncode=0, stdout="", stderr="")

    try:
        p = subprocess.run(
            argv_list,
            input=input_text,
            text=True,
            stdout=subprocess.PIPE if capture else None,
            stderr=subprocess.PIPE if capture else None,
            cwd=cwd,
            env=dict(os.environ, **(env or {})),
        )
    except FileNotFoundError as e:
        if check:
            raise CommandError(argv_list, 127, str(e), fix=f"Install the package providing {argv_list[0]}") from e
        return CmdResult(argv=argv_list, returncode=127, stdout="", stderr=str(e))

    stdout = p.stdout or ""
    stderr = p.stderr or ""
    if stdout:
        logger.debug("STDOUT %s", stdout.strip())
    if stderr:
        logger.debug("STDERR %s", stderr.strip())

    if check and p.returncode != 0:
        raise CommandError(argv_list, p.returncode, stderr)

    return CmdResult(argv=argv_list, returncode=p.returncode, stdout=stdout, stderr=stderr)


def run_external(
    argv: Sequence[str],
    *,
    operation: str,
    table: Optional[Mapping[str, Operation]] = None,
    delay_seconds: float = 0.0,
    dry_run: bool = False,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> bool:
    """Run argv under the retry policy of `operation`.

    Returns True on success. On final failure a critical operation raises
    ExternalCommandFailed; a non-critical one logs a warning and returns False.
    Retries wait attempt * delay_seconds.
    """

    ops = table if table is not None else OPERATIONS
    op = ops.get(operation)
    if op is None:
        raise KeyError(f"Unclassified operation: {operation}")

    last: Optional[CommandError] = None
    for attempt in range(1, op.attempts + 1):
        try:
            run_cmd(argv, dry_run=dry_run, **kwargs)
            return True
        except CommandError as e:
            last = e
            if attempt < op.attempts:
                wait = attempt * delay_seconds
                logger.warning(
                    "%s failed (attempt %d/%d), retrying in %ss", op.name, attempt, op.attempts, wait
                )
                if wait > 0:
                    sleep(wait)

    detail = last.why if last is not None else ""
    if op.critical:
        raise ExternalCommandFailed(
            f"{op.name} failed after {op.attempts} attempt(s): {fmt_argv(argv)}",
            f"{op.why}. {detail}".strip() if detail else op.why,
            op.fix,
        )

    logger.warning("%s failed after %d attempt(s); continuing (%s)", op.name, op.attempts, op.why)
    return False
