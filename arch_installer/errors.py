from __future__ import annotations

import shlex
from typing import List, Optional, Sequence

EXIT_OK = 0
EXIT_UNEXPECTED = 1
EXIT_PRECONDITION = 2
EXIT_INVALID_INPUT = 3
EXIT_EXTERNAL_COMMAND = 4
EXIT_CONFIG_CORRUPT = 5
EXIT_CANCELLED = 6
EXIT_INTERRUPTED = 130


class InstallerError(Exception):
    """Failure surfaced to the human as what failed / why it matters / how to fix it."""

    exit_code = EXIT_UNEXPECTED

    def __init__(self, what: str, why: str = "", fix: str = "") -> None:
        super().__init__(what)
        self.what = what
        self.why = why
        self.fix = fix

    def render(self) -> List[str]:
        lines = [self.what]
        if self.why:
            lines.append(f"CONTEXT: {self.why}")
        if self.fix:
            lines.append(f"FIX: {self.fix}")
        return lines


class PreconditionFailed(InstallerError):
    exit_code = EXIT_PRECONDITION


class InvalidInput(InstallerError):
    exit_code = EXIT_INVALID_INPUT


class ExternalCommandFailed(InstallerError):
    exit_code = EXIT_EXTERNAL_COMMAND


class CommandError(ExternalCommandFailed):
    """A single external command exited non-zero (or could not be started)."""

    def __init__(
        self,
        argv: Sequence[str],
        returncode: int,
        stderr: str = "",
        *,
        why: str = "",
        fix: str = "",
    ) -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        what = f"Command failed ({returncode}): {' '.join(shlex.quote(a) for a in self.argv)}"
        tail = stderr.strip().splitlines()[-1:] if stderr else []
        super().__init__(what, why or (tail[0] if tail else ""), fix)


class ConfigurationCorrupt(InstallerError):
    exit_code = EXIT_CONFIG_CORRUPT


class UserCancelled(InstallerError):
    exit_code = EXIT_CANCELLED

    def __init__(self, what: str = "Cancelled by user", why: str = "", fix: Optional[str] = None) -> None:
        super().__init__(
            what,
            why or "No installation state was changed by this run",
            fix if fix is not None else "Re-run the stage when ready; it is safe to repeat",
        )
