from __future__ import annotations

import logging
import os
import signal
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from .config import InstallerConfig
from .errors import ConfigurationCorrupt, InvalidInput, PreconditionFailed, UserCancelled
from .lib.chroot import CHROOT, LIVECD, UNKNOWN
from .lib.command import run_external
from .lib.host import Host
from .prompt import Option, Prompter, ask_validated
from .session import InstallationSession
from .state_store import KeyValueStore

logger = logging.getLogger(__name__)

ROOT = "root"
USER = "user"

# Execution contexts a stage can require.
HOST_SIDE = "host"  # installation media, operating on the target mounted at /mnt
IN_CHROOT = "chroot"
INSTALLED_SYSTEM = "installed"


@dataclass(frozen=True)
class Gate:
    """Prerequisite marker. hard: abort when missing; soft: ask to continue anyway."""

    marker: str
    hard: bool = True
    reason: str = ""
    fix: str = ""


class Stage:
    """One installation stage.

    Subclasses declare identity and requirements as class attributes and
    implement interact()/execute(). interact() records decisions with
    ctx.set(); nothing reaches the session until execute() returned.
    """

    stage_id: str = ""
    marker: str = ""
    title: str = ""
    privilege: str = ROOT
    context: Optional[str] = None
    needs_network: bool = False
    gates: Sequence[Gate] = ()

    def check(self, ctx: "StageContext") -> None:
        """Stage-specific hard preconditions."""

    def interact(self, ctx: "StageContext") -> None:
        pass

    def execute(self, ctx: "StageContext") -> None:
        raise NotImplementedError

    def handoff(self, ctx: "StageContext") -> None:
        """Runs after the marker is recorded.

        Also runs when a completed stage is skipped, so it must be repeatable.
        """


@dataclass
class StageContext:
    session: InstallationSession
    host: Host
    config: InstallerConfig = field(default_factory=InstallerConfig)
    prompter: Optional[Prompter] = None
    answers: Dict[str, str] = field(default_factory=dict)
    dry_run: bool = False
    assume_yes: bool = False
    pending: KeyValueStore = field(default_factory=KeyValueStore)
    sysroot: str = "/"

    @property
    def interactive(self) -> bool:
        return self.prompter is not None

    def path(self, rel: str) -> str:
        """Absolute path of a system file under sysroot."""

        return os.path.join(self.sysroot, rel.lstrip("/"))

    # --- state -----------------------------------------------------------

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self.pending.get(key)
        if value is not None:
            return value
        return self.session.get(key, default)

    def get_list(self, key: str) -> List[str]:
        return (self.get(key) or "").split()

    def set(self, key: str, value: object) -> None:
        self.pending.set(key, value)

    # --- external commands ----------------------------------------------

    def run(self, argv: Sequence[str], *, operation: str, **kwargs: Any) -> bool:
        return run_external(
            argv,
            operation=operation,
            table=self.config.operations,
            delay_seconds=self.config.retry_delay_seconds,
            dry_run=self.dry_run,
            **kwargs,
        )

    # --- interaction -----------------------------------------------------

    def confirm(self, message: str, *, default: bool = False) -> bool:
        if self.assume_yes:
            return True
        if self.prompter is None:
            return default
        return self.prompter.confirm(message, default=default)

    def ask(
        self,
        key: str,
        message: str,
        validate: Callable[[str], str],
        *,
        default: Optional[str] = None,
    ) -> str:
        """Obtain a validated value: --set/flag answer, else prompt, else declared default."""

        if key in self.answers:
            value = validate(self.answers[key])
        elif self.prompter is not None:
            value = ask_validated(self.prompter, message, validate, default=default or "")
        elif default is not None:
            value = validate(default)
        else:
            raise InvalidInput(
                f"No value for {key} in non-interactive mode",
                message,
                f"Pass --set {key}=<value>",
            )
        self.set(key, value)
        return value

    def choose(
        self,
        key: str,
        message: str,
        options: Sequence[Option],
        *,
        default: Optional[str] = None,
    ) -> str:
        values = [v for v, _ in options]
        if key in self.answers:
            value = self.answers[key].strip()
            if value not in values:
                raise InvalidInput(f"Invalid {key}: {value!r}", fix=f"Choose one of: {', '.join(values)}")
        elif self.prompter is not None:
            value = self.prompter.select(message, options, default=default)
        elif default is not None:
            value = default
        else:
            raise InvalidInput(f"No value for {key} in non-interactive mode", message, f"Pass --set {key}=<value>")
        self.set(key, value)
        return value

    def choose_many(
        self,
        key: str,
        message: str,
        options: Sequence[Option],
        *,
        checked: Sequence[str] = (),
        required: bool = False,
    ) -> List[str]:
        values = [v for v, _ in options]
        if key in self.answers:
            picked = self.answers[key].split()
            unknown = [p for p in picked if p not in values]
            if unknown:
                raise InvalidInput(f"Invalid {key}: {' '.join(unknown)}", fix=f"Choose from: {', '.join(values)}")
        elif self.prompter is not None:
            while True:
                picked = self.prompter.checkbox(message, options, checked=checked)
                if picked or not required:
                    break
                self.prompter.show_error(InvalidInput("Select at least one option"))
        else:
            picked = list(checked)
        if required and not picked:
            raise InvalidInput(f"No value for {key}", message, f"Pass --set {key}='<a> <b>'")
        self.pending.set_list(key, picked)
        return picked

    def recall(
        self,
        key: str,
        message: str,
        validate: Callable[[str], str],
        *,
        default: Optional[str] = None,
    ) -> str:
        """Reuse a value recorded by an earlier stage if it still validates.

        A stored value that fails validation is never used: it is reported and
        re-entered (fatal in non-interactive mode).
        """

        stored = self.session.get(key)
        if key in self.answers or stored is None:
            return self.ask(key, message, validate, default=default)
        try:
            value = validate(stored)
        except InvalidInput as e:
            corrupt = ConfigurationCorrupt(
                f"Stored {key} is invalid: {stored!r}",
                e.what,
                f"Edit {self.session.info_path} or pass --set {key}=<value>",
            )
            if self.prompter is None:
                raise corrupt from e
            self.prompter.show_error(corrupt)
            return self.ask(key, message, validate, default=default)
        logger.info("Using %s from earlier stage: %s", key, value)
        self.set(key, value)
        return value

    def detected(self, key: str, detect: Callable[[], str], *, validate: Optional[Callable[[str], str]] = None) -> str:
        """Safe auto-detection, overridable with --set KEY=..."""

        if key in self.answers:
            value = self.answers[key].strip()
            if validate is not None:
                value = validate(value)
            logger.info("%s overridden: %s", key, value)
        else:
            value = detect()
            logger.info("%s detected: %s", key, value)
        self.set(key, value)
        return value


@dataclass(frozen=True)
class StageResult:
    stage_id: str
    marker: str
    ran: bool
    decisions: Dict[str, str] = field(default_factory=dict)


def check_preconditions(stage: Stage, ctx: StageContext) -> None:
    host = ctx.host
    name = stage.stage_id

    if stage.privilege == ROOT and not host.is_root():
        raise PreconditionFailed(
            f"Stage '{name}' must be run as root",
            "It modifies disks and system files that need elevated access",
            f"Run: sudo arch-installer run {name}",
        )
    if stage.privilege == USER and host.is_root():
        raise PreconditionFailed(
            f"Do not run stage '{name}' as root",
            "It configures a regular user's environment; running it as root would touch the wrong files",
            f"Run as your regular user: arch-installer run {name}",
        )

    env = host.environment()
    if stage.context == IN_CHROOT and env != CHROOT:
        if env != UNKNOWN:
            raise PreconditionFailed(
                f"Stage '{name}' must run inside arch-chroot",
                "It configures the installed system, not the installation media",
                f"Run: arch-chroot /mnt, then: arch-installer run {name}",
            )
        if not ctx.confirm("Could not verify the chroot environment. Continue anyway?"):
            raise UserCancelled("Stopped: chroot environment not verified")
    elif stage.context == HOST_SIDE and env == CHROOT:
        raise PreconditionFailed(
            f"Stage '{name}' must not run inside a chroot",
            "It operates on the target from the installation media",
            "Exit the chroot and run it from the live environment",
        )
    elif stage.context == INSTALLED_SYSTEM and env in {CHROOT, LIVECD}:
        raise PreconditionFailed(
            f"Stage '{name}' must run on the booted installed system",
            f"Detected environment: {env}",
            "Exit chroot, reboot into the installed system and run it there",
        )
    elif stage.context == INSTALLED_SYSTEM and env == UNKNOWN:
        raise PreconditionFailed(
            "This does not look like an Arch Linux system",
            "/etc/arch-release is missing",
            "Run the installer on the system it installed",
        )

    if stage.needs_network and not ctx.dry_run:
        if not host.is_online(ctx.config.test_host, ctx.config.network_timeout):
            raise PreconditionFailed(
                "No internet connection detected",
                "Packages are downloaded from the Arch Linux repositories",
                f"Check cables or WiFi (iwctl), then: ping -c 3 {ctx.config.test_host}",
            )

    for gate in stage.gates:
        ctx.session.progress.require_done(
            gate.marker,
            hard=gate.hard,
            reason=gate.reason,
            fix=gate.fix,
            confirm=None if (gate.hard or not (ctx.interactive or ctx.assume_yes)) else (
                lambda message: ctx.confirm(message, default=False)
            ),
        )

    stage.check(ctx)


@contextmanager
def deferred_interrupts() -> Iterator[None]:
    """Hold SIGINT/SIGTERM until the block finishes, then raise KeyboardInterrupt."""

    if threading.current_thread() is not threading.main_thread():
        yield
        return

    received: List[int] = []
    previous = {}

    def _hold(signum: int, _frame: Any) -> None:
        received.append(signum)

    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, _hold)
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
    if received:
        raise KeyboardInterrupt


def run_stage(stage: Stage, ctx: StageContext, *, force: bool = False) -> StageResult:
    """Run one stage: preconditions, interaction, execution, persistence."""

    session = ctx.session
    logger.info("=== Stage %s: %s ===", stage.stage_id, stage.title)

    check_preconditions(stage, ctx)

    if session.progress.is_done(stage.marker) and not force:
        # --yes does not imply a re-run; that takes an explicit answer or --force.
        rerun = ctx.prompter is not None and ctx.prompter.confirm(
            f"Stage '{stage.stage_id}' already completed. Run it again?", default=False
        )
        if not rerun:
            logger.info("Skipping stage %s (already completed)", stage.stage_id)
            # Repeats a hand-off that failed after the marker was recorded.
            stage.handoff(ctx)
            return StageResult(stage.stage_id, stage.marker, ran=False)

    stage.interact(ctx)
    stage.execute(ctx)

    with deferred_interrupts():
        session.store.merge(ctx.pending)
        session.save()
        session.progress.mark_done(stage.marker)

    stage.handoff(ctx)
    logger.info("Stage %s completed (%s)", stage.stage_id, stage.marker)
    return StageResult(stage.stage_id, stage.marker, ran=True, decisions=ctx.pending.as_dict())


def require_desktop_user(ctx: StageContext) -> None:
    """User stages must run as the account the desktop stage created."""

    expected = ctx.session.get("DESKTOP_USER")
    current = ctx.host.username()
    if expected and expected != current:
        raise PreconditionFailed(
            f"This stage must be run as {expected}, not {current}",
            "Its files are installed into the desktop user's home directory",
            f"Log in as {expected} and run it again",
        )
