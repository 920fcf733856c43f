from __future__ import annotations

import argparse
import logging
import signal
import sys
from typing import Any, Dict, List, Optional, Sequence

import yaml

from .config import InstallerConfig, load_installer_config
from .errors import (
    EXIT_INTERRUPTED,
    EXIT_OK,
    EXIT_UNEXPECTED,
    ConfigurationCorrupt,
    InstallerError,
    InvalidInput,
    PreconditionFailed,
    UserCancelled,
)
from .lib.host import Host
from .logging_utils import DEFAULT_LOG_PATH, configure_logging, log_error
from .pipeline import Stage, StageContext, run_stage
from .prompt import InquirerPrompter, Prompter
from .session import InstallationSession, resolve_session_paths
from .state_store import KEY_RE
from .steps import (
    AurHelperStep,
    BaseInstallStep,
    ConfigureSystemStep,
    DesktopStep,
    PackagesStep,
    PartitionsStep,
)

logger = logging.getLogger(__name__)

# --flag -> stored key
ANSWER_FLAGS = {
    "hostname": "HOSTNAME",
    "timezone": "TIMEZONE",
    "locale": "LOCALE",
    "keymap": "KEYMAP",
}


def build_stages() -> List[Stage]:
    return [
        PartitionsStep(),
        BaseInstallStep(),
        ConfigureSystemStep(),
        DesktopStep(),
        AurHelperStep(),
        PackagesStep(),
    ]


def stage_by_id(stage_id: str) -> Stage:
    for stage in build_stages():
        if stage.stage_id == stage_id:
            return stage
    raise InvalidInput(
        f"Unknown stage: {stage_id}",
        fix=f"Choose one of: {', '.join(s.stage_id for s in build_stages())}",
    )


def next_stage(stages: Sequence[Stage], session: InstallationSession) -> Optional[Stage]:
    """First stage after the last completed one (None when everything is done)."""

    last = -1
    for i, stage in enumerate(stages):
        if session.progress.is_done(stage.marker):
            last = i
    if last + 1 < len(stages):
        return stages[last + 1]
    return None


def parse_answers(args: argparse.Namespace) -> Dict[str, str]:
    answers: Dict[str, str] = {}
    for item in args.set or []:
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or not KEY_RE.fullmatch(key):
            raise InvalidInput(f"Invalid --set value: {item!r}", fix="Use --set KEY=VALUE, e.g. --set HOSTNAME=archbox")
        answers[key] = value
    for flag, key in ANSWER_FLAGS.items():
        value = getattr(args, flag, None)
        if value is not None:
            answers[key] = value
    return answers


def _load_config(path: Optional[str]) -> InstallerConfig:
    try:
        return load_installer_config(path)
    except FileNotFoundError as e:
        raise PreconditionFailed(f"Config file not found: {path}", str(e), "Check the --config path") from e
    except (ValueError, yaml.YAMLError) as e:
        raise ConfigurationCorrupt(
            f"Invalid installer config: {path or 'default location'}",
            str(e),
            "Fix the YAML or remove the file to use defaults",
        ) from e


def _session(args: argparse.Namespace) -> InstallationSession:
    host: Host = args.host
    paths = resolve_session_paths(
        environment=host.environment(),
        is_root=host.is_root(),
        override=args.state_dir or args.config_obj.state_dir,
    )
    return InstallationSession(paths)


def cmd_stages(args: argparse.Namespace) -> int:
    for stage in build_stages():
        gates = ", ".join(("" if g.hard else "~") + g.marker for g in stage.gates) or "-"
        print(
            f"{stage.stage_id:<12} {stage.marker:<26} {stage.privilege:<5} "
            f"{stage.context or 'any':<10} requires: {gates}"
        )
    return EXIT_OK


def cmd_status(args: argparse.Namespace) -> int:
    session = _session(args)
    stages = build_stages()

    print(f"Environment:     {args.host.environment()}")
    print(f"State directory: {session.paths.state_dir}")
    print("")
    for stage in stages:
        mark = "done" if session.progress.is_done(stage.marker) else "    "
        print(f"  [{mark}] {stage.stage_id:<12} {stage.title}")

    done = [s for s in stages if session.progress.is_done(s.marker)]
    print("")
    print(f"Last completed:  {done[-1].stage_id if done else '-'}")
    nxt = next_stage(stages, session)
    if nxt is None:
        print("Installation complete.")
    else:
        print(f"Next:            arch-installer run {nxt.stage_id}")
    return EXIT_OK


def cmd_run(args: argparse.Namespace) -> int:
    stage = stage_by_id(args.stage)
    answers = parse_answers(args)
    session = _session(args)

    prompter: Optional[Prompter] = None
    if not args.non_interactive:
        prompter = args.prompter or InquirerPrompter()

    ctx = StageContext(
        session=session,
        host=args.host,
        config=args.config_obj,
        prompter=prompter,
        answers=answers,
        dry_run=args.dry_run,
        assume_yes=args.yes,
    )
    if args.dry_run:
        logger.info("Dry run: commands are logged, not executed")

    result = run_stage(stage, ctx, force=args.force)
    if result.ran:
        nxt = next_stage(build_stages(), session)
        if nxt is not None:
            logger.info("Next stage: %s", nxt.stage_id)
    return EXIT_OK


def cmd_clear_progress(args: argparse.Namespace) -> int:
    session = _session(args)
    files = [p for p in session.files() if p.exists()]
    if not files:
        print("No progress recorded.")
        return EXIT_OK

    for p in files:
        print(f"  {p}")
    if not args.yes:
        if args.prompter is None and not sys.stdin.isatty():
            raise UserCancelled("Refusing to clear progress without confirmation", fix="Pass --yes")
        prompter = args.prompter or InquirerPrompter()
        answer = prompter.text("Type 'yes' to delete the files above", default="")
        if answer.strip() != "yes":
            raise UserCancelled("Progress not cleared")
    session.clear()
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="arch-installer")
    p.add_argument("--config", default=None, help="Installer config (YAML)")
    p.add_argument("--state-dir", default=None, help="Directory holding install-info and progress")
    p.add_argument("--log", default=None, help=f"Log file (default: {DEFAULT_LOG_PATH})")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging on the console")

    sub = p.add_subparsers(dest="subcmd", required=True)

    sp = sub.add_parser("stages", help="List installation stages")
    sp.set_defaults(func=cmd_stages)

    sp = sub.add_parser("status", help="Show installation progress")
    sp.set_defaults(func=cmd_status)

    sp = sub.add_parser("run", help="Run one installation stage")
    sp.add_argument("stage", help="Stage id (see: arch-installer stages)")
    sp.add_argument("--dry-run", action="store_true", help="Log commands and file writes without performing them")
    sp.add_argument("--force", action="store_true", help="Re-run even if the stage is marked completed")
    sp.add_argument("-y", "--yes", action="store_true", help="Continue past soft prerequisites without asking")
    sp.add_argument("--non-interactive", action="store_true", help="Never prompt; use flags, --set and defaults")
    sp.add_argument("--hostname")
    sp.add_argument("--timezone")
    sp.add_argument("--locale")
    sp.add_argument("--keymap")
    sp.add_argument("--set", action="append", metavar="KEY=VALUE", help="Provide an answer (repeatable)")
    sp.set_defaults(func=cmd_run)

    sp = sub.add_parser("clear-progress", help="Delete progress markers and saved configuration")
    sp.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
    sp.set_defaults(func=cmd_clear_progress)

    return p


def _terminate(signum: int, _frame: Any) -> None:
    raise KeyboardInterrupt


def main(
    argv: Optional[List[str]] = None,
    *,
    host: Optional[Host] = None,
    prompter: Optional[Prompter] = None,
) -> int:
    args = build_parser().parse_args(argv)
    args.host = host or Host()
    args.prompter = prompter
    level = logging.DEBUG if args.verbose else logging.INFO

    try:
        args.config_obj = _load_config(args.config)
    except InstallerError as e:
        configure_logging(args.log or DEFAULT_LOG_PATH, level=level)
        log_error(logger, e)
        return e.exit_code

    actual_log_path = configure_logging(args.log or args.config_obj.log_path, level=level)
    logger.debug("Logging to %s", actual_log_path)

    previous = signal.signal(signal.SIGTERM, _terminate)
    try:
        return int(args.func(args))
    except InstallerError as e:
        log_error(logger, e)
        return e.exit_code
    except KeyboardInterrupt:
        logger.error("Interrupted; the current stage was not marked complete and can be re-run")
        return EXIT_INTERRUPTED
    except Exception:
        logger.exception("Installer failed")
        return EXIT_UNEXPECTED
    finally:
        signal.signal(signal.SIGTERM, previous)


if __name__ == "__main__":
    raise SystemExit(main())
