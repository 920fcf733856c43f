from __future__ import annotations

import logging
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

from InquirerPy import inquirer
from InquirerPy.base.control import Choice

from .errors import InstallerError, InvalidInput

logger = logging.getLogger(__name__)

# (value, label)
Option = Tuple[str, str]


class Prompter(Protocol):
    def text(self, message: str, *, default: str = "") -> str:
        ...

    def select(self, message: str, options: Sequence[Option], *, default: Optional[str] = None) -> str:
        ...

    def checkbox(self, message: str, options: Sequence[Option], *, checked: Sequence[str] = ()) -> List[str]:
        ...

    def confirm(self, message: str, *, default: bool = False) -> bool:
        ...

    def show_error(self, error: InstallerError) -> None:
        ...


class InquirerPrompter:
    """Terminal prompts. Ctrl+C propagates as KeyboardInterrupt."""

    def text(self, message: str, *, default: str = "") -> str:
        return inquirer.text(message=message, default=default).execute()

    def select(self, message: str, options: Sequence[Option], *, default: Optional[str] = None) -> str:
        return inquirer.select(
            message=message,
            choices=[Choice(value, name=label) for value, label in options],
            default=default,
        ).execute()

    def checkbox(self, message: str, options: Sequence[Option], *, checked: Sequence[str] = ()) -> List[str]:
        return inquirer.checkbox(
            message=message,
            choices=[Choice(value, name=label, enabled=value in checked) for value, label in options],
        ).execute()

    def confirm(self, message: str, *, default: bool = False) -> bool:
        return bool(inquirer.confirm(message=message, default=default).execute())

    def show_error(self, error: InstallerError) -> None:
        for line in error.render():
            logger.error(line)


def ask_validated(
    prompter: Prompter,
    message: str,
    validate: Callable[[str], str],
    *,
    default: str = "",
) -> str:
    """Prompt until `validate` accepts the answer; each rejection is shown before asking again."""

    while True:
        raw = prompter.text(message, default=default)
        try:
            return validate(raw)
        except InvalidInput as e:
            prompter.show_error(e)
