"""Text transforms for the system files written by the configure stage."""

from __future__ import annotations

import re
from typing import List


def enable_locale(text: str, locale: str) -> str:
    """Uncomment `locale` (and en_US.UTF-8 as fallback) in locale.gen; append it if absent."""

    wanted = [f"{locale} UTF-8"]
    if locale != "en_US.UTF-8":
        wanted.append("en_US.UTF-8 UTF-8")

    lines = text.splitlines()
    for entry in wanted:
        pattern = re.compile(r"#?\s*" + re.escape(entry) + r"\s*")
        hits = [i for i, line in enumerate(lines) if pattern.fullmatch(line)]
        if hits:
            for i in hits:
                lines[i] = entry
        else:
            lines.append(entry)
    return "\n".join(lines) + "\n"


def tune_pacman_conf(text: str) -> str:
    """Enable Color and the [multilib] repository."""

    out: List[str] = []
    in_multilib = False
    for line in text.splitlines():
        stripped = line.strip()
        if stripped == "#Color":
            line = "Color"
        elif stripped in {"#[multilib]", "[multilib]"}:
            line = "[multilib]"
            in_multilib = True
        elif in_multilib:
            if stripped.startswith("#Include") or stripped.startswith("Include"):
                line = stripped.lstrip("#")
                in_multilib = False
            elif stripped.startswith("["):
                in_multilib = False
        out.append(line)
    return "\n".join(out) + "\n"


def render_hosts(hostname: str) -> str:
    return (
        "127.0.0.1      localhost\n"
        "::1            localhost\n"
        f"127.0.1.1      {hostname}.localdomain {hostname}\n"
    )
