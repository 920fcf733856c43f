from __future__ import annotations

import logging
import os
import re
import shlex
import tempfile
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional, Tuple, Union

logger = logging.getLogger(__name__)

KEY_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
# Start of a KEY=value line.
ENTRY_RE = re.compile(r"\s*[A-Za-z_][A-Za-z0-9_]*=")
# A shlex.quote()d value cut off inside its last single-quoted section.
OPEN_QUOTE_RE = re.compile(r"""(?:'[^']*'|"'")*'[^']*""")

_HEADER = "# arch-installer state (sh-compatible KEY='value' lines; safe to edit by hand)\n"

PathLike = Union[str, "os.PathLike[str]"]


def atomic_write_text(path: PathLike, text: str, *, mode: int = 0o644) -> None:
    """Replace `path` with `text` so readers see either the old or the new file, never a mix."""

    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{p.name}.", dir=str(p.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
            fh.flush()
            os.fsync(fh.fileno())
        os.chmod(tmp, mode)
        os.replace(tmp, p)
    except BaseException:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise


def _parse_value(chunk: str) -> Optional[str]:
    """Return the single sh word in `chunk`, "" for an empty value, None if it is not one word."""

    tokens = shlex.split(chunk, comments=False, posix=True)
    if not tokens:
        return ""
    if len(tokens) != 1:
        return None
    return tokens[0]


def _continues(chunk: str, lines: List[str], end: int) -> bool:
    if end + 1 >= len(lines) or ENTRY_RE.match(lines[end + 1]):
        return False
    return OPEN_QUOTE_RE.fullmatch(chunk) is not None


def parse_entries(text: str, *, source: str = "<string>") -> Dict[str, str]:
    """Parse KEY=value lines. Malformed lines are skipped with a warning.

    A quoted value may span several physical lines (values containing newlines),
    but only as written by format_entries: the value must still be inside an
    open single quote, and a line starting with KEY= always begins a new entry.
    """

    lines = text.splitlines()
    data: Dict[str, str] = {}
    i = 0
    while i < len(lines):
        line = lines[i]
        lineno = i + 1
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            i += 1
            continue

        key, sep, rest = line.partition("=")
        key = key.strip()
        if not sep or not KEY_RE.fullmatch(key):
            logger.warning("%s:%d: skipping malformed line (expected KEY=value)", source, lineno)
            i += 1
            continue

        end = i
        chunk = rest
        value: Optional[str] = None
        while True:
            try:
                value = _parse_value(chunk)
                break
            except ValueError:
                if not _continues(chunk, lines, end):
                    value = None
                    break
                end += 1
                chunk = chunk + "\n" + lines[end]

        if value is None:
            logger.warning("%s:%d: skipping malformed value for %s", source, lineno, key)
            i += 1
            continue

        data[key] = value
        i = end + 1
    return data


def format_entries(data: Mapping[str, str]) -> str:
    out = [_HEADER]
    for key in sorted(data):
        out.append(f"{key}={shlex.quote(data[key])}\n")
    return "".join(out)


class KeyValueStore:
    """Named configuration values handed from one stage to the next."""

    def __init__(self, data: Optional[Mapping[str, str]] = None) -> None:
        self._data: Dict[str, str] = {}
        for k, v in (data or {}).items():
            self.set(k, v)

    @classmethod
    def load(cls, path: PathLike) -> "KeyValueStore":
        p = Path(path)
        if not p.exists():
            return cls()
        text = p.read_text(encoding="utf-8", errors="replace")
        store = cls()
        store._data = parse_entries(text, source=str(p))
        logger.debug("Loaded %d entries from %s", len(store._data), p)
        return store

    def save(self, path: PathLike) -> None:
        atomic_write_text(path, format_entries(self._data))
        logger.debug("Saved %d entries to %s", len(self._data), path)

    def set(self, key: str, value: object) -> None:
        if not isinstance(key, str) or not KEY_RE.fullmatch(key):
            raise ValueError(f"Invalid state key: {key!r}")
        self._data[key] = "" if value is None else str(value)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._data.get(key, default)

    def set_list(self, key: str, values: List[str]) -> None:
        self.set(key, " ".join(v for v in values if v))

    def get_list(self, key: str) -> List[str]:
        return (self._data.get(key) or "").split()

    def merge(self, other: "KeyValueStore") -> "KeyValueStore":
        """Apply `other` on top of this store (other wins on conflicts)."""

        self._data.update(other._data)
        return self

    def copy(self) -> "KeyValueStore":
        return KeyValueStore(self._data)

    def items(self) -> List[Tuple[str, str]]:
        return sorted(self._data.items())

    def as_dict(self) -> Dict[str, str]:
        return dict(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._data))

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KeyValueStore):
            return NotImplemented
        return self._data == other._data

    def __repr__(self) -> str:
        return f"KeyValueStore({self._data!r})"
