from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

# Preference order when nothing was recorded by an earlier stage.
PRIVILEGE_TOOLS = ["run0", "doas", "sudo-rs", "sudo"]


def detect_privilege_tool(saved: Optional[str] = None, *, doas_conf: str = "/etc/doas.conf") -> str:
    if saved and shutil.which(saved):
        return saved
    for tool in PRIVILEGE_TOOLS:
        if not shutil.which(tool):
            continue
        if tool == "doas" and not Path(doas_conf).exists():
            continue
        return tool
    return "sudo"


def privileged(argv: Sequence[str], tool: str) -> List[str]:
    return [tool, *argv]
