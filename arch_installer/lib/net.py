from __future__ import annotations

import logging

from .command import run_cmd

logger = logging.getLogger(__name__)


def is_online(host: str = "archlinux.org", timeout: int = 5) -> bool:
    """Best-effort online check (single ping)."""

    logger.info("Testing internet connectivity to %s...", host)
    r = run_cmd(["ping", "-c", "1", "-W", str(timeout), host], check=False)
    if r.returncode == 0:
        logger.info("Internet connection verified")
        return True
    logger.warning("No response from %s (timeout: %ss)", host, timeout)
    return False
