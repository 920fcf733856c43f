"""Staged Arch Linux installer.

Core design goals:
- One stage per run; state handed over through files in a well-known directory
- Nothing persisted until a stage's external work succeeded
- Three-part errors (what / why / fix) with distinct exit codes
- Centralized logging
"""

__all__ = []
