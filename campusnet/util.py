from __future__ import annotations

import os


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def clean_text(value) -> str | None:
    """Coerce a scalar field to a trimmed string; None when absent or blank."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        value = str(value)
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None
    return s


def normalize_user_id(value) -> str | None:
    s = clean_text(value)
    if s is None:
        return None

    # Identifiers end up in log lines and client rosters.
    if "\n" in s or "\r" in s or "\x00" in s:
        return None

    return s


def fmt_peer(address) -> str:
    if isinstance(address, tuple) and len(address) >= 2:
        return f"{address[0]}:{address[1]}"
    if address is None:
        return "-"
    return str(address)
