"""Deterministic session naming."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import PurePosixPath


def sanitize_name(value: str, *, fallback: str = "sync") -> str:
    """Reduce ``value`` to ``[A-Za-z0-9_-]`` with whitespace and dots as single dashes."""

    out: list[str] = []
    last_dash = False
    for ch in value.strip():
        if ch.isascii() and (ch.isalnum() or ch in "-_"):
            out.append(ch)
            last_dash = False
        elif ch.isspace() or ch == ".":
            if not last_dash:
                out.append("-")
                last_dash = True
    cleaned = "".join(out).strip("-")
    return cleaned or fallback


def name_prefix(label: str) -> str:
    return f"sync-{sanitize_name(label)}-"


def generate_sync_name(label: str, local: str, index: int, *, now: datetime | None = None) -> str:
    """Build ``sync-<label>-<basename>-<stamp>[-<index>]``.

    ``index`` counts names minted within one request; the first one carries
    no suffix.
    """

    base = PurePosixPath(local.rstrip("/")).name or "sync"
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%d-%H%M%S")
    name = f"{name_prefix(label)}{sanitize_name(base)}-{stamp}"
    if index > 1:
        name = f"{name}-{index}"
    return name


__all__ = ["generate_sync_name", "name_prefix", "sanitize_name"]
