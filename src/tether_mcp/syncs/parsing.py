"""Parsers for sync daemon output.

The daemon's JSON listing is preferred. Its human-readable listing has no
stable contract, so two text heuristics run in order when the JSON route
yields nothing. None of these functions raise on malformed input; they
return an empty result and leave escalation to the caller.
"""

from __future__ import annotations

import json
from typing import Any

from .models import SyncSession


def _field(item: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in item and item[key] is not None:
            return item[key]
    return None


def _as_text(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def parse_host_from_url(url: str) -> str | None:
    """Extract the host from ``scheme://user@host:port/path`` or ``user@host:path``."""

    trimmed = url.strip()
    if not trimmed:
        return None

    if "://" in trimmed:
        rest = trimmed.split("://", 1)[1]
        hostport = rest.split("/", 1)[0]
        hostport = hostport.rsplit("@", 1)[-1]
        host = hostport.split(":", 1)[0]
        return host or None

    hostpart = trimmed.split(":", 1)[0]
    if "/" in hostpart:
        return None
    host = hostpart.rsplit("@", 1)[-1]
    return host or None


def _beta_url(item: dict[str, Any]) -> str | None:
    beta = item.get("beta")
    if isinstance(beta, dict):
        url = _as_text(_field(beta, "url", "URL"))
        if url:
            return url
    return _as_text(_field(item, "betaURL", "betaUrl"))


def sessions_from_json(raw: str) -> list[SyncSession]:
    """Parse an array of session records, tolerating ``name``/``Name`` casing."""

    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return []
    if not isinstance(value, list):
        return []

    sessions: list[SyncSession] = []
    for item in value:
        if not isinstance(item, dict):
            continue
        name = _as_text(_field(item, "name", "Name"))
        if not name:
            continue
        beta_url = _beta_url(item)
        sessions.append(
            SyncSession(
                name=name,
                status=_as_text(_field(item, "status", "Status")),
                beta_url=beta_url,
                beta_host=parse_host_from_url(beta_url) if beta_url else None,
            )
        )
    return sessions


def _strip_label(line: str, label: str) -> str | None:
    if line[: len(label)].lower() == label:
        return line[len(label):].strip()
    return None


def sessions_from_labeled_blocks(raw: str) -> list[SyncSession]:
    """Parse ``Name:`` / ``Status:`` blocks, reading ``URL:`` only under ``Beta:``."""

    sessions: list[SyncSession] = []
    current: SyncSession | None = None
    in_beta = False
    for line in raw.splitlines():
        trimmed = line.strip()
        if not trimmed:
            continue

        name = _strip_label(trimmed, "name:")
        if name is not None:
            if name:
                current = SyncSession(name=name)
                sessions.append(current)
                in_beta = False
            continue

        status = _strip_label(trimmed, "status:")
        if status is not None:
            if current is not None and status:
                current.status = status
            continue

        if _strip_label(trimmed, "alpha:") is not None:
            in_beta = False
            continue
        if _strip_label(trimmed, "beta:") is not None:
            in_beta = True
            continue

        if in_beta and current is not None:
            url = _strip_label(trimmed, "url:")
            if url:
                current.beta_url = url
                current.beta_host = parse_host_from_url(url)
    return sessions


def sessions_from_table(raw: str) -> list[SyncSession]:
    """Take the first column of rows following a ``Name ... Identifier`` heading."""

    sessions: list[SyncSession] = []
    in_table = False
    for line in raw.splitlines():
        trimmed = line.strip()
        if not trimmed:
            continue
        lower = trimmed.lower()
        if "name" in lower and "identifier" in lower:
            in_table = True
            continue
        if not in_table or trimmed.startswith("-"):
            continue
        first = trimmed.split()[0]
        if first.endswith(":"):
            continue
        sessions.append(SyncSession(name=first))
    return sessions


def sessions_from_text(raw: str) -> list[SyncSession]:
    return sessions_from_labeled_blocks(raw) or sessions_from_table(raw)


def names_from_sessions(sessions: list[SyncSession]) -> set[str]:
    return {session.name for session in sessions if session.name}


__all__ = [
    "names_from_sessions",
    "parse_host_from_url",
    "sessions_from_json",
    "sessions_from_labeled_blocks",
    "sessions_from_table",
    "sessions_from_text",
]
