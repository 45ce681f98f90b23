"""The remote mount ledger.

The ledger is a tab-separated file on the remote host, one
``name<TAB>local<TAB>remote`` entry per line. It is handled optimistically:
every operation reads it fresh, new entries are appended in a single write
and deletions filter by name into a temp file. Nothing is locked, so a
concurrent writer on the same host can interleave with us; that race is
accepted.
"""

from __future__ import annotations

import logging
from typing import Iterable

from ..external.ssh import RemoteShell, SshConfig
from ..external.utils import remote_path_command, shell_escape
from .models import MountEntry

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_PATH = "~/.mountlist"


def parse_ledger(content: str) -> list[MountEntry]:
    entries: list[MountEntry] = []
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split("\t")
        if len(parts) < 3:
            continue
        name, local, remote = (part.strip() for part in parts[:3])
        if not name or not local or not remote:
            continue
        entries.append(MountEntry(name=name, local=local, remote=remote))
    return entries


def _awk_literal(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


class MountLedger:
    """Read, append to and prune the ledger over a remote shell."""

    def __init__(self, shell: RemoteShell, path: str = DEFAULT_LEDGER_PATH) -> None:
        self._shell = shell
        self._path = path

    @property
    def path(self) -> str:
        return self._path

    @property
    def _target(self) -> str:
        return remote_path_command(self._path)

    def read(self, ssh: SshConfig) -> list[MountEntry]:
        output = self._shell.run(ssh, f"cat {self._target} 2>/dev/null || true")
        return parse_ledger(output)

    def append(self, ssh: SshConfig, entries: Iterable[MountEntry]) -> int:
        lines = [
            "printf '%s\\t%s\\t%s\\n' {} {} {} >> {}".format(
                shell_escape(entry.name),
                shell_escape(entry.local),
                shell_escape(entry.remote),
                self._target,
            )
            for entry in entries
        ]
        if not lines:
            return 0
        self._shell.run(ssh, "\n".join(lines) + "\n")
        logger.info("Appended ledger entries", extra={"host": ssh.host, "count": len(lines)})
        return len(lines)

    def delete(self, ssh: SshConfig, names: Iterable[str]) -> int:
        """Remove entries whose name is in ``names``; returns how many matched."""

        wanted = {name for name in names if name}
        if not wanted:
            return 0
        entries = self.read(ssh)
        removed = sum(1 for entry in entries if entry.name in wanted)
        if removed == 0:
            return 0

        target = self._target
        deletions = "".join(f'del["{_awk_literal(name)}"]=1;' for name in sorted(wanted))
        awk_program = shell_escape(f"BEGIN{{{deletions}}} !($1 in del){{print}}")
        script = (
            f"if [ -f {target} ]; then "
            f"awk -F '\\t' {awk_program} {target} > {target}.tmp && mv {target}.tmp {target}; "
            "fi"
        )
        self._shell.run(ssh, script)
        logger.info("Removed ledger entries", extra={"host": ssh.host, "count": removed})
        return removed


__all__ = ["DEFAULT_LEDGER_PATH", "MountLedger", "parse_ledger"]
