"""Remote filesystem helpers run over the remote shell."""

from __future__ import annotations

from ..external.ssh import RemoteShell, SshConfig
from ..external.utils import remote_path_command, shell_escape
from .models import RemoteDirectoryListing


class RemoteListingError(RuntimeError):
    """Raised when a remote directory listing comes back without a path."""


def ensure_remote_dir(shell: RemoteShell, ssh: SshConfig, remote: str) -> None:
    shell.run(ssh, f"mkdir -p {remote_path_command(remote)}")


def list_remote_directories(shell: RemoteShell, ssh: SshConfig, path: str) -> RemoteDirectoryListing:
    """List sub-directories of ``path`` on the remote host.

    The first output line is the resolved path; every following non-empty
    line is a directory name.
    """

    script = (
        f"TARGET={shell_escape(path)}; "
        'if [ "$TARGET" = "~" ]; then TARGET="$HOME"; fi; '
        'cd -- "$TARGET" 2>/dev/null || exit 2; '
        "pwd; "
        "ls -1Ap 2>/dev/null | sed -n 's:/$::p' | LC_ALL=C sort"
    )
    output = shell.run(ssh, script)
    lines = output.splitlines()
    resolved = lines[0].strip() if lines else ""
    if not resolved:
        raise RemoteListingError("Remote directory listing returned no path")
    directories = [line.rstrip("\r") for line in lines[1:] if line.rstrip("\r")]
    return RemoteDirectoryListing(path=resolved, directories=directories)


__all__ = ["RemoteListingError", "ensure_remote_dir", "list_remote_directories"]
