"""Local signal delivery to tracked processes."""

from __future__ import annotations

import os
import signal


def is_running(pid: int) -> bool:
    """Return True when ``pid`` refers to an existing process.

    Sends the null signal, which performs permission and existence checks
    without touching the target. A permission error still means the pid
    exists.
    """

    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def deliver(pid: int, signum: int = signal.SIGTERM) -> bool:
    """Deliver ``signum`` to ``pid``.

    Returns False when the process no longer exists. Any other delivery
    failure is raised as ``OSError``.
    """

    if pid <= 0:
        raise OSError(f"Refusing to signal invalid PID {pid}")
    try:
        os.kill(pid, signum)
    except ProcessLookupError:
        return False
    return True


__all__ = ["deliver", "is_running"]
