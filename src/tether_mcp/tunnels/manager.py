"""SSH local-port-forward tunnel lifecycle."""

from __future__ import annotations

import logging
import signal
import socket
import subprocess
import threading
import time
from collections import deque
from datetime import datetime, timezone
from typing import IO, Callable

from ..external import signals
from ..external.runner import CommandRunner
from ..external.utils import expand_local_path
from ..storage import PortBinding

logger = logging.getLogger(__name__)

DEFAULT_GRACE_SECONDS = 0.25
STOP_WAIT_SECONDS = 1.0
STDERR_TAIL_CHUNKS = 16


class TunnelError(RuntimeError):
    """Raised when a tunnel cannot be started or stopped."""


def is_port_available(port: int) -> bool:
    """Return True when nothing listens on ``127.0.0.1:port``."""

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind(("127.0.0.1", port))
        except OSError:
            return False
    return True


def new_binding(
    droplet_id: int,
    droplet_name: str,
    public_ip: str,
    local_port: int,
    remote_port: int,
    ssh_user: str,
    ssh_key_path: str,
    ssh_port: int,
) -> PortBinding:
    return PortBinding(
        droplet_id=droplet_id,
        droplet_name=droplet_name,
        public_ip=public_ip,
        local_port=local_port,
        remote_port=remote_port,
        ssh_user=ssh_user,
        ssh_key_path=ssh_key_path,
        ssh_port=ssh_port,
        created_at=datetime.now(timezone.utc),
        tunnel_pid=None,
    )


def tunnel_args(binding: PortBinding) -> list[str]:
    return [
        "-N",
        "-L",
        f"127.0.0.1:{binding.local_port}:127.0.0.1:{binding.remote_port}",
        "-o",
        "ExitOnForwardFailure=yes",
        "-o",
        "ServerAliveInterval=30",
        "-o",
        "ServerAliveCountMax=3",
        "-i",
        expand_local_path(binding.ssh_key_path),
        "-p",
        str(binding.ssh_port),
        f"{binding.ssh_user}@{binding.public_ip}",
    ]


def _read_stderr(process: subprocess.Popen[bytes]) -> str:
    if process.stderr is None:
        return ""
    try:
        return process.stderr.read().decode("utf-8", errors="replace").strip()
    except (OSError, ValueError):
        return ""
    finally:
        process.stderr.close()


def _drain_stderr(stream: IO[bytes], tail: deque[bytes]) -> None:
    """Keep reading a live tunnel's stderr so ssh never blocks on a full pipe.

    Only the most recent chunks are kept. The stream is closed at EOF, which
    happens once the child exits.
    """

    try:
        for chunk in iter(lambda: stream.read1(4096), b""):
            tail.append(chunk)
    except (OSError, ValueError) as exc:
        logger.debug("Tunnel stderr reader stopped", extra={"error": str(exc)})
    finally:
        stream.close()


class TunnelManager:
    """Start, check and stop ``ssh -N -L`` forwarding processes.

    Tunnels left over from an earlier run are tracked by bare pid only. A pid
    recycled by the OS after such a tunnel died is indistinguishable from it.
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        *,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._runner = runner or CommandRunner("ssh")
        self._grace_seconds = grace_seconds
        self._sleep = sleep
        self._children: dict[int, subprocess.Popen[bytes]] = {}
        self._stderr_tails: dict[int, deque[bytes]] = {}
        self._lock = threading.Lock()

    def start_tunnel(self, binding: PortBinding) -> int:
        """Spawn the tunnel, wait out the grace window, and poll once.

        On success the pid is written to ``binding.tunnel_pid`` and returned.
        """

        process = self._runner.spawn(*tunnel_args(binding))
        self._sleep(self._grace_seconds)
        status = process.poll()
        if status is not None:
            stderr = _read_stderr(process)
            logger.warning(
                "SSH tunnel exited during grace window",
                extra={"local_port": binding.local_port, "returncode": status},
            )
            raise TunnelError(f"SSH tunnel exited early (exit status: {status}). {stderr}".rstrip())

        tail: deque[bytes] = deque(maxlen=STDERR_TAIL_CHUNKS)
        if process.stderr is not None:
            threading.Thread(
                target=_drain_stderr,
                args=(process.stderr, tail),
                name=f"tunnel-stderr-{process.pid}",
                daemon=True,
            ).start()
        with self._lock:
            self._children[process.pid] = process
            self._stderr_tails[process.pid] = tail
        binding.tunnel_pid = process.pid
        logger.info(
            "SSH tunnel started",
            extra={
                "pid": process.pid,
                "local_port": binding.local_port,
                "remote_port": binding.remote_port,
                "host": binding.public_ip,
            },
        )
        return process.pid

    def stderr_tail(self, pid: int) -> str:
        """Return the latest stderr output of a tunnel this manager started."""

        with self._lock:
            tail = self._stderr_tails.get(pid)
            chunks = list(tail) if tail is not None else []
        return b"".join(chunks).decode("utf-8", errors="replace").strip()

    def _forget(self, pid: int) -> None:
        with self._lock:
            self._children.pop(pid, None)
            self._stderr_tails.pop(pid, None)

    def is_alive(self, pid: int) -> bool:
        """Non-destructive liveness check.

        Tunnels spawned by this manager are reaped through their handle first,
        so an exited child never lingers as a zombie that still answers the
        null signal. Any other pid is checked with signal 0.
        """

        with self._lock:
            process = self._children.get(pid)
        if process is not None:
            status = process.poll()
            if status is None:
                return True
            logger.warning(
                "SSH tunnel exited",
                extra={"pid": pid, "returncode": status, "stderr": self.stderr_tail(pid)},
            )
            self._forget(pid)
            return False
        return signals.is_running(pid)

    def stop(self, pid: int) -> None:
        try:
            delivered = signals.deliver(pid, signal.SIGTERM)
        except OSError as exc:
            raise TunnelError(f"Failed to send SIGTERM to PID {pid}: {exc}") from exc
        if delivered:
            logger.info("Sent SIGTERM to tunnel", extra={"pid": pid})
        else:
            logger.debug("Tunnel process already gone", extra={"pid": pid})

        with self._lock:
            process = self._children.get(pid)
        if process is None:
            return
        try:
            process.wait(timeout=STOP_WAIT_SECONDS)
        except subprocess.TimeoutExpired:
            # Still shutting down; a later is_alive call reaps it.
            logger.debug("Tunnel still running after SIGTERM", extra={"pid": pid})
            return
        self._forget(pid)


__all__ = [
    "TunnelError",
    "TunnelManager",
    "is_port_available",
    "new_binding",
    "tunnel_args",
]
