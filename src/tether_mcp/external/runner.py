"""Call-and-capture runner for external command-line tools."""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

from .utils import sanitize_environment


class ToolError(RuntimeError):
    """Raised when an external tool exits with a failure status."""

    def __init__(self, message: str, *, args: Sequence[str] = (), stderr: str = "") -> None:
        super().__init__(message)
        self.command = tuple(args)
        self.stderr = stderr


class ToolNotFoundError(ToolError):
    """Raised when an external tool executable cannot be located."""


@dataclass(slots=True)
class CommandResult:
    """Holds the outcome of a single tool invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Execute one external program and capture its output."""

    def __init__(self, name: str, executable: Path | str | None = None) -> None:
        self._name = name
        self._explicit = Path(executable) if executable else None
        self._executable_path: Path | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def executable(self) -> Path:
        if self._executable_path is None:
            self._executable_path = self._resolve_executable(self._name, self._explicit)
        return self._executable_path

    @staticmethod
    def _resolve_executable(name: str, explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit).expanduser()
            if candidate.exists() and candidate.is_file():
                return candidate
            raise ToolNotFoundError(f"{name} executable not found at {candidate}")

        binary = shutil.which(name)
        if binary is None:
            raise ToolNotFoundError(f"{name} executable not found on PATH")
        return Path(binary)

    def available(self) -> bool:
        try:
            self.executable
        except ToolNotFoundError:
            return False
        return True

    def run(self, *args: str) -> CommandResult:
        """Run the tool to completion. Blocks until the process exits."""

        cmd = [str(self.executable), *args]
        try:
            completed = subprocess.run(
                cmd,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                env=sanitize_environment(),
                check=False,
            )
        except OSError as exc:
            raise ToolError(f"Failed to execute {self._name}: {exc}", args=cmd) from exc
        stdout = completed.stdout.decode("utf-8", errors="replace")
        stderr = completed.stderr.decode("utf-8", errors="replace")
        return CommandResult(args=tuple(cmd), returncode=completed.returncode, stdout=stdout, stderr=stderr)

    def check_output(self, *args: str, label: str | None = None) -> str:
        """Run the tool and return stdout, raising ``ToolError`` on failure."""

        result = self.run(*args)
        if not result.ok:
            raise ToolError(
                f"{label or self._name} failed: {result.stderr}",
                args=result.args,
                stderr=result.stderr,
            )
        return result.stdout

    def spawn(self, *args: str) -> subprocess.Popen[bytes]:
        """Start the tool detached from our stdio, keeping stderr for diagnostics."""

        cmd = [str(self.executable), *args]
        try:
            return subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                env=sanitize_environment(),
            )
        except OSError as exc:
            raise ToolError(f"Failed to start {self._name}: {exc}", args=cmd) from exc


class FakeCommandRunner(CommandRunner):
    """Test double that replays canned results and records invocations."""

    def __init__(  # type: ignore[override]
        self,
        name: str = "fake",
        responses: Iterable[CommandResult] | None = None,
    ) -> None:
        super().__init__(name)
        self._responses = list(responses or [])
        self._invocations: list[tuple[str, ...]] = []
        self._executable_path = Path(f"/tmp/fake-{name}")

    def queue(self, stdout: str = "", *, returncode: int = 0, stderr: str = "") -> None:
        self._responses.append(
            CommandResult(args=(), returncode=returncode, stdout=stdout, stderr=stderr)
        )

    def run(self, *args: str) -> CommandResult:  # type: ignore[override]
        self._invocations.append(tuple(args))
        if self._responses:
            return self._responses.pop(0)
        return CommandResult(args=tuple(args), returncode=0, stdout="", stderr="")

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations


__all__ = [
    "CommandResult",
    "CommandRunner",
    "FakeCommandRunner",
    "ToolError",
    "ToolNotFoundError",
]
