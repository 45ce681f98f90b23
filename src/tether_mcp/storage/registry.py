"""JSON-file registry of port bindings and rsync binds."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from ..config import TetherSettings
from .models import PortBinding, RegistrySettings, RegistryState, RsyncBind

logger = logging.getLogger(__name__)


class RegistryError(RuntimeError):
    """Raised when the registry file cannot be read, parsed or written."""


def default_registry_settings(settings: TetherSettings) -> RegistrySettings:
    return RegistrySettings(
        default_ssh_user=settings.default_ssh_user,
        default_ssh_key_path=settings.default_ssh_key_path,
        default_ssh_port=settings.default_ssh_port,
    )


class BindingRegistry:
    """Load, mutate and persist port bindings and rsync binds.

    The file is rewritten wholesale after every mutation. There is no file
    locking; two processes sharing one state file race and the last save
    wins.
    """

    def __init__(self, path: Path, *, defaults: RegistrySettings | None = None) -> None:
        self._path = Path(path)
        self._defaults = defaults or RegistrySettings(
            default_ssh_user="root",
            default_ssh_key_path="~/.ssh/id_rsa",
            default_ssh_port=22,
        )
        self._state = RegistryState(settings=self._defaults)

    @classmethod
    def from_settings(cls, settings: TetherSettings) -> "BindingRegistry":
        return cls(settings.state_path, defaults=default_registry_settings(settings))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def state(self) -> RegistryState:
        return self._state

    @property
    def bindings(self) -> list[PortBinding]:
        return list(self._state.bindings)

    @property
    def settings(self) -> RegistrySettings:
        return self._state.settings

    def load(self) -> RegistryState:
        if not self._path.exists():
            self._state = RegistryState(settings=self._defaults)
            return self._state
        try:
            raw = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise RegistryError(f"Failed to read state file: {exc}") from exc
        try:
            state = RegistryState.model_validate_json(raw)
        except ValidationError as exc:
            raise RegistryError(f"Failed to parse state file: {exc}") from exc
        if not state.settings.default_ssh_user:
            state.settings = self._defaults
        self._state = state
        logger.debug(
            "Loaded binding registry",
            extra={"path": str(self._path), "bindings": len(state.bindings)},
        )
        return state

    def save(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(self._state.model_dump_json(indent=2), encoding="utf-8")
        except OSError as exc:
            raise RegistryError(f"Failed to write state file: {exc}") from exc

    def find(self, local_port: int) -> PortBinding | None:
        for binding in self._state.bindings:
            if binding.local_port == local_port:
                return binding
        return None

    def add(self, binding: PortBinding) -> None:
        if self.find(binding.local_port) is not None:
            raise RegistryError(f"Local port {binding.local_port} is already bound")
        self._state.bindings.append(binding)

    def remove(self, local_port: int) -> PortBinding | None:
        existing = self.find(local_port)
        if existing is not None:
            self._state.bindings = [
                binding for binding in self._state.bindings if binding.local_port != local_port
            ]
        return existing

    def retain(self, keep: Callable[[PortBinding], bool]) -> list[PortBinding]:
        """Keep bindings accepted by ``keep`` and return the dropped ones."""

        kept: list[PortBinding] = []
        dropped: list[PortBinding] = []
        for binding in self._state.bindings:
            (kept if keep(binding) else dropped).append(binding)
        self._state.bindings = kept
        return dropped

    # -- rsync binds ----------------------------------------------------

    @property
    def rsync_binds(self) -> list[RsyncBind]:
        return list(self._state.rsync_binds)

    def find_rsync_bind(self, local_path: str) -> RsyncBind | None:
        for bind in self._state.rsync_binds:
            if bind.local_path == local_path:
                return bind
        return None

    def add_rsync_bind(self, bind: RsyncBind) -> None:
        if self.find_rsync_bind(bind.local_path) is not None:
            raise RegistryError(f"Local folder {bind.local_path} is already bound")
        self._state.rsync_binds.append(bind)

    def remove_rsync_bind(self, local_path: str) -> RsyncBind | None:
        existing = self.find_rsync_bind(local_path)
        if existing is not None:
            self._state.rsync_binds = [
                bind for bind in self._state.rsync_binds if bind.local_path != local_path
            ]
        return existing


__all__ = ["BindingRegistry", "RegistryError", "default_registry_settings"]
