"""Data models for the local binding registry."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger(__name__)


class PortBinding(BaseModel):
    """A local port forwarded to a droplet through an SSH tunnel."""

    droplet_id: int
    droplet_name: str
    public_ip: str
    local_port: int = Field(..., ge=1, le=65535)
    remote_port: int = Field(..., ge=1, le=65535)
    ssh_user: str
    ssh_key_path: str
    ssh_port: int = Field(default=22, ge=1, le=65535)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    tunnel_pid: int | None = Field(
        default=None,
        description="Liveness token recorded once the tunnel survived its grace window.",
    )


class RsyncBind(BaseModel):
    """A droplet folder copied to and from a local folder on demand with rsync."""

    droplet_id: int
    droplet_name: str
    host: str
    remote_path: str
    local_path: str = Field(..., description="Absolute local folder; unique within the registry.")
    ssh_user: str
    ssh_key_path: str
    ssh_port: int = Field(default=22, ge=1, le=65535)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RegistrySettings(BaseModel):
    """SSH defaults persisted next to the bindings."""

    default_ssh_user: str = ""
    default_ssh_key_path: str = ""
    default_ssh_port: int = 22


class RegistryState(BaseModel):
    """Top-level JSON document stored on disk."""

    bindings: list[PortBinding] = Field(default_factory=list)
    rsync_binds: list[RsyncBind] = Field(default_factory=list)
    settings: RegistrySettings = Field(default_factory=RegistrySettings)

    @model_validator(mode="after")
    def _drop_duplicates(self) -> "RegistryState":
        """Keep the first entry per local port and per local folder."""

        ports: set[int] = set()
        bindings: list[PortBinding] = []
        for binding in self.bindings:
            if binding.local_port in ports:
                logger.warning(
                    "Dropping duplicate binding from registry",
                    extra={"local_port": binding.local_port, "droplet": binding.droplet_name},
                )
                continue
            ports.add(binding.local_port)
            bindings.append(binding)

        folders: set[str] = set()
        rsync_binds: list[RsyncBind] = []
        for bind in self.rsync_binds:
            if bind.local_path in folders:
                logger.warning(
                    "Dropping duplicate rsync bind from registry",
                    extra={"local_path": bind.local_path, "droplet": bind.droplet_name},
                )
                continue
            folders.add(bind.local_path)
            rsync_binds.append(bind)

        self.bindings = bindings
        self.rsync_binds = rsync_binds
        return self


__all__ = ["PortBinding", "RegistrySettings", "RegistryState", "RsyncBind"]
