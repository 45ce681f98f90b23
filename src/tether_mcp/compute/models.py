"""Typed records returned by the compute provider."""

from __future__ import annotations

from pydantic import BaseModel, Field


class Droplet(BaseModel):
    id: int
    name: str
    status: str
    region: str
    size: str | None = None
    public_ipv4: str | None = None
    private_ipv4: str | None = None
    created_at: str | None = None
    tags: list[str] = Field(default_factory=list)

    def is_running(self) -> bool:
        return self.status == "active"


class Snapshot(BaseModel):
    id: int
    name: str
    created_at: str
    regions: list[str] = Field(default_factory=list)
    resource_id: int
    min_disk_size: int
    size_gigabytes: float


class Region(BaseModel):
    slug: str
    name: str
    available: bool


class Size(BaseModel):
    slug: str
    memory_mb: int
    vcpus: int
    disk_gb: int
    price_monthly: float


class Image(BaseModel):
    id: int
    name: str
    slug: str | None = None
    distribution: str | None = None


class SshKey(BaseModel):
    id: int
    name: str
    fingerprint: str


class CreateDropletArgs(BaseModel):
    """Parameters for creating a droplet from an image or a snapshot."""

    name: str
    size: str
    image: str
    region: str | None = None
    ssh_keys: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)


__all__ = [
    "CreateDropletArgs",
    "Droplet",
    "Image",
    "Region",
    "Size",
    "Snapshot",
    "SshKey",
]
