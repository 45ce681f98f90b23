"""Compute provider boundary."""

from .doctl import DoctlProvider, ProviderError, build_create_command, map_droplet
from .models import CreateDropletArgs, Droplet, Image, Region, Size, Snapshot, SshKey

__all__ = [
    "CreateDropletArgs",
    "DoctlProvider",
    "Droplet",
    "Image",
    "ProviderError",
    "Region",
    "Size",
    "Snapshot",
    "SshKey",
    "build_create_command",
    "map_droplet",
]
