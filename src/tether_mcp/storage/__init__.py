"""Local persistence for Tether MCP."""

from .models import PortBinding, RegistrySettings, RegistryState, RsyncBind
from .registry import BindingRegistry, RegistryError, default_registry_settings

__all__ = [
    "BindingRegistry",
    "PortBinding",
    "RegistryError",
    "RegistrySettings",
    "RegistryState",
    "RsyncBind",
    "default_registry_settings",
]
