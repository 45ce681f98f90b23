"""SSH tunnel management."""

from .manager import TunnelError, TunnelManager, is_port_available, new_binding, tunnel_args

__all__ = ["TunnelError", "TunnelManager", "is_port_available", "new_binding", "tunnel_args"]
