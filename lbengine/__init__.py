"""Cluster configuration, config sources, HA state and firewall mark allocation for a load-balancer engine."""

__version__ = "0.1.0"

__all__ = ["config", "engine_config", "fetcher", "ha", "marks", "notifier", "types"]