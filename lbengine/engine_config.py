"""Basic configuration for a load balancer engine."""

from __future__ import annotations

import ipaddress
import posixpath
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from lbengine.types import Host, IPAddress

CONFIG_PATH = "/etc/seesaw"
RUN_PATH = "/var/run/seesaw"
NCC_SOCKET = posixpath.join(RUN_PATH, "ncc", "ncc.sock")
ENGINE_SOCKET = posixpath.join(RUN_PATH, "engine", "engine.sock")


@dataclass
class EngineConfig:
    """Configuration details for an engine, populated with defaults."""

    anycast_enabled: bool = True
    bgp_update_interval: timedelta = timedelta(seconds=15)
    ca_cert_file: str = posixpath.join(CONFIG_PATH, "ssl", "ca.crt")
    cluster_file: str = posixpath.join(CONFIG_PATH, "cluster.pb")
    cluster_name: str = ""
    cluster_vip: Host = field(default_factory=Host)
    config_interval: timedelta = timedelta(minutes=1)
    config_file: str = posixpath.join(CONFIG_PATH, "seesaw.cfg")
    config_servers: List[str] = field(
        default_factory=lambda: ["seesaw-config.example.com"]
    )
    config_server_port: int = 10255
    config_server_timeout: timedelta = timedelta(seconds=20)
    dummy_interface: str = "dummy0"
    gratuitous_arp_interval: timedelta = timedelta(seconds=10)
    ha_state_timeout: timedelta = timedelta(seconds=30)
    lb_interface: str = "eth1"
    max_peer_config_sync_errors: int = 3
    ncc_socket: str = NCC_SOCKET
    node_interface: str = "eth0"
    node: Host = field(default_factory=Host)
    peer: Host = field(default_factory=Host)
    routing_table_id: int = 2
    service_anycast_ipv4: List[IPAddress] = field(default_factory=list)
    service_anycast_ipv6: List[IPAddress] = field(default_factory=list)
    socket_path: str = ENGINE_SOCKET
    stats_interval: timedelta = timedelta(seconds=15)
    sync_port: int = 10258
    use_vmac: bool = True
    vmac: str = ""
    vrid: int = 60
    vrrp_dest_ip: Optional[IPAddress] = field(
        default_factory=lambda: ipaddress.ip_address("224.0.0.18")
    )


def default_engine_config() -> EngineConfig:
    """Return a fresh engine configuration holding the default values."""
    return EngineConfig()