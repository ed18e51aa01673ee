"""Configuration types for a load balancing cluster."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import IntEnum
from typing import Any, Dict, List, Optional, Tuple, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


class HealthcheckMode(IntEnum):
    """How a healthcheck reaches its backend."""

    PLAIN = 0
    DSR = 1
    TUN = 2

    def __str__(self) -> str:
        return self.name


class HealthcheckType(IntEnum):
    """The protocol a healthcheck speaks."""

    NONE = 0
    DNS = 1
    HTTP = 2
    HTTPS = 3
    ICMP = 4
    RADIUS = 5
    TCP = 6
    TCP_TLS = 7
    UDP = 8

    def __str__(self) -> str:
        return _HC_TYPE_LABELS[self]


# Secure variants share the label of their plain counterpart.
_HC_TYPE_LABELS = {
    HealthcheckType.NONE: "none",
    HealthcheckType.DNS: "DNS",
    HealthcheckType.HTTP: "HTTP",
    HealthcheckType.HTTPS: "HTTP",
    HealthcheckType.ICMP: "ICMP",
    HealthcheckType.RADIUS: "RADIUS",
    HealthcheckType.TCP: "TCP",
    HealthcheckType.TCP_TLS: "TCP",
    HealthcheckType.UDP: "UDP",
}


class IPProto(IntEnum):
    """IP protocols a vserver entry may balance."""

    TCP = 6
    UDP = 17

    def __str__(self) -> str:
        return self.name


@dataclass
class Host:
    """A named host with optional IPv4 and IPv6 addresses and prefix lengths."""

    hostname: str = ""
    ipv4_addr: Optional[ipaddress.IPv4Address] = None
    ipv4_mask: Optional[int] = None
    ipv6_addr: Optional[ipaddress.IPv6Address] = None
    ipv6_mask: Optional[int] = None


@dataclass
class Node:
    """A load balancer node within a cluster."""

    host: Host = field(default_factory=Host)
    priority: int = 0
    state: Any = None
    anycast_enabled: bool = False
    bgp_enabled: bool = False
    vservers_enabled: bool = False


@dataclass
class Backend:
    """A backend server behind a vserver."""

    host: Host = field(default_factory=Host)
    weight: int = 0
    enabled: bool = False
    in_service: bool = False


@dataclass
class AccessGrant:
    """An access grant for a user or a group."""

    grantee: str
    is_group: bool = False

    def key(self) -> str:
        prefix = "group" if self.is_group else "user"
        return f"{prefix}:{self.grantee}"


@dataclass
class AccessGroup:
    """Group membership information for access grants."""

    name: str
    members: List[str] = field(default_factory=list)


@dataclass
class Healthcheck:
    """A healthcheck run against a backend or destination."""

    name: str = ""
    mode: HealthcheckMode = HealthcheckMode.PLAIN
    type: HealthcheckType = HealthcheckType.NONE
    port: int = 0
    interval: timedelta = timedelta(0)
    timeout: timedelta = timedelta(0)
    retries: int = 0
    send: str = ""
    receive: str = ""
    code: int = 0
    proxy: bool = False
    method: str = ""
    tls_verify: bool = False

    def key(self) -> str:
        return self.name

    def sort_key(self) -> Tuple:
        """Ordering by type and port first, then the remaining settings."""
        return (
            self.type,
            self.port,
            self.send,
            self.receive,
            self.method,
            self.code,
            self.proxy,
            self.tls_verify,
            self.interval,
            self.timeout,
        )


def sort_healthchecks(checks) -> List[Healthcheck]:
    """Return the healthchecks in their canonical order."""
    return sorted(checks, key=Healthcheck.sort_key)


def _insert(mapping: Dict[Any, Any], key: Any, value: Any, message: str) -> None:
    if key in mapping:
        raise ValueError(message)
    mapping[key] = value


@dataclass
class VserverEntry:
    """Configuration for one port and protocol of a vserver."""

    port: int
    proto: IPProto
    scheduler: str = ""
    mode: str = ""
    persistence: int = 0
    one_packet: bool = False
    high_watermark: float = 0.0
    low_watermark: float = 0.0
    lthreshold: int = 0
    uthreshold: int = 0
    healthchecks: Dict[str, Healthcheck] = field(default_factory=dict)

    def key(self) -> str:
        return f"{self.port}/{self.proto}"

    def add_healthcheck(self, healthcheck: Healthcheck) -> None:
        key = healthcheck.key()
        _insert(
            self.healthchecks,
            key,
            healthcheck,
            f"VserverEntry {self.key()!r} already contains Healthcheck {key!r}",
        )


@dataclass
class Vserver:
    """Configuration for a virtual server."""

    name: str
    host: Host = field(default_factory=Host)
    entries: Dict[str, VserverEntry] = field(default_factory=dict)
    backends: Dict[str, Backend] = field(default_factory=dict)
    healthchecks: Dict[str, Healthcheck] = field(default_factory=dict)
    vips: Dict[str, Any] = field(default_factory=dict)
    access_grants: Dict[str, AccessGrant] = field(default_factory=dict)
    enabled: bool = False
    use_fwm: bool = False
    warnings: List[str] = field(default_factory=list)

    def key(self) -> str:
        return self.name

    def add_access_grant(self, grant: AccessGrant) -> None:
        key = grant.key()
        _insert(
            self.access_grants,
            key,
            grant,
            f"Vserver {self.name!r} already has AccessGrant {key!r}",
        )

    def add_vserver_entry(self, entry: VserverEntry) -> None:
        key = entry.key()
        _insert(
            self.entries,
            key,
            entry,
            f"Vserver {self.name!r} already contains VserverEntry {key!r}",
        )

    def add_backend(self, backend: Backend) -> None:
        key = backend.host.hostname
        _insert(
            self.backends,
            key,
            backend,
            f"Vserver {self.name!r} already contains Backend {key!r}",
        )

    def add_healthcheck(self, healthcheck: Healthcheck) -> None:
        key = healthcheck.key()
        _insert(
            self.healthchecks,
            key,
            healthcheck,
            f"Vserver {self.name!r} already contains Healthcheck {key!r}",
        )

    def add_vip(self, vip: Any) -> None:
        key = str(vip)
        _insert(
            self.vips, key, vip, f"Vserver {self.name!r} already contains VIP {key!r}"
        )


@dataclass
class Cluster:
    """Configuration for a load balancing cluster."""

    site: str = ""
    vip: Host = field(default_factory=Host)
    bgp_local_asn: int = 0
    bgp_remote_asn: int = 0
    bgp_peers: Dict[str, Host] = field(default_factory=dict)
    nodes: Dict[str, Node] = field(default_factory=dict)
    vip_subnets: Dict[str, IPNetwork] = field(default_factory=dict)
    vservers: Dict[str, Vserver] = field(default_factory=dict)
    last_update: Optional[datetime] = None
    attributes: List[Tuple[str, str]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    access_groups: Dict[str, AccessGroup] = field(default_factory=dict)

    def add_access_group(self, group: AccessGroup) -> None:
        _insert(
            self.access_groups,
            group.name,
            group,
            f"Cluster {self.site!r} already contains access group {group.name!r}",
        )

    def add_bgp_peer(self, peer: Host) -> None:
        _insert(
            self.bgp_peers,
            peer.hostname,
            peer,
            f"Cluster {self.site!r} already contains peer {peer.hostname!r}",
        )

    def add_node(self, node: Node) -> None:
        key = node.host.hostname
        _insert(
            self.nodes, key, node, f"Cluster {self.site!r} already contains Node {key!r}"
        )

    def add_vip_subnet(self, subnet) -> None:
        network = ipaddress.ip_network(subnet)
        key = str(network)
        _insert(
            self.vip_subnets,
            key,
            network,
            f"Cluster {self.site!r} already contains VIP Subnet {key!r}",
        )

    def add_vserver(self, vserver: Vserver) -> None:
        key = vserver.key()
        _insert(
            self.vservers,
            key,
            vserver,
            f"Cluster {self.site!r} already contains Vserver {key!r}",
        )