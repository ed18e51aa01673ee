"""Fetching cluster configuration from configuration servers."""

from __future__ import annotations

import http.client
import ipaddress
import logging
import random
import socket
import ssl
import urllib.parse
from typing import Callable, Iterable, List, Optional, Tuple

from lbengine.engine_config import EngineConfig
from lbengine.types import IPAddress

log = logging.getLogger(__name__)

CONFIG_CONTENT_TYPE = "application/x-protobuffer"

FetchHandler = Callable[["Fetcher", str, IPAddress], Tuple[str, bytes]]
Resolver = Callable[[str], Iterable]


class FetchError(Exception):
    """A configuration fetch failed."""


def order_addresses(addresses: Iterable, rng: Optional[random.Random] = None) -> List[IPAddress]:
    """Shuffle addresses, placing all IPv6 addresses before the IPv4 ones.

    IPv4-mapped IPv6 addresses count as IPv4.
    """
    rng = rng if rng is not None else random
    ipv4: List[IPAddress] = []
    ipv6: List[IPAddress] = []
    for value in addresses:
        addr = ipaddress.ip_address(value)
        if addr.version == 4 or addr.ipv4_mapped is not None:
            ipv4.append(addr)
        else:
            ipv6.append(addr)
    rng.shuffle(ipv4)
    rng.shuffle(ipv6)
    return ipv6 + ipv4


def _resolve_host(name: str) -> List[IPAddress]:
    seen = {}
    for *_, sockaddr in socket.getaddrinfo(name, None, proto=socket.IPPROTO_TCP):
        addr = ipaddress.ip_address(sockaddr[0].split("%", 1)[0])
        seen.setdefault(addr, None)
    return list(seen)


def _load_ca(cafile: str) -> ssl.SSLContext:
    try:
        return ssl.create_default_context(cafile=cafile)
    except ssl.SSLError as err:
        raise ValueError(f"failed to load certificates from {cafile!r}") from err


class _PinnedHTTPSConnection(http.client.HTTPSConnection):
    """An HTTPS connection to a fixed IP that still verifies the named host."""

    def __init__(self, host, port, ip, timeout, context):
        super().__init__(host, port, timeout=timeout, context=context)
        self._ip = ip
        self._tls = context

    def connect(self):
        sock = socket.create_connection((str(self._ip), self.port), self.timeout)
        self.sock = self._tls.wrap_socket(sock, server_hostname=self.host)


def _fetch_config(fetcher: "Fetcher", host: str, ip: IPAddress) -> Tuple[str, bytes]:
    url = f"https://{host}:{fetcher.port}/config/{fetcher.cluster}"
    try:
        body = fetcher.fetch_from_host(ip, url, CONFIG_CONTENT_TYPE)
    except (OSError, http.client.HTTPException, FetchError) as err:
        raise FetchError(f"fetch failed from {url} ({ip}): {err}") from err
    return url, body


class Fetcher:
    """Retrieves configuration from the configured servers in priority order."""

    def __init__(
        self,
        config: EngineConfig,
        *,
        ssl_context: Optional[ssl.SSLContext] = None,
        resolver: Optional[Resolver] = None,
        rng: Optional[random.Random] = None,
    ):
        if not config.config_servers:
            raise ValueError("no config servers")
        self.ssl_context = ssl_context if ssl_context is not None else _load_ca(config.ca_cert_file)
        self.cluster = config.cluster_name
        self.port = config.config_server_port
        self.servers = list(config.config_servers)
        self.timeout = config.config_server_timeout
        self._resolve = resolver if resolver is not None else _resolve_host
        self._rng = rng if rng is not None else random.Random()

    def fetch_from_host(self, ip, url: str, content_type: str) -> bytes:
        """GET an HTTPS URL from one specific address and return the body."""
        parts = urllib.parse.urlsplit(url)
        if parts.scheme != "https" or not parts.hostname:
            raise FetchError(f"unsupported URL {url!r}")
        path = parts.path or "/"
        if parts.query:
            path = f"{path}?{parts.query}"

        conn = _PinnedHTTPSConnection(
            parts.hostname,
            self.port,
            ipaddress.ip_address(ip),
            self.timeout.total_seconds(),
            self.ssl_context,
        )
        try:
            conn.request("GET", path, headers={"Connection": "close"})
            response = conn.getresponse()
            if response.status != http.client.OK:
                raise FetchError(f"received HTTP status {response.status} {response.reason}")
            received = response.getheader("Content-Type", "")
            if received != content_type:
                raise FetchError(f"unexpected Content-Type: {received!r}")
            return response.read()
        finally:
            conn.close()

    def fetch(self, handler: FetchHandler) -> Tuple[str, bytes]:
        """Try each server and address in turn until the handler succeeds.

        Returns a description of the source and the fetched body.
        """
        for server in self.servers:
            try:
                addresses = self._resolve(server)
            except OSError as err:
                log.error("DNS lookup failed for config server %r: %s", server, err)
                continue

            for ip in order_addresses(addresses, self._rng):
                try:
                    url, body = handler(self, server, ip)
                except (OSError, http.client.HTTPException, FetchError, ValueError) as err:
                    log.warning("Fetch failed: %s", err)
                    continue
                source = f"{url} ({ip})"
                log.info("Successful fetch from config server %s", source)
                return source, body
        raise FetchError("all config server requests failed")

    def config(self) -> Tuple[str, bytes]:
        """Fetch the cluster configuration from any valid configuration server."""
        return self.fetch(_fetch_config)