# lbengine

`lbengine` is the configuration and control core of a load-balancer
engine. It models a cluster's configuration and keeps the on-disk copy of
it and its archive. It fetches configuration from configuration servers
and watches configuration sources for changes. It also tracks the node's
high-availability state and hands out firewall marks.

It uses only the standard library.

## Modules

### `lbengine.types`

This is the cluster data model. It holds the dataclasses `Cluster`,
`Vserver`, `VserverEntry`, `Healthcheck`, `Backend`, `Node`, `Host`,
`AccessGrant` and `AccessGroup`, and the enumerations `HealthcheckMode`
(`PLAIN`, `DSR`, `TUN`), `HealthcheckType` and `IPProto` (`TCP`, `UDP`).

- The `add_*` methods on `Cluster`, `Vserver` and `VserverEntry` store an
  item under its key. If the key is already present they raise
  `ValueError`.
  - A vserver entry is keyed as `"<port>/<proto>"`, for example `80/TCP`.
  - An access grant is keyed as `"user:<name>"` or `"group:<name>"`.
  - Backends and nodes are keyed by host name, VIPs by `str(vip)`, and
    healthchecks by their name.
  - `Cluster.add_vip_subnet` accepts anything that
    `ipaddress.ip_network` accepts. It stores the network under its
    string form.
- `sort_healthchecks(checks)` sorts the checks by type, then port, send,
  receive, method, code, proxy, TLS verification, interval and timeout.
  The order is the same every time.

### `lbengine.engine_config`

`EngineConfig` is a dataclass that holds the engine's settings with their
default values. The settings cover intervals, interfaces, socket paths,
config server list and port, sync port and VRRP details.
`default_engine_config()` returns a new instance.

### `lbengine.config`

- `Source` (`NONE`, `DISK`, `PEER`, `SERVER`) names a source of
  configuration. `source_by_name(name)` looks a source up by its
  lower-case name. An unknown name raises `ValueError`.
- `Notification` carries a `Cluster` together with its source, a detail
  string, a time, a `metadata_only` flag and the raw `content` bytes.
- `name_healthchecks(checks)` sorts healthchecks and names each one
  `"<type>/<port>_<n>"`. The counter `n` counts repeats of the same type
  and port. HTTPS checks share the `HTTP` label and TCP-TLS checks share
  the `TCP` label.
- `parse_cidr(text)` returns `(address, prefix_length)`. It returns
  `(None, None)` for input that is not CIDR. IPv4-mapped IPv6 addresses
  come back as IPv4.
- `save_config(content, path, backup)` writes through a temporary file
  and renames it over `path`. If `backup` is true, it first copies the
  old file with `backup_config`.
- `backup_config(path)` copies the file to
  `archive/<name>.<unix time>` next to it, prunes the archive, and
  returns the path of the backup. It returns `None` if the file does not
  exist.
- `prune_archive(archive_dir, ref_time, limits)` keeps files newest
  first. The first file that would break a limit in `ArchiveLimits`, and
  every file older than it, is removed. The default limits are 60 days,
  10 GiB and 1500 files. It returns a `PruneStats`.

### `lbengine.fetcher`

`Fetcher(config)` fetches over HTTPS from the configured servers in
order. It verifies servers against the CA file named by the
configuration.

- For each server it resolves the name and tries every address. It
  returns `(source description, body)` from the first address that
  succeeds.
- If every attempt fails, it raises `FetchError`.
- `Fetcher.config()` fetches `/config/<cluster name>` and requires the
  Content-Type `application/x-protobuffer`.
- `fetch_from_host(ip, url, content_type)` performs one such request
  against a single address.
- `order_addresses(addresses, rng)` shuffles the addresses and puts
  IPv6 before IPv4.
- You can pass a custom SSL context, resolver and random generator as
  keyword arguments.

### `lbengine.notifier`

`Notifier(config, loaders, start=True)` reads configuration through
loader callables, keyed by `Source`. Each loader returns a
`Notification` or raises an exception.

- **Bootstrap.** At start-up it tries peer, disk and server in that
  order. It puts the first result on the `notifications` queue, which
  holds at most one notification. If no source works, it raises
  `ConfigLoadError`.
- **Checking.** A background thread calls `config_check()` at every
  `config_interval` and whenever `reload()` is called. A second pending
  reload raises `RuntimeError`.
- **What `config_check()` does:**
  - It falls back from peer to server after
    `max_peer_config_sync_errors` failures.
  - It ignores configuration from the server that is older than the
    current one.
  - It marks changes that touch only metadata.
  - It rate-limits vserver changes.
  - It saves configuration that did not come from disk to
    `cluster_file`.
- `source()` returns the current source. `set_source(source)` changes it
  and requests a reload. `shutdown()` stops the thread.
- `rate_limit_vservers(new, old)` caps how much one update can change:
  - If the update deletes any vserver, the result keeps the surviving
    vservers and applies at most ten deletions.
  - Otherwise it keeps every existing vserver and adds at most ten new
    ones.

```python
from lbengine.config import Notification, Source
from lbengine.engine_config import default_engine_config
from lbengine.notifier import Notifier
from lbengine.types import Cluster

def from_disk():
    return Notification(cluster=Cluster(site="example"), source=Source.DISK)

notifier = Notifier(default_engine_config(), {Source.DISK: from_disk}, start=False)
note = notifier.notifications.get_nowait()
```

### `lbengine.ha`

`HAManager(timeout, on_master, on_backup, peer_failover=None)` tracks an
`HAState` and an `HAStatus`.

- **State changes.** `set_state(state)` calls `on_master` when the node
  becomes `LEADER`. It calls `on_backup` when the node leaves `LEADER`
  or becomes `BACKUP`. A node that is `DISABLED` may only move to
  `UNKNOWN`; any other transition is logged and ignored.
- **Enabling and status.** `enable()` moves `DISABLED` to `UNKNOWN`, and
  `disable()` sets the state to `DISABLED`. `set_status(status)` applies
  a status report.
- **Failover.** On a leader, `request_failover(peer)` marks a failover
  as pending. `failover()` returns that flag and clears it.
  - On a node that is not the leader, a request with `peer=True` raises
    `HAError`.
  - Otherwise the request is handed to `peer_failover`.
- **Expiry.** `time_remaining()` returns the time until the state times
  out. It returns `None` in the `DISABLED` and `UNKNOWN` states.

### `lbengine.marks`

`MarkAllocator(base, size)` is a thread-safe first-in, first-out pool of
marks. `get()` takes the next mark and `put(mark)` returns one to the
end. `get()` on an empty pool raises `AllocatorExhausted`. The module
defines the usual pool ranges: `FWM_ALLOC_BASE`/`FWM_ALLOC_SIZE` and
`DSR_MARK_BASE`/`DSR_MARK_SIZE`.

## What it does not do

The package is a library; it has no command and runs no engine process.

- **No configuration decoding.** It does not decode a cluster
  configuration file or response into a `Cluster`. The caller supplies
  that decoding through the notifier's loaders.
- **No control of the host.** It does not configure network interfaces,
  VLANs, IPVS services, BGP or ARP.
- **No servers and no healthchecks.** It serves no IPC or sync
  endpoint, and it runs no healthchecks.

## Requirements

Python 3.10 or later. The tests use pytest, which the `test` extra
installs.