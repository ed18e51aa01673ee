"""Configuration sources, change notifications and the on-disk config archive."""

from __future__ import annotations

import ipaddress
import logging
import os
import shutil
import stat
import time
from contextlib import suppress
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import IntEnum
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

from lbengine.types import Cluster, Healthcheck, HealthcheckType, IPAddress, sort_healthchecks

log = logging.getLogger(__name__)


class Source(IntEnum):
    """A source of cluster configuration."""

    NONE = 0
    DISK = 1
    PEER = 2
    SERVER = 3

    def __str__(self) -> str:
        return self.name.lower()


def source_by_name(name: str) -> Source:
    """Return the source with the given name."""
    for source in Source:
        if str(source) == name:
            return source
    raise ValueError(f"unknown source {name!r}")


@dataclass
class Notification:
    """A configuration change notification."""

    cluster: Cluster
    source: Source
    source_detail: str = ""
    time: datetime = field(default_factory=datetime.now)
    metadata_only: bool = False
    content: bytes = b""

    def __str__(self) -> str:
        return f"config from {self.source} ({self.source_detail}) at {self.time}"


def name_healthchecks(checks: Iterable[Healthcheck]) -> List[Healthcheck]:
    """Sort healthchecks canonically and name them by type, port and counter."""
    ordered = sort_healthchecks(checks)
    last = (HealthcheckType.NONE, 0)
    counter = 0
    for hc in ordered:
        current = (hc.type, hc.port)
        if current == last:
            counter += 1
        else:
            counter = 0
            last = current
        hc.name = f"{hc.type}/{hc.port}_{counter}"
    return ordered


def parse_cidr(text: str) -> Tuple[Optional[IPAddress], Optional[int]]:
    """Split an address in CIDR notation into its address and prefix length.

    Returns (None, None) if the text is not valid CIDR notation. IPv4-mapped
    IPv6 addresses are returned as IPv4 addresses.
    """
    if not text or "/" not in text:
        return None, None
    _, _, prefix = text.partition("/")
    if not prefix.isdigit():
        return None, None
    try:
        iface = ipaddress.ip_interface(text)
    except ValueError:
        return None, None
    addr = iface.ip
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        return addr.ipv4_mapped, iface.network.prefixlen
    return addr, iface.network.prefixlen


@dataclass(frozen=True)
class ArchiveLimits:
    """Maximums that the config archive may not exceed."""

    age: timedelta = timedelta(days=60)
    bytes: int = 10 << 30
    count: int = 1500


@dataclass(frozen=True)
class PruneStats:
    """What was kept in an archive and how many files were removed."""

    age: timedelta = timedelta(0)
    bytes: int = 0
    count: int = 0
    files_removed: int = 0
    files_errored: int = 0


def _remove_files(paths: Iterable[str]) -> Tuple[int, int]:
    removed = failed = 0
    for path in paths:
        try:
            os.remove(path)
        except OSError as err:
            log.warning("Error removing %s: %s", path, err)
            failed += 1
        else:
            removed += 1
    return removed, failed


def prune_archive(
    archive_dir: Union[str, os.PathLike],
    ref_time: datetime,
    limits: ArchiveLimits,
) -> PruneStats:
    """Remove the oldest files so that the archive stays within the limits.

    Files are kept newest first until one would exceed a limit; that file and
    every older one are removed.
    """
    entries = []
    with os.scandir(archive_dir) as it:
        for entry in it:
            st = entry.stat(follow_symlinks=False)
            mtime = datetime.fromtimestamp(st.st_mtime, tz=ref_time.tzinfo)
            entries.append((mtime, st.st_size, entry.path))
    entries.sort(key=lambda item: item[0], reverse=True)

    seen = PruneStats()
    for position, (mtime, size, _) in enumerate(entries):
        age = ref_time - mtime
        total = seen.bytes + size
        count = seen.count + 1
        if count > limits.count or total > limits.bytes or age > limits.age:
            removed, errored = _remove_files(path for _, _, path in entries[position:])
            return replace(seen, files_removed=removed, files_errored=errored)
        seen = PruneStats(age=age, bytes=total, count=count)
    return seen


def backup_config(path: Union[str, os.PathLike]) -> Optional[Path]:
    """Copy a config file into the archive directory beside it.

    Returns the path of the backup, or None if there was nothing to back up.
    """
    source = Path(path)
    try:
        mode = source.stat().st_mode
    except FileNotFoundError:
        return None

    backup_dir = source.parent / "archive"
    backup_dir.mkdir(mode=0o755, parents=True, exist_ok=True)

    try:
        stats = prune_archive(backup_dir, datetime.now(), ArchiveLimits())
    except OSError as err:
        log.error("Error while trying to prune archive: %s", err)
    else:
        log.info(
            "Pruned %d files from archive; %d files (%d bytes) skipped, oldest %s; "
            "%d files failed to be removed",
            stats.files_removed,
            stats.count,
            stats.bytes,
            stats.age,
            stats.files_errored,
        )

    target = backup_dir / f"{source.name}.{int(time.time())}"
    shutil.copyfile(source, target)
    os.chmod(target, stat.S_IMODE(mode))
    return target


def save_config(
    content: Union[str, bytes], path: Union[str, os.PathLike], backup: bool
) -> None:
    """Atomically replace the config file, optionally archiving the old one."""
    path = os.fspath(path)
    if backup:
        try:
            backup_config(path)
        except OSError as err:
            log.warning("Failed to back up existing file %s: %s", path, err)

    data = content.encode("utf-8") if isinstance(content, str) else bytes(content)
    tmp_path = f"{path}.{os.getpid()}"
    try:
        try:
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
        except OSError as err:
            raise OSError(
                f"save_config({path!r}): write to {tmp_path!r} failed: {err}"
            ) from err
        try:
            os.replace(tmp_path, path)
        except OSError as err:
            raise OSError(
                f"save_config({path!r}): rename({tmp_path!r}, {path!r}) failed: {err}"
            ) from err
    finally:
        with suppress(FileNotFoundError):
            os.remove(tmp_path)