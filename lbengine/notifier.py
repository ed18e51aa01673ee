"""Monitors cluster configuration sources and reports configuration changes."""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import replace
from typing import Callable, Dict, Mapping, Optional

from lbengine.config import Notification, Source, save_config
from lbengine.engine_config import EngineConfig
from lbengine.types import Cluster, Vserver

log = logging.getLogger(__name__)

# The number of new or deleted vservers allowed in a new cluster config.
VSERVER_LIMIT = 10

Loader = Callable[[], Notification]


class ConfigLoadError(Exception):
    """No configuration could be loaded from any source."""


def rate_limit_vservers(
    new_vservers: Mapping[str, Vserver],
    old_vservers: Optional[Mapping[str, Vserver]],
) -> Dict[str, Vserver]:
    """Limit the number of vservers added or deleted by a new config.

    If any vserver is deleted, only deletions are applied (at most
    VSERVER_LIMIT of them) and no vservers are added, so that deletion and
    creation never conflict after limiting.
    """
    old_vservers = old_vservers or {}
    limited: Dict[str, Vserver] = {}

    if any(name not in new_vservers for name in old_vservers):
        deleted = 0
        for name, vserver in old_vservers.items():
            if name in new_vservers:
                limited[name] = vserver
            elif deleted >= VSERVER_LIMIT:
                log.info("skipped deletion of svc %s", name)
                limited[name] = vserver
            else:
                deleted += 1
        return limited

    added = 0
    for name, vserver in new_vservers.items():
        if name in old_vservers:
            limited[name] = vserver
        elif added < VSERVER_LIMIT:
            limited[name] = vserver
            added += 1
        else:
            log.info("skipped creation of svc %s", name)
    return limited


def _without_status(cluster: Cluster) -> Cluster:
    return replace(cluster, last_update=None, attributes=[], warnings=[])


class Notifier:
    """Watches configuration sources and queues a Notification on each change.

    Notifications are delivered through the ``notifications`` queue, which
    holds at most one pending notification. Each source is read by a loader
    callable that returns a Notification or raises.
    """

    def __init__(
        self,
        config: EngineConfig,
        loaders: Mapping[Source, Loader],
        *,
        start: bool = True,
    ):
        self.notifications: "queue.Queue[Notification]" = queue.Queue(maxsize=1)
        self._config = config
        self._loaders = dict(loaders)
        self._lock = threading.Lock()
        self._source = Source.SERVER
        self._wake = threading.Condition()
        self._reload_pending = False
        self._stopping = False
        self._peer_failures = 0
        self._thread: Optional[threading.Thread] = None

        note = self.bootstrap()
        note.cluster.vservers = rate_limit_vservers(note.cluster.vservers, None)
        self.notifications.put_nowait(note)
        self._last = note

        # Bring the on-disk configuration up to date if it differs.
        if note.source != Source.DISK:
            try:
                disk_note: Optional[Notification] = self._pull_config(Source.DISK)
            except Exception:
                disk_note = None
            if disk_note is None or disk_note.cluster != note.cluster:
                self._save(note, backup=True)

        if start:
            self._thread = threading.Thread(
                target=self._run, name="config-notifier", daemon=True
            )
            self._thread.start()

    def source(self) -> Source:
        """Return the current configuration source."""
        with self._lock:
            return self._source

    def set_source(self, source: Source) -> None:
        """Switch to a new configuration source and request a reload."""
        with self._lock:
            self._source = source
        try:
            self.reload()
        except RuntimeError as err:
            log.warning("Reload failed after setting source: %s", err)

    def reload(self) -> None:
        """Request an immediate reload from the configuration source."""
        with self._wake:
            if self._reload_pending:
                raise RuntimeError("reload request already queued")
            self._reload_pending = True
            self._wake.notify_all()

    def shutdown(self) -> None:
        """Stop watching for configuration changes."""
        with self._wake:
            self._stopping = True
            self._wake.notify_all()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    def bootstrap(self) -> Notification:
        """Load an initial configuration from peer, disk or server, in that order."""
        for source in (Source.PEER, Source.DISK, Source.SERVER):
            try:
                return self._pull_config(source)
            except Exception as err:
                log.warning("Failed to load cluster config from %s: %s", source, err)
        raise ConfigLoadError("failed to load any cluster config")

    def config_check(self) -> None:
        """Check the current source for changes and queue a notification."""
        log.info("Checking for config changes...")

        source = self.source()
        last = self._last
        try:
            note = self._pull_config(source)
            error: Optional[Exception] = None
        except Exception as err:
            note, error = None, err

        if error is not None and source == Source.PEER:
            log.error("Failed to pull configuration from peer: %s", error)
            self._peer_failures += 1
            if self._peer_failures < self._config.max_peer_config_sync_errors:
                return
            log.info(
                "Sync from peer failed %d times, falling back to config server",
                self._config.max_peer_config_sync_errors,
            )
            source = Source.SERVER
            try:
                note = self._pull_config(source)
                error = None
            except Exception as err:
                note, error = None, err
        self._peer_failures = 0
        if error is not None or note is None:
            log.error("Failed to pull configuration: %s", error)
            return

        if source not in (Source.DISK, Source.PEER):
            old_update = last.cluster.last_update
            new_update = note.cluster.last_update
            if old_update is not None and new_update is not None and old_update > new_update:
                log.info("Ignoring out-of-date config from %s", note.source_detail)
                return

        if note.cluster == last.cluster:
            log.info("No config changes found")
            return

        old_cluster = _without_status(last.cluster)
        new_cluster = _without_status(note.cluster)
        if new_cluster == old_cluster:
            note.metadata_only = True

        note.cluster.vservers = rate_limit_vservers(
            new_cluster.vservers, old_cluster.vservers
        )

        log.info("Sending config update notification")
        try:
            self.notifications.put_nowait(note)
        except queue.Full:
            log.warning("Config update channel is full. Skipped one config.")
            return
        self._last = note
        log.info("Sent config update notification")

        if source != Source.DISK:
            self._save(note, backup=not note.metadata_only)

    def _save(self, note: Notification, backup: bool) -> None:
        try:
            save_config(note.content, self._config.cluster_file, backup)
        except OSError as err:
            log.warning("Failed to save config to %s: %s", self._config.cluster_file, err)

    def _pull_config(self, source: Source) -> Notification:
        loader = self._loaders.get(source)
        if loader is None:
            raise ValueError(f"unsupported Notifier source {source}")
        return loader()

    def _run(self) -> None:
        log.info("Configuration notifier started")
        interval = max(self._config.config_interval.total_seconds(), 0.001)
        next_tick = time.monotonic() + interval
        while True:
            with self._wake:
                self._wake.wait_for(
                    lambda: self._reload_pending or self._stopping,
                    timeout=max(0.0, next_tick - time.monotonic()),
                )
                if self._stopping:
                    return
                reload = self._reload_pending
                self._reload_pending = False
            if not reload:
                if time.monotonic() < next_tick:
                    continue
                next_tick += interval
            self.config_check()