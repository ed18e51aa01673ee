"""High availability state management for a load balancer engine."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import IntEnum
from typing import Any, Callable, Optional

log = logging.getLogger(__name__)


class HAState(IntEnum):
    """High availability state of a node."""

    UNKNOWN = 0
    DISABLED = 1
    ERROR = 2
    LEADER = 3
    BACKUP = 4
    SHUTDOWN = 5

    def __str__(self) -> str:
        return self.name


class HAError(Exception):
    """A high availability request could not be carried out."""


@dataclass
class HAStatus:
    """The high availability status of a node."""

    state: HAState = HAState.UNKNOWN
    since: datetime = field(default_factory=datetime.now)
    last_update: datetime = field(default_factory=datetime.now)
    sent: int = 0
    received: int = 0
    transitions: int = 0


class HAManager:
    """Tracks the HA state of an engine and runs transition actions."""

    def __init__(
        self,
        timeout: timedelta,
        on_master: Callable[[], Any],
        on_backup: Callable[[], Any],
        peer_failover: Optional[Callable[[], Any]] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.timeout = timeout
        self._on_master = on_master
        self._on_backup = on_backup
        self._peer_failover = peer_failover
        self._clock = clock
        now = clock()
        self._status = HAStatus(state=HAState.UNKNOWN, since=now, last_update=now)
        self._status_lock = threading.Lock()
        self._failover_pending = False
        self._failover_lock = threading.Lock()

    @property
    def status(self) -> HAStatus:
        """A copy of the current HA status."""
        with self._status_lock:
            return HAStatus(**vars(self._status))

    def state(self) -> HAState:
        """Return the current HA state."""
        with self._status_lock:
            return self._status.state

    def enable(self) -> None:
        """Enable HA peering for this node."""
        if self.state() == HAState.DISABLED:
            self.set_state(HAState.UNKNOWN)

    def disable(self) -> None:
        """Disable HA peering for this node."""
        self.set_state(HAState.DISABLED)

    def failover(self) -> bool:
        """Return whether master state should be relinquished, clearing the request."""
        with self._failover_lock:
            pending = self._failover_pending
            self._failover_pending = False
        return pending

    def request_failover(self, peer: bool) -> Any:
        """Request a failover, either locally or via the peer node."""
        state = self.state()
        if state == HAState.LEADER:
            with self._failover_lock:
                if self._failover_pending:
                    raise HAError("Failover request already pending")
                self._failover_pending = True
            return None

        if peer:
            raise HAError(f"Node is not master (current state is {state})")

        if self._peer_failover is None:
            raise HAError("no peer available to fail over")
        return self._peer_failover()

    def set_state(self, state: HAState) -> None:
        """Set the HA state, running transition actions when it changes."""
        current = self.state()

        if current == HAState.DISABLED and state != HAState.UNKNOWN:
            log.warning("Invalid HA state transition %s -> %s", current, state)
            return

        if current != state:
            log.info("HA state transition %s -> %s starting", current, state)
            if state == HAState.LEADER:
                self._on_master()
            elif current == HAState.LEADER or state == HAState.BACKUP:
                self._on_backup()
            log.info("HA state transition %s -> %s complete", current, state)

        now = self._clock()
        with self._status_lock:
            self._status.state = state
            self._status.since = now
            self._status.last_update = now

    def set_status(self, status: HAStatus) -> None:
        """Update the HA status from a status report."""
        self.set_state(status.state)
        with self._status_lock:
            self._status.since = status.since
            self._status.sent = status.sent
            self._status.received = status.received
            self._status.transitions = status.transitions

    def time_remaining(self) -> Optional[timedelta]:
        """Time until the current HA state expires, or None if it never does."""
        with self._status_lock:
            state = self._status.state
            deadline = self._status.last_update + self.timeout
        if state in (HAState.DISABLED, HAState.UNKNOWN):
            return None
        return deadline - self._clock()