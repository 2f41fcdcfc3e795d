"""Bidirectional bridge between the entry store and a remote store.

Local mutations are pushed as whole-entry replacements; remote change
notifications are mirrored into the store. Concurrent edits to different
cells of the same entry therefore resolve last-writer-wins at entry
level: the slower write's cells are lost, not merged.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from pycrossbar._constants import ECHO_HISTORY
from pycrossbar._redact import summarize_for_log
from pycrossbar.exceptions import CrossbarError
from pycrossbar.models.grid import MeasurementGrid
from pycrossbar.remote.base import RemoteStore, RemoteValue, Subscription
from pycrossbar.remote.reachability import ReachabilityProbe
from pycrossbar.state.context import SyncContext
from pycrossbar.state.events import ChangeKind, ChangeOrigin, EntryChange
from pycrossbar.state.store import EntryStore
from pycrossbar.sync.keys import KeyPolicy, sanitize_key

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectivityStatus:
    """Informational liveness of the remote store; never blocks local edits."""

    connected: bool
    message: str


class SyncEngine:
    """Keep an :class:`EntryStore` and a remote store converged.

    Usage::

        engine = SyncEngine(store, remote)
        await engine.start()
        store.mutate_cell("Wafer-A", 5)   # pushed in the background
        await engine.flush()
    """

    def __init__(
        self,
        store: EntryStore,
        remote: RemoteStore,
        *,
        key_policy: KeyPolicy = KeyPolicy.STRICT,
        probe: ReachabilityProbe | None = None,
        on_warning: Callable[[str], None] | None = None,
        on_status: Callable[[ConnectivityStatus], None] | None = None,
        on_active_changed: Callable[[MeasurementGrid | None], None] | None = None,
    ) -> None:
        self._store = store
        self._remote = remote
        self._key_policy = KeyPolicy(key_policy)
        self._probe = probe
        self._on_warning = on_warning
        self._on_status = on_status
        self._on_active_changed = on_active_changed

        self._loop: asyncio.AbstractEventLoop | None = None
        self._remove_listener: Callable[[], None] | None = None
        self._subscriptions: list[Subscription] = []
        self._in_flight: set[asyncio.Task[None]] = set()
        # Pushes accepted before start(); sent once the engine runs.
        self._queued: list[tuple[str, RemoteValue]] = []
        self._names_by_key: dict[str, str] = {}
        self._outbound: dict[str, deque[RemoteValue]] = {}
        self._status = ConnectivityStatus(False, "Connecting")
        self._remove_listener = self._store.add_listener(self._on_local_change)

    @property
    def context(self) -> SyncContext:
        return self._store.context

    @property
    def status(self) -> ConnectivityStatus:
        return self._status

    @property
    def is_running(self) -> bool:
        return self._loop is not None

    def key_for(self, name: str) -> str:
        """Sanitized remote key of entry *name*."""
        return sanitize_key(name, self._key_policy)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._loop is not None:
            return
        self._loop = asyncio.get_running_loop()
        if self._remove_listener is None:
            self._remove_listener = self._store.add_listener(self._on_local_change)
        self._subscriptions.append(self._remote.subscribe(self._on_remote_change))

        connectivity = self._remote.subscribe_connectivity(self._on_remote_connectivity)
        if connectivity is not None:
            self._subscriptions.append(connectivity)
        elif self._probe is not None:
            self._subscriptions.append(self._probe.subscribe(self._on_probe_result))
            await self._probe.start()
        else:
            self._set_status(ConnectivityStatus(False, "Local only"))

        queued, self._queued = self._queued, []
        for key, document in queued:
            self._schedule_push(key, document)

    async def stop(self) -> None:
        await self.flush()
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions.clear()
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None
        if self._probe is not None:
            await self._probe.stop()
        self._loop = None

    async def flush(self) -> None:
        """Wait until every in-flight push has completed or failed."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def _on_local_change(self, change: EntryChange) -> None:
        if change.origin != ChangeOrigin.LOCAL:
            return
        if self.context.applying_remote:
            _logger.debug("Suppressed push during remote apply name=%s", change.name)
            return

        key = self.key_for(change.name)
        document: RemoteValue
        if change.kind == ChangeKind.DELETED or change.grid is None:
            document = None
            self._names_by_key.pop(key, None)
        else:
            document = change.grid.to_document()
            self._names_by_key[key] = change.name
        self._remember_outbound(key, document)

        if self._loop is None:
            self._queued.append((key, document))
            return
        self._schedule_push(key, document)

    def _schedule_push(self, key: str, document: RemoteValue) -> None:
        assert self._loop is not None  # noqa: S101
        task = self._loop.create_task(self._push(key, document))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _push(self, key: str, document: RemoteValue) -> None:
        _logger.debug("Pushing key=%s document=%s", key, summarize_for_log(document))
        try:
            await self._remote.put(key, document)
        except CrossbarError as exc:
            self._forget_outbound(key, document)
            action = "delete" if document is None else "save"
            self._warn(f"Failed to {action} entry {key!r}: {exc}")

    def _remember_outbound(self, key: str, document: RemoteValue) -> None:
        history = self._outbound.get(key)
        if history is None:
            history = deque(maxlen=ECHO_HISTORY)
            self._outbound[key] = history
        history.append(document)

    def _forget_outbound(self, key: str, document: RemoteValue) -> None:
        history = self._outbound.get(key)
        if not history:
            return
        for index, recorded in enumerate(history):
            if recorded is document:
                del history[index]
                return

    def _is_superseded_echo(self, key: str, document: RemoteValue) -> bool:
        """Return True if *document* is our own write to *key*, replaced by a later one.

        Records up to and including the match are discarded. An echo of our
        latest write is not superseded; the caller compares it with the
        local entry, since another client may have written in between.
        """
        history = self._outbound.get(key)
        if not history:
            return False
        for index, recorded in enumerate(history):
            if recorded == document:
                for _ in range(index + 1):
                    history.popleft()
                return bool(history)
        return False

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _on_remote_change(self, key: str, value: RemoteValue) -> None:
        if value is None:
            self._apply_remote_tombstone(key)
            return

        try:
            grid = MeasurementGrid.model_validate(value)
        except ValidationError as exc:
            self._warn(f"Ignoring malformed remote entry {key!r}: {exc.error_count()} validation error(s)")
            _logger.debug("Malformed remote entry key=%s value=%s", key, summarize_for_log(value))
            return

        document = grid.to_document()
        if self._is_superseded_echo(key, document):
            _logger.debug("Ignored superseded self-echo key=%s", key)
            return
        current = self._store.find(grid.name)
        if current is not None and current.to_document() == document:
            self._names_by_key[key] = grid.name
            return

        with self.context.remote_apply():
            previous_name = self._names_by_key.get(key)
            if previous_name is not None and previous_name != grid.name:
                self._store.remove_remote(previous_name)
            self._names_by_key[key] = grid.name
            changed = self._store.apply_remote(grid)
            if changed and self.context.active_name == grid.name:
                self._notify_active(self._store.find(grid.name))
        if changed:
            _logger.debug("Applied remote entry key=%s name=%s", key, grid.name)

    def _apply_remote_tombstone(self, key: str) -> None:
        if self._is_superseded_echo(key, None):
            _logger.debug("Ignored superseded self-echo tombstone key=%s", key)
            return
        name = self._names_by_key.pop(key, None)
        if name is None or name not in self._store:
            return
        was_active = self.context.active_name == name
        with self.context.remote_apply():
            removed = self._store.remove_remote(name)
            if removed and was_active:
                self._notify_active(None)
        if removed:
            _logger.debug("Applied remote delete key=%s name=%s", key, name)

    def _notify_active(self, grid: MeasurementGrid | None) -> None:
        if self._on_active_changed is not None:
            self._on_active_changed(grid)

    # ------------------------------------------------------------------
    # Status and warnings
    # ------------------------------------------------------------------

    def _on_remote_connectivity(self, connected: bool) -> None:
        self._set_status(ConnectivityStatus(connected, "Connected" if connected else "Disconnected"))

    def _on_probe_result(self, reachable: bool) -> None:
        self._set_status(ConnectivityStatus(reachable, "Online" if reachable else "Offline"))

    def _set_status(self, status: ConnectivityStatus) -> None:
        if status == self._status:
            return
        self._status = status
        _logger.debug("Connectivity connected=%s message=%s", status.connected, status.message)
        if self._on_status is not None:
            self._on_status(status)

    def _warn(self, message: str) -> None:
        _logger.warning(message)
        if self._on_warning is not None:
            self._on_warning(message)

    def stats(self) -> dict[str, Any]:
        """Diagnostic counters for debug output."""
        return {
            "in_flight": len(self._in_flight),
            "queued": len(self._queued),
            "tracked_keys": len(self._names_by_key),
            "connected": self._status.connected,
        }
