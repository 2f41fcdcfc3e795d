"""High-level async tracker composing store, sync engine and remote store."""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

import aiohttp

from pycrossbar import export as _export
from pycrossbar.config import Backend, TrackerConfig
from pycrossbar.exceptions import CrossbarError
from pycrossbar.models._base import utcnow
from pycrossbar.models.export import ExportDocument, Statistics
from pycrossbar.models.grid import MeasurementGrid, MeasurementState
from pycrossbar.navigation import device_index
from pycrossbar.remote.base import RemoteStore
from pycrossbar.remote.firebase import FirebaseRemoteStore
from pycrossbar.remote.local import LocalRemoteStore
from pycrossbar.remote.mqtt import MqttRemoteStore
from pycrossbar.remote.reachability import ReachabilityProbe
from pycrossbar.state.context import SyncContext
from pycrossbar.state.events import EntryChange
from pycrossbar.state.store import EntryStore
from pycrossbar.sync.engine import ConnectivityStatus, SyncEngine
from pycrossbar.sync.keys import sanitize_key

_logger = logging.getLogger(__name__)


def build_remote_store(
    config: TrackerConfig,
    *,
    session: aiohttp.ClientSession | None = None,
) -> RemoteStore:
    """Instantiate the remote store variant named by ``config.backend``."""
    if config.backend == Backend.FIREBASE:
        assert config.database_url is not None  # noqa: S101
        return FirebaseRemoteStore(
            config.database_url,
            root=config.database_root,
            push_retries=config.push_retries,
            request_timeout=config.request_timeout,
            session=session,
        )
    if config.backend == Backend.MQTT:
        return MqttRemoteStore(config.mqtt, publish_timeout=config.request_timeout)
    return LocalRemoteStore(config.storage_path)


class CrossbarTracker:
    """Collaborative crossbar measurement tracker.

    Every edit applies locally at once and is pushed in the background;
    edits from other clients arrive through the remote store.

    Usage::

        async with CrossbarTracker(TrackerConfig.from_env()) as tracker:
            tracker.create("Wafer-A", 8)
            tracker.cycle("Wafer-A", 5)
            print(tracker.export_json("Wafer-A"))

    Confirmation of destructive operations (``delete``, ``clear_all``,
    overwriting imports) belongs to the caller.
    """

    def __init__(
        self,
        config: TrackerConfig | None = None,
        *,
        remote: RemoteStore | None = None,
        session: aiohttp.ClientSession | None = None,
        clock: Callable[[], datetime] = utcnow,
        on_change: Callable[[EntryChange], None] | None = None,
        on_warning: Callable[[str], None] | None = None,
        on_status: Callable[[ConnectivityStatus], None] | None = None,
        on_active_changed: Callable[[MeasurementGrid | None], None] | None = None,
    ) -> None:
        self._config = config or TrackerConfig()
        self._clock = clock
        policy = self._config.effective_key_policy
        self._context = SyncContext()
        self._store = EntryStore(
            self._context,
            clock=clock,
            key_func=functools.partial(sanitize_key, policy=policy),
        )
        self._remote = remote if remote is not None else build_remote_store(self._config, session=session)
        probe = None
        if self._config.reachability_url:
            probe = ReachabilityProbe(
                self._config.reachability_url,
                interval=self._config.reachability_interval,
                timeout=self._config.request_timeout,
                session=session,
            )
        self._engine = SyncEngine(
            self._store,
            self._remote,
            key_policy=policy,
            probe=probe,
            on_warning=on_warning,
            on_status=on_status,
            on_active_changed=on_active_changed,
        )
        if on_change is not None:
            self._store.add_listener(on_change)
        self._started = False

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> CrossbarTracker:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def start(self) -> None:
        if self._started:
            return
        await self._remote.start()
        await self._engine.start()
        self._started = True
        _logger.debug("Tracker started backend=%s", self._config.backend)

    async def close(self) -> None:
        if not self._started:
            return
        self._started = False
        try:
            await self._engine.stop()
        finally:
            await self._remote.close()

    async def flush(self) -> None:
        """Wait for every in-flight remote write."""
        await self._engine.flush()

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def config(self) -> TrackerConfig:
        return self._config

    @property
    def store(self) -> EntryStore:
        return self._store

    @property
    def engine(self) -> SyncEngine:
        return self._engine

    @property
    def context(self) -> SyncContext:
        return self._context

    @property
    def status(self) -> ConnectivityStatus:
        return self._engine.status

    @property
    def active(self) -> MeasurementGrid | None:
        return self._store.active

    def names(self) -> list[str]:
        return self._store.names()

    def get(self, name: str) -> MeasurementGrid:
        return self._store.get(name)

    def _require_active(self) -> MeasurementGrid:
        grid = self._store.active
        if grid is None:
            raise CrossbarError("No entry loaded")
        return grid

    # ------------------------------------------------------------------
    # Entry operations
    # ------------------------------------------------------------------

    def create(self, name: str, size: int, *, activate: bool = True) -> MeasurementGrid:
        grid = self._store.create(name, size)
        if activate:
            self._store.load(grid.name)
        return grid

    def load(self, name: str) -> MeasurementGrid:
        return self._store.load(name)

    def delete(self, name: str) -> None:
        """Delete *name* here and, through the remote store, everywhere."""
        self._store.delete(name)

    def cycle(self, name: str, index: int) -> MeasurementState:
        return self._store.mutate_cell(name, index)

    def cycle_active(self, index: int) -> MeasurementState:
        return self._store.mutate_cell(self._require_active().name, index)

    def cycle_at(self, name: str, bottom: int | str, top: int | str) -> MeasurementState:
        """Cycle the device where bottom electrode *bottom* crosses top electrode *top*."""
        grid = self._store.get(name)
        return self._store.mutate_cell(name, device_index(bottom, top, grid.size))

    def clear_all(self, name: str) -> None:
        self._store.clear_all(name)

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def statistics(self, name: str) -> Statistics:
        return _export.compute_statistics(self._store.get(name).cells)

    def export(self, name: str) -> ExportDocument:
        return _export.build_export(self._store.get(name))

    def export_json(self, name: str) -> str:
        return _export.dumps(self._store.get(name))

    def import_document(
        self,
        data: str | bytes | Mapping[str, Any],
        *,
        overwrite: bool = False,
        activate: bool = True,
    ) -> MeasurementGrid:
        """Import an export document as a new (or, if confirmed, replaced) entry."""
        grid = _export.parse_import(data, now=self._clock())
        stored = self._store.replace_from_import(grid, overwrite=overwrite)
        if activate:
            self._store.load(stored.name)
        return stored
