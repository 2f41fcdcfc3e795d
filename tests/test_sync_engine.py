from __future__ import annotations

import asyncio
import copy
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import pytest

from pycrossbar.exceptions import RemoteWriteError
from pycrossbar.models.grid import MeasurementGrid, MeasurementState
from pycrossbar.remote.base import Subscribers
from pycrossbar.state.context import SyncContext
from pycrossbar.state.events import ChangeOrigin, EntryChange
from pycrossbar.state.store import EntryStore
from pycrossbar.sync.engine import ConnectivityStatus, SyncEngine
from pycrossbar.sync.keys import sanitize_key


@dataclass
class FakeRemoteStore:
    """Records puts and echoes them to subscribers on the next loop turn."""

    echo: bool = True
    fail_puts: bool = False
    with_connectivity: bool = False
    puts: list[tuple[str, dict[str, Any] | None]] = field(default_factory=list)
    changes: Subscribers = field(default_factory=Subscribers)
    connectivity: Subscribers = field(default_factory=Subscribers)

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def put(self, key: str, value: dict[str, Any] | None) -> None:
        self.puts.append((key, copy.deepcopy(value)))
        if self.fail_puts:
            raise RemoteWriteError("store unavailable", key=key)
        if self.echo:
            asyncio.get_running_loop().call_soon(self.changes.notify, key, copy.deepcopy(value))

    def subscribe(self, on_change: Callable[[str, dict[str, Any] | None], None]) -> Any:
        return self.changes.add(on_change)

    def subscribe_connectivity(self, on_status: Callable[[bool], None]) -> Any:
        if not self.with_connectivity:
            return None
        return self.connectivity.add(on_status)

    def emit(self, key: str, value: dict[str, Any] | None) -> None:
        self.changes.notify(key, copy.deepcopy(value))


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


def _setup(
    remote: FakeRemoteStore,
    **engine_kwargs: Any,
) -> tuple[EntryStore, SyncEngine, list[EntryChange]]:
    store = EntryStore(SyncContext(), key_func=sanitize_key)
    changes: list[EntryChange] = []
    store.add_listener(changes.append)
    engine = SyncEngine(store, remote, **engine_kwargs)
    return store, engine, changes


def _remote_document(name: str, size: int = 8, **cells: int) -> dict[str, Any]:
    grid = MeasurementGrid.new(name, size)
    for index, value in cells.items():
        grid.cells[int(index.lstrip("c"))] = value
    return grid.to_document()


@pytest.mark.asyncio
async def test_n_local_edits_produce_exactly_n_puts_despite_self_echo() -> None:
    remote = FakeRemoteStore()
    store, engine, changes = _setup(remote)
    await engine.start()

    store.create("Wafer-A", 8)
    for _ in range(7):
        store.mutate_cell("Wafer-A", 5)
    await engine.flush()
    await _settle()

    assert len(remote.puts) == 8
    assert all(origin == ChangeOrigin.LOCAL for origin in (c.origin for c in changes))
    assert len(changes) == 8
    # 7 cycles from unmeasured land on misaligned.
    assert store.get("Wafer-A").state_at(5) == MeasurementState.MISALIGNED


@pytest.mark.asyncio
async def test_push_sends_whole_entry_under_sanitized_key() -> None:
    remote = FakeRemoteStore(echo=False)
    store, engine, _ = _setup(remote)
    await engine.start()

    store.create("Wafer A.1", 8)
    store.mutate_cell("Wafer A.1", 3)
    await engine.flush()

    key, document = remote.puts[-1]
    assert key == "Wafer_A_1"
    assert document is not None
    assert document["name"] == "Wafer A.1"
    assert len(document["measurements"]) == 64
    assert document["measurements"][3] == 1
    assert document["timestamps"][3] is not None


@pytest.mark.asyncio
async def test_remote_change_from_other_client_is_applied() -> None:
    remote = FakeRemoteStore()
    active: list[MeasurementGrid | None] = []
    store, engine, changes = _setup(remote, on_active_changed=active.append)
    await engine.start()
    store.create("Wafer-A", 8)
    store.load("Wafer-A")
    await engine.flush()
    await _settle()

    remote.emit("Wafer-A", _remote_document("Wafer-A", c9=2))

    assert store.get("Wafer-A").state_at(9) == MeasurementState.FAILED
    assert changes[-1].origin == ChangeOrigin.REMOTE
    assert active and active[-1] is not None and active[-1].cells[9] == 2
    # Mirroring a remote change never pushes.
    assert len(remote.puts) == 1


@pytest.mark.asyncio
async def test_initial_snapshot_populates_store() -> None:
    remote = FakeRemoteStore()
    store, engine, _ = _setup(remote)
    await engine.start()

    remote.emit("Wafer-A", _remote_document("Wafer-A"))
    remote.emit("Wafer-B", _remote_document("Wafer-B", size=16))

    assert store.names() == ["Wafer-A", "Wafer-B"]
    assert store.get("Wafer-B").cell_count == 256
    assert remote.puts == []


@pytest.mark.asyncio
async def test_guard_suppresses_push_from_listener_reacting_to_remote_change() -> None:
    remote = FakeRemoteStore()
    store, engine, _ = _setup(remote)

    def resave(change: EntryChange) -> None:
        # A view that writes back whatever it displays.
        if change.origin == ChangeOrigin.REMOTE and change.grid is not None:
            store.replace_from_import(change.grid, overwrite=True)

    store.add_listener(resave)
    await engine.start()

    remote.emit("Wafer-A", _remote_document("Wafer-A", c1=1))
    await engine.flush()
    await _settle()

    assert remote.puts == []
    assert engine.context.applying_remote is False


@pytest.mark.asyncio
async def test_remote_tombstone_removes_entry_and_clears_active() -> None:
    remote = FakeRemoteStore()
    active: list[MeasurementGrid | None] = []
    store, engine, _ = _setup(remote, on_active_changed=active.append)
    await engine.start()
    remote.emit("Wafer_A_1", _remote_document("Wafer A.1"))
    store.load("Wafer A.1")

    remote.emit("Wafer_A_1", None)

    assert "Wafer A.1" not in store
    assert store.context.active_name is None
    assert active == [None]
    assert remote.puts == []


@pytest.mark.asyncio
async def test_local_delete_pushes_tombstone_and_late_echo_does_not_resurrect() -> None:
    remote = FakeRemoteStore()
    store, engine, _ = _setup(remote)
    await engine.start()

    store.create("Wafer-A", 8)
    store.delete("Wafer-A")
    await engine.flush()
    await _settle()

    assert [value is None for _, value in remote.puts] == [False, True]
    assert "Wafer-A" not in store


@pytest.mark.asyncio
async def test_push_failure_warns_and_keeps_optimistic_state() -> None:
    remote = FakeRemoteStore(fail_puts=True)
    warnings: list[str] = []
    store, engine, _ = _setup(remote, on_warning=warnings.append)
    await engine.start()

    store.create("Wafer-A", 8)
    store.mutate_cell("Wafer-A", 0)
    await engine.flush()

    assert len(warnings) == 2
    assert "Wafer-A" in warnings[0]
    assert store.get("Wafer-A").state_at(0) == MeasurementState.SUCCESS


@pytest.mark.asyncio
async def test_malformed_remote_document_is_reported_not_applied() -> None:
    remote = FakeRemoteStore()
    warnings: list[str] = []
    store, engine, _ = _setup(remote, on_warning=warnings.append)
    await engine.start()

    remote.emit("broken", {"name": "broken", "size": 8, "measurements": [0, 1]})

    assert "broken" not in store
    assert warnings and "broken" in warnings[0]


@pytest.mark.asyncio
async def test_edits_before_start_are_queued_then_pushed() -> None:
    remote = FakeRemoteStore(echo=False)
    store, engine, _ = _setup(remote)

    store.create("Wafer-A", 8)
    assert remote.puts == []

    await engine.start()
    await engine.flush()
    assert [key for key, _ in remote.puts] == ["Wafer-A"]


@pytest.mark.asyncio
async def test_status_local_only_without_connectivity_source() -> None:
    remote = FakeRemoteStore()
    _, engine, _ = _setup(remote)
    await engine.start()
    assert engine.status == ConnectivityStatus(False, "Local only")


@pytest.mark.asyncio
async def test_status_follows_store_connectivity_signal() -> None:
    remote = FakeRemoteStore(with_connectivity=True)
    statuses: list[ConnectivityStatus] = []
    _, engine, _ = _setup(remote, on_status=statuses.append)
    await engine.start()

    remote.connectivity.notify(True)
    remote.connectivity.notify(False)

    assert [s.connected for s in statuses] == [True, False]
    assert engine.status.message == "Disconnected"


@pytest.mark.asyncio
async def test_stop_unsubscribes_from_remote_changes() -> None:
    remote = FakeRemoteStore()
    store, engine, _ = _setup(remote)
    await engine.start()
    await engine.stop()

    remote.emit("Wafer-A", _remote_document("Wafer-A"))
    assert "Wafer-A" not in store


@pytest.mark.asyncio
async def test_delete_then_recreate_survives_own_tombstone_echo() -> None:
    remote = FakeRemoteStore()
    store, engine, _ = _setup(remote)
    await engine.start()
    store.create("W", 8)
    await engine.flush()
    await _settle()

    store.delete("W")
    store.create("W", 8)
    store.mutate_cell("W", 2)
    await engine.flush()
    await _settle()

    assert store.names() == ["W"]
    assert store.get("W").to_document() == remote.puts[-1][1]


@pytest.mark.asyncio
async def test_own_latest_echo_reapplied_after_foreign_write_in_between() -> None:
    remote = FakeRemoteStore(echo=False)
    store, engine, _ = _setup(remote)
    await engine.start()
    store.create("W", 8)
    store.mutate_cell("W", 1)
    store.mutate_cell("W", 3)
    await engine.flush()
    ours = [document for _, document in remote.puts]
    foreign = _remote_document("W", c2=1)

    # Store order: our second-to-last write, another client's write, our last write.
    remote.emit("W", ours[1])
    remote.emit("W", foreign)
    assert store.get("W").cells[2] == 1
    remote.emit("W", ours[2])

    assert store.get("W").to_document() == ours[2]


@pytest.mark.asyncio
async def test_stats_report_queued_pushes() -> None:
    remote = FakeRemoteStore(echo=False)
    store, engine, _ = _setup(remote)
    store.create("Wafer-A", 8)

    assert engine.stats() == {"in_flight": 0, "queued": 1, "tracked_keys": 1, "connected": False}
