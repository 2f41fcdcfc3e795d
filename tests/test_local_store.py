from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import pytest

from pycrossbar.exceptions import CrossbarError, RemoteReadError
from pycrossbar.remote.local import LocalRemoteStore

_DOC = {"name": "Wafer-A", "size": 8, "measurements": [0] * 64}


async def _settle() -> None:
    for _ in range(3):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_put_notifies_after_returning() -> None:
    store = LocalRemoteStore()
    await store.start()
    seen: list[tuple[str, Any]] = []
    store.subscribe(lambda key, value: seen.append((key, value)))

    await store.put("Wafer-A", _DOC)
    assert seen == []

    await _settle()
    assert seen == [("Wafer-A", _DOC)]


@pytest.mark.asyncio
async def test_snapshot_survives_restart(tmp_path: Path) -> None:
    path = tmp_path / "state" / "entries.json"
    first = LocalRemoteStore(path)
    await first.start()
    await first.put("Wafer-A", _DOC)
    await first.put("Wafer_B", {**_DOC, "name": "Wafer B"})
    await first.put("Wafer_B", None)
    await first.close()

    assert json.loads(path.read_text(encoding="utf-8")) == {"Wafer-A": _DOC}

    second = LocalRemoteStore(path)
    await second.start()
    seen: list[tuple[str, Any]] = []
    second.subscribe(lambda key, value: seen.append((key, value)))
    await _settle()
    assert seen == [("Wafer-A", _DOC)]


@pytest.mark.asyncio
async def test_cancelled_subscription_gets_nothing() -> None:
    store = LocalRemoteStore()
    await store.start()
    seen: list[str] = []
    handle = store.subscribe(lambda key, value: seen.append(key))
    handle.cancel()

    await store.put("Wafer-A", _DOC)
    await _settle()
    assert seen == []


@pytest.mark.asyncio
async def test_corrupt_snapshot_is_a_read_error(tmp_path: Path) -> None:
    path = tmp_path / "entries.json"
    path.write_text("{oops", encoding="utf-8")
    with pytest.raises(RemoteReadError):
        await LocalRemoteStore(path).start()


@pytest.mark.asyncio
async def test_put_before_start_raises() -> None:
    with pytest.raises(CrossbarError):
        await LocalRemoteStore().put("Wafer-A", _DOC)


def test_no_connectivity_signal() -> None:
    assert LocalRemoteStore().subscribe_connectivity(lambda connected: None) is None
