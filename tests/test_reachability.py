from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import aiohttp
import pytest

from pycrossbar.remote.local import LocalRemoteStore
from pycrossbar.remote.reachability import ReachabilityProbe
from pycrossbar.state.context import SyncContext
from pycrossbar.state.store import EntryStore
from pycrossbar.sync.engine import ConnectivityStatus, SyncEngine


@dataclass
class _FakeResponse:
    status: int


@dataclass
class FakeProbeSession:
    outcomes: list[int | Exception] = field(default_factory=list)
    calls: int = 0

    @contextlib.asynccontextmanager
    async def get(self, url: str, **kwargs: Any) -> AsyncIterator[_FakeResponse]:
        self.calls += 1
        outcome = self.outcomes.pop(0) if self.outcomes else 200
        if isinstance(outcome, Exception):
            raise outcome
        yield _FakeResponse(status=outcome)


@pytest.mark.asyncio
async def test_check_classifies_answers() -> None:
    session = FakeProbeSession(outcomes=[204, 404, 503, aiohttp.ClientConnectionError("down")])
    probe = ReachabilityProbe("https://example.com/ping", session=session)  # type: ignore[arg-type]

    assert [await probe.check() for _ in range(4)] == [True, True, False, False]


@pytest.mark.asyncio
async def test_engine_uses_probe_when_store_has_no_signal() -> None:
    session = FakeProbeSession(outcomes=[200])
    probe = ReachabilityProbe("https://example.com/ping", interval=3600, session=session)  # type: ignore[arg-type]
    statuses: list[ConnectivityStatus] = []
    remote = LocalRemoteStore()
    await remote.start()
    engine = SyncEngine(EntryStore(SyncContext()), remote, probe=probe, on_status=statuses.append)

    await engine.start()
    for _ in range(5):
        await asyncio.sleep(0)
    await engine.stop()

    assert statuses == [ConnectivityStatus(True, "Online")]
    assert probe.last_result is True
