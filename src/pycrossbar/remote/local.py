"""Local-only store persisted as a single JSON snapshot.

Used when no shared store is configured. Change notifications are still
delivered through the event loop, after ``put`` returns, so consumers see
their own writes echoed exactly as they would with a hosted store.
"""

from __future__ import annotations

import asyncio
import contextlib
import copy
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from pycrossbar.exceptions import CrossbarError, RemoteReadError, RemoteWriteError
from pycrossbar.remote.base import ChangeCallback, ConnectivityCallback, RemoteValue, Subscribers, Subscription

_logger = logging.getLogger(__name__)


class LocalRemoteStore:
    """In-process :class:`~pycrossbar.remote.base.RemoteStore`.

    Parameters
    ----------
    path : str or Path or None
        Snapshot file read at :meth:`start` and rewritten after every
        accepted write. ``None`` keeps everything in memory.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path is not None else None
        self._documents: dict[str, dict[str, Any]] = {}
        self._subscribers = Subscribers()
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def path(self) -> Path | None:
        return self._path

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Copy of every live document keyed by remote key."""
        return copy.deepcopy(self._documents)

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        if self._path is None:
            return
        self._documents = await self._loop.run_in_executor(None, self._read_snapshot)
        _logger.debug("Loaded %d entries from %s", len(self._documents), self._path)

    async def close(self) -> None:
        self._loop = None

    def _require_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            raise CrossbarError("Store not started. Await 'start()' first.")
        return self._loop

    def _read_snapshot(self) -> dict[str, dict[str, Any]]:
        assert self._path is not None  # noqa: S101
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            raise RemoteReadError(f"Cannot read snapshot {self._path}: {exc}") from exc
        if not isinstance(data, dict):
            raise RemoteReadError(f"Snapshot {self._path} is not a JSON object")
        return {str(key): value for key, value in data.items() if isinstance(value, dict)}

    def _write_snapshot(self, documents: dict[str, dict[str, Any]]) -> None:
        assert self._path is not None  # noqa: S101
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self._path.name}.", dir=self._path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(documents, fh, separators=(",", ":"))
            os.replace(tmp_name, self._path)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)
            raise

    async def put(self, key: str, value: RemoteValue) -> None:
        loop = self._require_loop()
        if value is None:
            self._documents.pop(key, None)
        else:
            self._documents[key] = copy.deepcopy(value)
        if self._path is not None:
            documents = copy.deepcopy(self._documents)
            try:
                await loop.run_in_executor(None, self._write_snapshot, documents)
            except OSError as exc:
                raise RemoteWriteError(f"Cannot write snapshot {self._path}: {exc}", key=key) from exc
        delivered = copy.deepcopy(value)
        loop.call_soon(self._subscribers.notify, key, delivered)

    def subscribe(self, on_change: ChangeCallback) -> Subscription:
        loop = self._require_loop()
        handle = self._subscribers.add(on_change)
        initial = copy.deepcopy(self._documents)

        def deliver_initial() -> None:
            for key, document in initial.items():
                if handle.cancelled:
                    return
                on_change(key, document)

        loop.call_soon(deliver_initial)
        return handle

    def subscribe_connectivity(self, on_status: ConnectivityCallback) -> Subscription | None:
        return None

