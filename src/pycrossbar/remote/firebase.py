"""Hosted realtime document store over the Firebase REST API.

Writes are plain ``PUT``/``DELETE`` requests on ``{root}/{key}.json``;
changes arrive on a server-sent-events stream of the whole collection.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import aiohttp

from pycrossbar._constants import DEFAULT_DATABASE_ROOT, USER_AGENT
from pycrossbar._redact import summarize_for_log
from pycrossbar.exceptions import CrossbarError, RemoteReadError, RemoteWriteError
from pycrossbar.remote.base import ChangeCallback, ConnectivityCallback, RemoteValue, Subscribers, Subscription

_logger = logging.getLogger(__name__)

_RETRY_BASE_DELAY_S = 0.5
_STREAM_MAX_BACKOFF_S = 30.0
# The server sends keep-alive events every ~30 s.
_STREAM_READ_TIMEOUT_S = 90.0


@dataclass(frozen=True)
class SseEvent:
    event: str
    data: str


class SseParser:
    """Incremental ``text/event-stream`` line parser."""

    def __init__(self) -> None:
        self._event = ""
        self._data: list[str] = []

    def feed(self, line: str) -> SseEvent | None:
        """Consume one line (without its terminator); return a finished event."""
        if not line:
            if not self._event and not self._data:
                return None
            event = SseEvent(event=self._event or "message", data="\n".join(self._data))
            self._event = ""
            self._data = []
            return event
        if line.startswith(":"):
            return None
        field_name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field_name == "event":
            self._event = value
        elif field_name == "data":
            self._data.append(value)
        return None


def _split_path(path: str) -> list[str]:
    return [segment for segment in path.split("/") if segment]


class FirebaseRemoteStore:
    """:class:`~pycrossbar.remote.base.RemoteStore` backed by a realtime database.

    Parameters
    ----------
    database_url : str
        Base URL such as ``https://example-default-rtdb.firebaseio.com``.
    root : str
        Collection path holding one child per entry key.
    push_retries : int
        Attempts per write before :class:`RemoteWriteError` is raised.
    request_timeout : float
        Seconds per write/read request.
    session : aiohttp.ClientSession or None
        Shared HTTP session; one is created (and closed) when omitted.
    """

    def __init__(
        self,
        database_url: str,
        *,
        root: str = DEFAULT_DATABASE_ROOT,
        push_retries: int = 3,
        request_timeout: float = 10.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._base_url = f"{database_url.rstrip('/')}/{root.strip('/')}"
        self._push_retries = max(1, push_retries)
        self._request_timeout = request_timeout
        self._external_session = session is not None
        self._http = session
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stream_task: asyncio.Task[None] | None = None
        self._refetch_tasks: set[asyncio.Task[None]] = set()
        self._changes = Subscribers()
        self._connectivity = Subscribers()
        self._documents: dict[str, dict[str, Any]] = {}
        self._synced = False
        self._connected = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        if self._http is None:
            self._http = aiohttp.ClientSession()
        if self._stream_task is None or self._stream_task.done():
            self._stream_task = self._loop.create_task(self._run_stream())

    async def close(self) -> None:
        tasks = [t for t in (self._stream_task, *self._refetch_tasks) if t is not None]
        self._stream_task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._set_connected(False)
        if not self._external_session and self._http is not None:
            await self._http.close()
            self._http = None
        self._loop = None

    def _require_http(self) -> aiohttp.ClientSession:
        if self._http is None:
            raise CrossbarError("Store not started. Await 'start()' first.")
        return self._http

    def _url(self, key: str | None = None) -> str:
        if key is None:
            return f"{self._base_url}.json"
        return f"{self._base_url}/{quote(key, safe='')}.json"

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def put(self, key: str, value: RemoteValue) -> None:
        http = self._require_http()
        method = "DELETE" if value is None else "PUT"
        body = None if value is None else json.dumps(value, separators=(",", ":"))
        url = self._url(key)
        timeout = aiohttp.ClientTimeout(total=self._request_timeout)

        last_error: RemoteWriteError | None = None
        for attempt in range(1, self._push_retries + 1):
            _logger.debug("%s %s attempt=%d", method, url, attempt)
            try:
                async with http.request(
                    method,
                    url,
                    data=body,
                    headers={"content-type": "application/json", "user-agent": USER_AGENT},
                    timeout=timeout,
                ) as resp:
                    if resp.status == 200:
                        return
                    text = await resp.text()
                    last_error = RemoteWriteError(
                        f"HTTP {resp.status} on {method} {key}: {text[:200]}",
                        key=key,
                        status_code=resp.status,
                    )
                    # Client errors other than throttling will not heal on retry.
                    if 400 <= resp.status < 500 and resp.status != 429:
                        raise last_error
            except RemoteWriteError:
                raise
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                last_error = RemoteWriteError(f"{method} {key} failed: {exc!r}", key=key)
            if attempt < self._push_retries:
                await asyncio.sleep(_RETRY_BASE_DELAY_S * 2 ** (attempt - 1))

        assert last_error is not None  # noqa: S101
        raise last_error

    async def fetch(self, key: str) -> RemoteValue:
        """Read one entry document directly."""
        http = self._require_http()
        try:
            async with http.get(
                self._url(key),
                headers={"user-agent": USER_AGENT},
                timeout=aiohttp.ClientTimeout(total=self._request_timeout),
            ) as resp:
                text = await resp.text()
                if resp.status != 200:
                    raise RemoteReadError(
                        f"HTTP {resp.status} reading {key}: {text[:200]}",
                        key=key,
                        status_code=resp.status,
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise RemoteReadError(f"Reading {key} failed: {exc!r}", key=key) from exc
        try:
            value = json.loads(text)
        except json.JSONDecodeError as exc:
            raise RemoteReadError(f"Invalid JSON for {key}: {text[:200]}", key=key) from exc
        return value if isinstance(value, dict) else None

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, on_change: ChangeCallback) -> Subscription:
        handle = self._changes.add(on_change)
        if self._synced and self._loop is not None:
            initial = dict(self._documents)

            def deliver_initial() -> None:
                for key, document in initial.items():
                    if handle.cancelled:
                        return
                    on_change(key, document)

            self._loop.call_soon(deliver_initial)
        return handle

    def subscribe_connectivity(self, on_status: ConnectivityCallback) -> Subscription | None:
        return self._connectivity.add(on_status)

    def _set_connected(self, connected: bool) -> None:
        if connected == self._connected:
            return
        self._connected = connected
        self._connectivity.notify(connected)

    def _deliver(self, key: str, value: Any) -> None:
        document = value if isinstance(value, dict) else None
        if document is None:
            if self._documents.pop(key, None) is None and self._synced:
                # Unknown key removed: nothing a subscriber could hold.
                return
        else:
            self._documents[key] = document
        self._changes.notify(key, document)

    # ------------------------------------------------------------------
    # Stream
    # ------------------------------------------------------------------

    async def _run_stream(self) -> None:
        backoff = _RETRY_BASE_DELAY_S
        while True:
            try:
                await self._consume_stream()
                backoff = _RETRY_BASE_DELAY_S
            except asyncio.CancelledError:
                raise
            except RemoteReadError as exc:
                _logger.warning("Change stream failed: %s", exc)
            self._set_connected(False)
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, _STREAM_MAX_BACKOFF_S)

    async def _consume_stream(self) -> None:
        http = self._require_http()
        url = self._url()
        timeout = aiohttp.ClientTimeout(
            total=None,
            sock_connect=self._request_timeout,
            sock_read=_STREAM_READ_TIMEOUT_S,
        )
        _logger.debug("Opening change stream %s", url)
        try:
            async with http.get(
                url,
                headers={"accept": "text/event-stream", "user-agent": USER_AGENT},
                timeout=timeout,
            ) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise RemoteReadError(
                        f"HTTP {resp.status} opening change stream: {text[:200]}",
                        status_code=resp.status,
                    )
                self._set_connected(True)
                parser = SseParser()
                async for raw_line in resp.content:
                    event = parser.feed(raw_line.decode("utf-8").rstrip("\r\n"))
                    if event is not None:
                        self.handle_event(event)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise RemoteReadError(f"Change stream interrupted: {exc!r}") from exc
        except UnicodeDecodeError as exc:
            raise RemoteReadError(f"Change stream sent invalid UTF-8: {exc}") from exc

    def handle_event(self, event: SseEvent) -> None:
        """Apply one decoded stream event to the cache and subscribers."""
        if event.event == "keep-alive":
            return
        if event.event in {"cancel", "auth_revoked"}:
            raise RemoteReadError(f"Change stream closed by server: {event.event} {event.data}")
        if event.event not in {"put", "patch"}:
            _logger.debug("Ignoring stream event %s", event.event)
            return

        try:
            payload = json.loads(event.data)
        except json.JSONDecodeError as exc:
            raise RemoteReadError(f"Invalid stream payload: {event.data[:200]}") from exc
        if not isinstance(payload, dict):
            return
        segments = _split_path(str(payload.get("path", "/")))
        data = payload.get("data")
        _logger.debug("Stream %s path=%s data=%s", event.event, segments, summarize_for_log(data))

        if not segments:
            if event.event == "put":
                self._apply_snapshot(data)
            elif isinstance(data, dict):
                for key, value in data.items():
                    self._deliver(str(key), value)
            return

        key = segments[0]
        if len(segments) == 1:
            self._deliver(key, data)
            return
        # A field below an entry changed; re-read the whole entry.
        self._schedule_refetch(key)

    def _apply_snapshot(self, data: Any) -> None:
        incoming = data if isinstance(data, dict) else {}
        for stale in set(self._documents) - set(incoming):
            self._deliver(stale, None)
        for key, value in incoming.items():
            self._deliver(str(key), value)
        self._synced = True

    def _schedule_refetch(self, key: str) -> None:
        if self._loop is None:
            return

        async def refetch() -> None:
            try:
                value = await self.fetch(key)
            except RemoteReadError as exc:
                _logger.warning("Could not refresh entry %s: %s", key, exc)
                return
            self._deliver(key, value)

        task = self._loop.create_task(refetch())
        self._refetch_tasks.add(task)
        task.add_done_callback(self._refetch_tasks.discard)
