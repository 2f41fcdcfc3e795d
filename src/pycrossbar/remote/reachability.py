"""Generic network reachability probe.

Fallback connectivity signal for stores that expose none of their own.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

import aiohttp

from pycrossbar._constants import USER_AGENT
from pycrossbar.remote.base import ConnectivityCallback, Subscribers, Subscription

_logger = logging.getLogger(__name__)


class ReachabilityProbe:
    """Poll *url* and report online/offline transitions.

    Any HTTP answer below 500 counts as reachable; connection errors and
    timeouts count as unreachable.
    """

    def __init__(
        self,
        url: str,
        *,
        interval: float = 30.0,
        timeout: float = 5.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._url = url
        self._interval = interval
        self._timeout = timeout
        self._external_session = session is not None
        self._http = session
        self._subscribers = Subscribers()
        self._task: asyncio.Task[None] | None = None
        self._last: bool | None = None

    @property
    def last_result(self) -> bool | None:
        return self._last

    def subscribe(self, on_status: ConnectivityCallback) -> Subscription:
        return self._subscribers.add(on_status)

    async def check(self) -> bool:
        """Run a single probe."""
        if self._http is None:
            self._http = aiohttp.ClientSession()
        try:
            async with self._http.get(
                self._url,
                headers={"user-agent": USER_AGENT},
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as resp:
                return resp.status < 500
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            _logger.debug("Reachability probe failed url=%s error=%s", self._url, exc)
            return False

    async def _run(self) -> None:
        while True:
            reachable = await self.check()
            if reachable != self._last:
                self._last = reachable
                self._subscribers.notify(reachable)
            await asyncio.sleep(self._interval)

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if not self._external_session and self._http is not None:
            await self._http.close()
            self._http = None
