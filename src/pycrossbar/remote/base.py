"""RemoteStore contract shared by every backing store."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

_logger = logging.getLogger(__name__)

RemoteValue = dict[str, Any] | None
"""A stored entry document, or ``None`` for an absent/tombstoned key."""

ChangeCallback = Callable[[str, RemoteValue], None]
ConnectivityCallback = Callable[[bool], None]


class Subscription(Protocol):
    def cancel(self) -> None: ...


class RemoteStore(Protocol):
    """Structural interface of a backing store.

    ``subscribe`` first delivers every live key, then every later change,
    including the ones this process wrote itself; filtering self-echo is
    the consumer's job. ``subscribe_connectivity`` returns ``None`` when
    the store has no liveness signal of its own.
    """

    async def start(self) -> None: ...

    async def close(self) -> None: ...

    async def put(self, key: str, value: RemoteValue) -> None: ...

    def subscribe(self, on_change: ChangeCallback) -> Subscription: ...

    def subscribe_connectivity(self, on_status: ConnectivityCallback) -> Subscription | None: ...


@dataclass
class _Handle:
    on_cancel: Callable[[], None]
    cancelled: bool = False

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        self.on_cancel()


@dataclass
class Subscribers:
    """Fan-out list of callbacks sharing one signature."""

    callbacks: list[Callable[..., None]] = field(default_factory=list)

    def add(self, callback: Callable[..., None]) -> _Handle:
        self.callbacks.append(callback)

        def remove() -> None:
            if callback in self.callbacks:
                self.callbacks.remove(callback)

        return _Handle(on_cancel=remove)

    def notify(self, *args: Any) -> None:
        for callback in list(self.callbacks):
            try:
                callback(*args)
            except Exception:
                _logger.exception("Remote store subscriber failed")

    def __len__(self) -> int:
        return len(self.callbacks)
