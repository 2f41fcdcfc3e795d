"""Per-process session context shared by the store and the sync engine."""

from __future__ import annotations

import contextlib
from collections.abc import Iterator
from dataclasses import dataclass


@dataclass
class SyncContext:
    """Session state owned by the composing application.

    ``active_name`` is the entry currently loaded in the view; it is a
    focus marker, not a lock. ``applying_remote`` is set while a remote
    change is written into the local store so the resulting local change
    notification is not pushed back out.
    """

    active_name: str | None = None
    applying_remote: bool = False

    @contextlib.contextmanager
    def remote_apply(self) -> Iterator[None]:
        previous = self.applying_remote
        self.applying_remote = True
        try:
            yield
        finally:
            self.applying_remote = previous
