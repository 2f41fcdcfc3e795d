"""In-memory entry store.

This is the single source of truth views read from. Local mutations are
applied optimistically and announced to listeners; the sync engine turns
them into remote writes.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from pycrossbar.exceptions import DuplicateNameError, NotFoundError
from pycrossbar.models._base import utcnow
from pycrossbar.models.grid import MeasurementGrid, MeasurementState, next_state
from pycrossbar.state.context import SyncContext
from pycrossbar.state.events import ChangeKind, ChangeOrigin, EntryChange

_logger = logging.getLogger(__name__)

ChangeListener = Callable[[EntryChange], None]


class EntryStore:
    """Mapping of entry name to :class:`MeasurementGrid`.

    Names are case-sensitive and unique. When ``key_func`` is given,
    two different names deriving the same remote key are rejected too,
    since they would overwrite each other's remote document.
    """

    def __init__(
        self,
        context: SyncContext,
        *,
        clock: Callable[[], datetime] = utcnow,
        key_func: Callable[[str], str] | None = None,
    ) -> None:
        self._context = context
        self._clock = clock
        self._key_func = key_func
        self._entries: dict[str, MeasurementGrid] = {}
        self._listeners: list[ChangeListener] = []

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: ChangeListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _emit(self, name: str, kind: ChangeKind, origin: ChangeOrigin, grid: MeasurementGrid | None) -> None:
        change = EntryChange(
            name=name,
            kind=kind,
            origin=origin,
            grid=grid.model_copy(deep=True) if grid is not None else None,
            observed_at=self._clock(),
        )
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                _logger.exception("Entry change listener failed name=%s kind=%s", name, kind)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def context(self) -> SyncContext:
        return self._context

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def names(self) -> list[str]:
        return list(self._entries)

    def entries(self) -> list[MeasurementGrid]:
        return list(self._entries.values())

    def find(self, name: str) -> MeasurementGrid | None:
        return self._entries.get(name)

    def get(self, name: str) -> MeasurementGrid:
        grid = self._entries.get(name)
        if grid is None:
            raise NotFoundError(f"No entry named {name!r}", name=name)
        return grid

    @property
    def active(self) -> MeasurementGrid | None:
        name = self._context.active_name
        return self._entries.get(name) if name is not None else None

    def load(self, name: str) -> MeasurementGrid:
        """Make *name* the active entry."""
        grid = self.get(name)
        self._context.active_name = name
        return grid

    # ------------------------------------------------------------------
    # Local mutations
    # ------------------------------------------------------------------

    def _check_available(self, name: str, *, allow_same_name: bool = False) -> None:
        if name in self._entries and not allow_same_name:
            raise DuplicateNameError(f"An entry named {name!r} already exists", name=name)
        if self._key_func is None:
            return
        key = self._key_func(name)
        for existing in self._entries:
            if existing != name and self._key_func(existing) == key:
                raise DuplicateNameError(
                    f"Entry name {name!r} collides with {existing!r} (both stored as {key!r})",
                    name=name,
                )

    def create(self, name: str, size: int) -> MeasurementGrid:
        """Create an all-unmeasured entry.

        Raises
        ------
        DuplicateNameError
            If the name (or its remote key) is already taken.
        ValueError
            If the name is blank or the size unsupported.
        """
        name = name.strip()
        if not name:
            raise ValueError("Entry name must be non-empty")
        self._check_available(name)
        grid = MeasurementGrid.new(name, size, now=self._clock())
        self._entries[name] = grid
        _logger.debug("Created entry name=%s size=%s", name, size)
        self._emit(name, ChangeKind.CREATED, ChangeOrigin.LOCAL, grid)
        return grid

    def delete(self, name: str) -> None:
        """Remove *name* unconditionally; confirmation belongs to the caller."""
        if name not in self._entries:
            raise NotFoundError(f"No entry named {name!r}", name=name)
        del self._entries[name]
        if self._context.active_name == name:
            self._context.active_name = None
        _logger.debug("Deleted entry name=%s", name)
        self._emit(name, ChangeKind.DELETED, ChangeOrigin.LOCAL, None)

    def mutate_cell(self, name: str, index: int) -> MeasurementState:
        """Advance cell *index* of *name* one step through the state cycle."""
        grid = self.get(name)
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < grid.cell_count:
            raise NotFoundError(
                f"Cell index {index!r} outside [0, {grid.cell_count}) for entry {name!r}",
                name=name,
            )
        now = self._clock()
        state = next_state(grid.cells[index])
        grid.cells[index] = int(state)
        grid.ensure_timestamps()[index] = now
        grid.last_modified = now
        self._emit(name, ChangeKind.UPDATED, ChangeOrigin.LOCAL, grid)
        return state

    def clear_all(self, name: str) -> None:
        """Reset every cell of *name* to unmeasured."""
        grid = self.get(name)
        grid.cells[:] = [int(MeasurementState.UNMEASURED)] * grid.cell_count
        grid.last_modified = self._clock()
        self._emit(name, ChangeKind.UPDATED, ChangeOrigin.LOCAL, grid)

    def replace_from_import(self, grid: MeasurementGrid, *, overwrite: bool = False) -> MeasurementGrid:
        """Store an externally sourced grid under its own name.

        An existing entry of the same name is replaced only when
        *overwrite* is set, i.e. the user confirmed it.
        """
        existed = grid.name in self._entries
        if existed and not overwrite:
            raise DuplicateNameError(f"An entry named {grid.name!r} already exists", name=grid.name)
        self._check_available(grid.name, allow_same_name=True)
        stored = grid.model_copy(deep=True)
        self._entries[stored.name] = stored
        kind = ChangeKind.UPDATED if existed else ChangeKind.CREATED
        _logger.debug("Imported entry name=%s overwrite=%s", stored.name, existed)
        self._emit(stored.name, kind, ChangeOrigin.LOCAL, stored)
        return stored

    # ------------------------------------------------------------------
    # Remote mirror (sync engine only)
    # ------------------------------------------------------------------

    def apply_remote(self, grid: MeasurementGrid) -> bool:
        """Mirror a remote document; returns False when nothing changed."""
        existing = self._entries.get(grid.name)
        if existing is not None and existing == grid:
            return False
        self._entries[grid.name] = grid.model_copy(deep=True)
        kind = ChangeKind.CREATED if existing is None else ChangeKind.UPDATED
        self._emit(grid.name, kind, ChangeOrigin.REMOTE, grid)
        return True

    def remove_remote(self, name: str) -> bool:
        """Mirror a remote tombstone; returns False when already absent."""
        if name not in self._entries:
            return False
        del self._entries[name]
        if self._context.active_name == name:
            self._context.active_name = None
        self._emit(name, ChangeKind.DELETED, ChangeOrigin.REMOTE, None)
        return True
