"""An allocator that spreads values over a chain of bump arenas and recycles empty ones."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any

from oscars.layout import Layout, LayoutError, align_up

DEFAULT_ARENA_SIZE = 4096
"""Default size of one arena, in bytes."""

DEFAULT_HEAP_THRESHOLD = 2_097_152
"""Default heap size above which a collection is due (2 MiB)."""

MAX_RECYCLED_ARENAS = 4
"""Most empty arenas kept for reuse instead of being released."""

ARENA_ALIGNMENT = 16
"""Alignment of the buffers the allocator creates."""

HEADER_SIZE = 8
"""Bytes taken by the link header in front of every value."""

WORD = Layout(8, 8)
"""Layout of a pointer-sized value, used when none is given."""


class ArenaAllocError(Exception):
    """Base error for arena allocation failures."""


class ArenaOutOfMemory(ArenaAllocError, MemoryError):
    """The arena has no room left for the requested allocation."""


class AlignmentNotPossible(ArenaAllocError):
    """The requested alignment cannot be satisfied by the arena."""


def _item_size(layout: Layout) -> int:
    """Bytes taken by a value of ``layout`` together with its header."""
    item_align = max(HEADER_SIZE, layout.align)
    value_offset = align_up(HEADER_SIZE, layout.align)
    return align_up(value_offset + layout.size, item_align)


def _run_drop(value: Any) -> None:
    drop = getattr(value, "drop", None)
    if callable(drop):
        drop()


@dataclass(eq=False)
class ArenaHeapItem:
    """A value stored in an arena, with a flag telling whether it was dropped."""

    value: Any
    offset: int
    size: int
    _dropped: bool = field(default=False, repr=False)

    def mark_dropped(self) -> None:
        """Record that the value is dead without running its destructor."""
        self._dropped = True

    def is_dropped(self) -> bool:
        """Return True once the value has been marked as dropped."""
        return self._dropped

    def drop(self) -> None:
        """Mark the item dropped and run the value's ``drop()``, once only."""
        if not self._dropped:
            self._dropped = True
            _run_drop(self.value)


@dataclass(frozen=True)
class ArenaPointer:
    """A handle to an item allocated in an arena."""

    arena: Arena
    item: ArenaHeapItem

    @property
    def offset(self) -> int:
        """Offset of the item within its arena's buffer."""
        return self.item.offset

    @property
    def value(self) -> Any:
        """The value the item holds."""
        return self.item.value


@dataclass(frozen=True)
class ArenaAllocationData:
    """Where and how large an allocation in an arena would be."""

    size: int
    buffer_offset: int
    relative_offset: int


class Arena:
    """A single bump buffer that remembers every item placed in it."""

    def __init__(self, arena_size: int, max_alignment: int) -> None:
        try:
            self.layout = Layout.from_size_align(arena_size, max_alignment)
        except LayoutError as exc:
            raise ArenaAllocError(str(exc)) from exc
        self.current_offset = 0
        self._full = False
        self._items: list[ArenaHeapItem] = []

    def __repr__(self) -> str:
        return (
            f"Arena(size={self.layout.size}, current_offset={self.current_offset}, "
            f"items={len(self._items)}, full={self._full})"
        )

    def close(self) -> None:
        """Mark the arena as full."""
        self._full = True

    def is_full(self) -> bool:
        """Return True once the arena has been closed."""
        return self._full

    def alloc(self, value: Any, layout: Layout = WORD) -> ArenaPointer:
        """Place ``value`` of ``layout`` in the arena, raising if it does not fit."""
        data = self.get_allocation_data(layout)
        return self.alloc_unchecked(value, data)

    def alloc_or_close(self, value: Any, layout: Layout = WORD) -> ArenaPointer | None:
        """Allocate ``value``, or close the arena and return None when it is full."""
        try:
            return self.alloc(value, layout)
        except ArenaOutOfMemory:
            self.close()
            return None

    def get_allocation_data(self, layout: Layout) -> ArenaAllocationData:
        """Work out where a value of ``layout`` would go next."""
        if layout.align > self.layout.align:
            raise AlignmentNotPossible(
                f"alignment {layout.align} exceeds the arena alignment {self.layout.align}"
            )
        size = _item_size(layout)
        buffer_offset = align_up(self.current_offset, layout.align)
        if buffer_offset + size > self.layout.size:
            raise ArenaOutOfMemory(
                f"{size} bytes at offset {buffer_offset} exceed arena of {self.layout.size}"
            )
        return ArenaAllocationData(size, buffer_offset, buffer_offset - self.current_offset)

    def alloc_unchecked(self, value: Any, data: ArenaAllocationData) -> ArenaPointer:
        """Place ``value`` using previously computed allocation data."""
        self.current_offset += data.relative_offset + data.size
        item = ArenaHeapItem(value, data.buffer_offset, data.size)
        self._items.append(item)
        return ArenaPointer(self, item)

    def run_drop_check(self) -> bool:
        """Return True when every item in the arena has been dropped."""
        return all(item.is_dropped() for item in self._items)

    def item_drop_states(self) -> list[bool]:
        """Dropped flags of the items, newest allocation first."""
        return [item.is_dropped() for item in reversed(self._items)]

    def reset(self) -> None:
        """Return the arena to its empty state; every item must be dropped."""
        if not self.run_drop_check():
            raise RuntimeError("reset() called on an arena with live items")
        self._full = False
        self._items.clear()
        self.current_offset = 0


class ArenaAllocator:
    """Allocates into the newest arena, opening or recycling arenas as needed."""

    def __init__(
        self,
        arena_size: int = DEFAULT_ARENA_SIZE,
        heap_threshold: int = DEFAULT_HEAP_THRESHOLD,
    ) -> None:
        self.arena_size = arena_size
        self.heap_threshold = heap_threshold
        self._arenas: deque[Arena] = deque()
        self._recycled: list[Arena] = []

    def __repr__(self) -> str:
        return (
            f"ArenaAllocator(arena_size={self.arena_size}, "
            f"heap_threshold={self.heap_threshold}, arenas={len(self._arenas)}, "
            f"recycled={len(self._recycled)})"
        )

    def with_arena_size(self, arena_size: int) -> ArenaAllocator:
        """Set the size of new arenas and return the allocator."""
        self.arena_size = arena_size
        return self

    def with_heap_threshold(self, heap_threshold: int) -> ArenaAllocator:
        """Set the heap threshold and return the allocator."""
        self.heap_threshold = heap_threshold
        return self

    @property
    def recycled_count(self) -> int:
        """Number of empty arenas parked for reuse."""
        return len(self._recycled)

    def arenas_len(self) -> int:
        """Number of arenas currently in use."""
        return len(self._arenas)

    def heap_size(self) -> int:
        """Bytes held by arenas in use; parked arenas do not count."""
        return self.arenas_len() * self.arena_size

    def is_below_threshold(self) -> bool:
        """Return True while there is room for one more arena under the threshold."""
        return self.heap_size() <= max(0, self.heap_threshold - self.arena_size)

    def increase_threshold(self) -> None:
        """Raise the threshold by four arenas."""
        self.heap_threshold += self.arena_size * 4

    def alloc(self, value: Any, layout: Layout = WORD) -> ArenaPointer:
        """Allocate ``value`` in the active arena, opening a new one when full."""
        active = self.active_arena()
        if active is None:
            self.initialize_new_arena()
            active = self._arenas[0]
        try:
            data = active.get_allocation_data(layout)
        except ArenaOutOfMemory:
            self.initialize_new_arena()
            return self._arenas[0].alloc(value, layout)
        return active.alloc_unchecked(value, data)

    def get_allocation_data(self, layout: Layout) -> ArenaAllocationData | None:
        """Allocation data in the active arena, or None when there is none."""
        active = self.active_arena()
        if active is None:
            return None
        return active.get_allocation_data(layout)

    def initialize_new_arena(self) -> None:
        """Make a fresh or recycled arena the active one."""
        if self._recycled:
            self._arenas.appendleft(self._recycled.pop())
            return
        self._arenas.appendleft(Arena(self.arena_size, ARENA_ALIGNMENT))

    def active_arena(self) -> Arena | None:
        """The arena new values go into, if any."""
        return self._arenas[0] if self._arenas else None

    def drop_dead_arenas(self) -> None:
        """Remove arenas whose items are all dropped, parking a few for reuse."""
        live: deque[Arena] = deque()
        for arena in self._arenas:
            if not arena.run_drop_check():
                live.append(arena)
            elif len(self._recycled) < MAX_RECYCLED_ARENAS:
                arena.reset()
                self._recycled.append(arena)
        self._arenas = live

    def arena_drop_states(self) -> list[list[bool]]:
        """Dropped flags of every arena's items, active arena first."""
        return [arena.item_drop_states() for arena in self._arenas]