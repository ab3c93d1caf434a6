"""A growable pool of equally sized slots with an intrusive free list."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

THRESHOLD = 5120
"""Chunk size below which a new chunk doubles the last one."""

BASE_CAPACITY = 1024
"""Number of slots in the first chunk of a default allocator."""


class _EmptySlot:
    """Marks a free slot and holds the index of the next free slot."""

    __slots__ = ("next",)

    def __init__(self, next_index: int) -> None:
        self.next = next_index


_UNINIT = object()


class _Chunk:
    """One contiguous run of slots."""

    def __init__(self, count: int) -> None:
        self.total = count
        self.available = count
        self.next = 0
        self.slots: list[Any] = [None] * count
        # The first free slot points to itself: nothing past it has been used yet.
        self.slots[0] = _EmptySlot(0)

    def alloc(self) -> int | None:
        if self.available == 0:
            return None
        self.available -= 1
        index = self.next
        following = self.slots[index].next
        if following == self.next:
            self.next += 1
            if self.available > 0:
                self.slots[self.next] = _EmptySlot(self.next)
        else:
            self.next = following
        self.slots[index] = _UNINIT
        return index

    def find_slot(self, ptr: SlotRef) -> int | None:
        if ptr._chunk is not self or not 0 <= ptr.index < self.total:
            return None
        return ptr.index

    def release(self, ptr: SlotRef, run_drop: bool) -> bool:
        index = self.find_slot(ptr)
        if index is None:
            return False
        value = self.slots[index]
        if run_drop and not isinstance(value, _EmptySlot) and value is not _UNINIT:
            drop = getattr(value, "drop", None)
            if callable(drop):
                drop()
        self.slots[index] = _EmptySlot(self.next)
        self.next = index
        self.available += 1
        return True


@dataclass(frozen=True, eq=False)
class SlotRef:
    """A handle to one slot of a memory pool."""

    _chunk: _Chunk
    index: int

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SlotRef):
            return NotImplemented
        return self._chunk is other._chunk and self.index == other.index

    def __hash__(self) -> int:
        return hash((id(self._chunk), self.index))

    @property
    def value(self) -> Any:
        """The value held in the slot."""
        stored = self._chunk.slots[self.index]
        if isinstance(stored, _EmptySlot):
            raise RuntimeError("slot has been released")
        if stored is _UNINIT:
            raise RuntimeError("slot has not been initialized")
        return stored

    def write(self, value: Any) -> None:
        """Store ``value`` in the slot."""
        if isinstance(self._chunk.slots[self.index], _EmptySlot):
            raise RuntimeError("slot has been released")
        self._chunk.slots[self.index] = value


class MemPoolAllocator:
    """A pool of slots that grows by whole chunks and never shrinks.

    Values that define a ``drop()`` method have it called by ``dealloc``.
    """

    def __init__(self, capacity: int = BASE_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least one slot")
        self._pools: list[_Chunk] = [_Chunk(capacity)]

    def __repr__(self) -> str:
        return f"MemPoolAllocator(allocated={self.allocated()}, available={self.available()})"

    def alloc_uninitialized(self) -> SlotRef:
        """Reserve a slot without storing a value in it."""
        for chunk in self._pools:
            index = chunk.alloc()
            if index is not None:
                return SlotRef(chunk, index)
        last_total = self._pools[-1].total
        if last_total < THRESHOLD:
            new_total = last_total * 2
        else:
            new_total = last_total + last_total // 20
        chunk = _Chunk(new_total)
        index = chunk.alloc()
        if index is None:
            raise MemoryError("could not allocate memory")
        self._pools.append(chunk)
        return SlotRef(chunk, index)

    def alloc(self, value: Any) -> SlotRef:
        """Reserve a slot and store ``value`` in it."""
        ptr = self.alloc_uninitialized()
        ptr.write(value)
        return ptr

    def contains(self, ptr: SlotRef) -> bool:
        """Return True if ``ptr`` is a slot of this pool."""
        return any(chunk.find_slot(ptr) is not None for chunk in self._pools)

    def dealloc_no_drop(self, ptr: SlotRef) -> bool:
        """Free a slot without dropping its value; False if it is not ours."""
        return any(chunk.release(ptr, run_drop=False) for chunk in self._pools)

    def dealloc(self, ptr: SlotRef) -> bool:
        """Drop the slot's value and free the slot; False if it is not ours."""
        return any(chunk.release(ptr, run_drop=True) for chunk in self._pools)

    def allocated(self) -> int:
        """Total number of slots across all chunks."""
        return sum(chunk.total for chunk in self._pools)

    def available(self) -> int:
        """Number of free slots across all chunks."""
        return sum(chunk.available for chunk in self._pools)