"""Fixed-size slot pools with a liveness bitmap, and bump pages for raw bytes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from oscars.layout import Layout, LayoutError, align_up

FREE_SLOT_SIZE = 8
"""Bytes a free slot needs to hold the link to the next free slot."""


class PoolAllocError(Exception):
    """Base error for pool allocation failures."""


class PoolOutOfMemory(PoolAllocError, MemoryError):
    """The pool or page has no room left for the requested allocation."""


class PoolAlignmentError(PoolAllocError):
    """The requested alignment cannot be satisfied by the page."""


class _AddressSpace:
    """Hands out disjoint, aligned address ranges for simulated buffers."""

    def __init__(self, start: int = 0x10000) -> None:
        self._next = start

    def reserve(self, size: int, align: int) -> int:
        base = align_up(self._next, align)
        self._next = base + max(size, 1)
        return base


_ADDRESS_SPACE = _AddressSpace()


class _Owner(Protocol):
    def _read(self, address: int) -> PoolItem: ...

    def _write(self, address: int, item: PoolItem) -> None: ...


@dataclass
class PoolItem:
    """A value stored in a pool slot; liveness is tracked by the pool's bitmap."""

    value: Any

    def drop(self) -> None:
        """Run the value's ``drop()`` method, if it has one."""
        drop = getattr(self.value, "drop", None)
        if callable(drop):
            drop()


@dataclass(frozen=True)
class ErasedPoolPointer:
    """An untyped address inside a pool slot or bump page."""

    address: int
    owner: _Owner

    def to_typed_pool_pointer(self) -> PoolPointer:
        """View this address as a pointer to a stored item."""
        return PoolPointer(self.address, self.owner)


@dataclass(frozen=True)
class PoolPointer:
    """A pointer to a ``PoolItem`` held in a pool slot."""

    address: int
    owner: _Owner

    @property
    def item(self) -> PoolItem:
        """The item stored at this address."""
        return self.owner._read(self.address)

    @property
    def value(self) -> Any:
        """The value the item holds."""
        return self.item.value

    def write(self, value: Any) -> None:
        """Store ``value`` at this address."""
        self.owner._write(self.address, PoolItem(value))

    def to_erased(self) -> ErasedPoolPointer:
        """Drop the type of this pointer."""
        return ErasedPoolPointer(self.address, self.owner)


def _make_layout(size: int, align: int) -> Layout:
    try:
        return Layout.from_size_align(size, align)
    except LayoutError as exc:
        raise PoolAllocError(str(exc)) from exc


class SlotPool:
    """A buffer laid out as ``[ bitmap ][ slots ]``.

    The bitmap records occupied slots; freed slots are reused last-in,
    first-out before the bump index moves on to untouched slots.
    """

    def __init__(self, slot_size: int, total_capacity: int, max_align: int) -> None:
        if slot_size < FREE_SLOT_SIZE:
            raise ValueError(
                "slot_size must fit a free-list link "
                f"({slot_size} < {FREE_SLOT_SIZE})"
            )
        # Guess the slot count ignoring the bitmap, size the bitmap from that
        # guess in 64-bit words, then fit the real slot count in what is left.
        estimated = total_capacity // slot_size
        self.bitmap_bytes = -(-estimated // 64) * 8
        slot_area = max(0, total_capacity - self.bitmap_bytes)
        self.slot_size = slot_size
        self.slot_count = slot_area // slot_size
        self.layout = _make_layout(total_capacity, max_align)
        self.base = _ADDRESS_SPACE.reserve(total_capacity, max_align)
        self.bump = 0
        self.live = 0
        self._bitmap = 0
        self._free: list[int] = []
        self._items: dict[int, PoolItem] = {}

    def __repr__(self) -> str:
        return (
            f"SlotPool(slot_size={self.slot_size}, slot_count={self.slot_count}, "
            f"bitmap_bytes={self.bitmap_bytes}, bump={self.bump}, live={self.live})"
        )

    @property
    def _slot_base(self) -> int:
        return self.base + self.bitmap_bytes

    def slot_ptr(self, index: int) -> ErasedPoolPointer:
        """Pointer to the slot at ``index``."""
        return ErasedPoolPointer(self._slot_base + index * self.slot_size, self)

    def slot_index(self, ptr: ErasedPoolPointer | PoolPointer) -> int:
        """Index of the slot that ``ptr`` points into."""
        return (ptr.address - self._slot_base) // self.slot_size

    def owns(self, ptr: ErasedPoolPointer | PoolPointer) -> bool:
        """Return True if ``ptr`` lies within this pool's slot area."""
        start = self._slot_base
        end = start + self.slot_count * self.slot_size
        return start <= ptr.address < end

    def mark_slot(self, ptr: ErasedPoolPointer | PoolPointer) -> None:
        """Set the slot's bit in the bitmap without allocating it."""
        self._bitmap |= 1 << self.slot_index(ptr)

    def is_marked(self, ptr: ErasedPoolPointer | PoolPointer) -> bool:
        """Return True if the slot's bit is set in the bitmap."""
        return bool(self._bitmap >> self.slot_index(ptr) & 1)

    def alloc_slot(self) -> ErasedPoolPointer | None:
        """Take a free slot, or return None when the pool is full."""
        if self._free:
            index = self._free.pop()
        else:
            index = self.bump
            if index >= self.slot_count:
                return None
            self.bump = index + 1
        self._bitmap |= 1 << index
        self.live += 1
        return self.slot_ptr(index)

    def free_slot(self, ptr: ErasedPoolPointer | PoolPointer) -> None:
        """Return the slot at ``ptr`` to the free list."""
        index = self.slot_index(ptr)
        self._bitmap &= ~(1 << index)
        self._items.pop(index, None)
        self._free.append(index)
        self.live = max(0, self.live - 1)

    def run_drop_check(self) -> bool:
        """Return True when no slot is in use."""
        return self.live == 0

    def reset(self) -> None:
        """Return an empty pool to its freshly created state."""
        if self.live != 0:
            raise RuntimeError(
                f"reset() called on a non-empty SlotPool (live = {self.live})"
            )
        self._bitmap = 0
        self.bump = 0
        self._free.clear()
        self._items.clear()

    def _checked_index(self, address: int) -> int:
        offset = address - self._slot_base
        if offset < 0 or offset % self.slot_size or offset // self.slot_size >= self.slot_count:
            raise ValueError(f"address {address:#x} is not a slot of this pool")
        return offset // self.slot_size

    def _read(self, address: int) -> PoolItem:
        index = self._checked_index(address)
        try:
            return self._items[index]
        except KeyError:
            raise RuntimeError(f"slot {index} holds no value") from None

    def _write(self, address: int, item: PoolItem) -> None:
        index = self._checked_index(address)
        if not self._bitmap >> index & 1:
            raise RuntimeError(f"slot {index} is not allocated")
        self._items[index] = item


class BumpPage:
    """A page that hands out raw byte ranges in order and counts live ones.

    Nothing is tracked per allocation; the page is reclaimed as a whole
    once every allocation on it has been released.
    """

    def __init__(self, total_capacity: int, max_align: int) -> None:
        self.layout = _make_layout(total_capacity, max_align)
        self.base = _ADDRESS_SPACE.reserve(total_capacity, max_align)
        self.bump = 0
        self.active_allocs = 0

    def __repr__(self) -> str:
        return (
            f"BumpPage(size={self.layout.size}, bump={self.bump}, "
            f"active_allocs={self.active_allocs})"
        )

    def alloc(self, layout: Layout) -> ErasedPoolPointer:
        """Reserve ``layout.size`` bytes aligned to ``layout.align``."""
        if layout.align > self.layout.align:
            raise PoolAlignmentError(
                f"alignment {layout.align} exceeds the page alignment {self.layout.align}"
            )
        current = self.base + self.bump
        padding = align_up(current, layout.align) - current
        offset = self.bump + padding
        if offset + layout.size > self.layout.size:
            raise PoolOutOfMemory(
                f"{layout.size} bytes at offset {offset} exceed page of {self.layout.size}"
            )
        self.bump = offset + layout.size
        self.active_allocs += 1
        return ErasedPoolPointer(self.base + offset, self)

    def dealloc(self) -> None:
        """Record that one allocation on this page was released."""
        self.active_allocs = max(0, self.active_allocs - 1)

    def owns(self, ptr: ErasedPoolPointer | PoolPointer) -> bool:
        """Return True if ``ptr`` lies within this page."""
        return self.base <= ptr.address < self.base + self.layout.size

    def shrink_in_place(
        self, ptr: ErasedPoolPointer, old_layout: Layout, new_layout: Layout
    ) -> bool:
        """Shrink the most recent allocation by rewinding the bump index."""
        offset = ptr.address - self.base
        if offset + old_layout.size == self.bump:
            self.bump = offset + new_layout.size
            return True
        return False

    def grow_in_place(
        self, ptr: ErasedPoolPointer, old_layout: Layout, new_layout: Layout
    ) -> bool:
        """Grow the most recent allocation if the page has room after it."""
        offset = ptr.address - self.base
        if offset + old_layout.size == self.bump:
            new_end = offset + new_layout.size
            if new_end <= self.layout.size:
                self.bump = new_end
                return True
        return False

    def run_drop_check(self) -> bool:
        """Return True when every allocation on the page has been released."""
        return self.active_allocs == 0

    def _read(self, address: int) -> PoolItem:
        raise TypeError("a bump page holds raw bytes, not pool items")

    def _write(self, address: int, item: PoolItem) -> None:
        raise TypeError("a bump page holds raw bytes, not pool items")