"""A size-class allocator over slot pools, with bump pages for raw bytes."""

from __future__ import annotations

from typing import Any

from oscars.layout import Layout
from oscars.slot_pool import (
    BumpPage,
    ErasedPoolPointer,
    PoolAllocError,
    PoolOutOfMemory,
    PoolPointer,
    SlotPool,
)

SIZE_CLASSES = (16, 24, 32, 48, 64, 96, 128, 192, 256, 512, 1024, 2048)
"""Slot sizes, in bytes, that typed allocations are rounded up to."""

DEFAULT_PAGE_SIZE = 4096
"""Default size of a slot pool or bump page, in bytes."""

DEFAULT_HEAP_THRESHOLD = 2_097_152
"""Default heap size above which a collection is due (2 MiB)."""

POOL_ALIGNMENT = 16
"""Alignment of the slot pools the allocator creates."""

MIN_ITEM_SIZE = 8
"""Smallest size a typed allocation is treated as having."""

BUMP_MARGIN = 64
"""Extra bytes given to an oversized bump page to cover padding."""


def size_class_index_for(size: int) -> int:
    """Index of the smallest size class that holds ``size`` bytes."""
    for index, size_class in enumerate(SIZE_CLASSES):
        if size_class >= size:
            return index
    raise ValueError(
        f"object size {size}B exceeds the largest size class ({SIZE_CLASSES[-1]}B)"
    )


class PoolAllocator:
    """Places typed values in per-size-class slot pools and raw bytes in bump pages.

    Pools that become empty are parked for reuse, up to ``max_recycled`` of
    them; the rest are released.
    """

    def __init__(
        self,
        page_size: int = DEFAULT_PAGE_SIZE,
        heap_threshold: int = DEFAULT_HEAP_THRESHOLD,
        max_recycled: int = len(SIZE_CLASSES),
    ) -> None:
        self.page_size = page_size
        self.heap_threshold = heap_threshold
        self.max_recycled = max_recycled
        self.current_heap_size = 0
        self.slot_pools: list[SlotPool] = []
        self.bump_pages: list[BumpPage] = []
        self.recycled_pools: list[SlotPool] = []
        self._free_cache: int | None = None
        self._alloc_cache: list[int | None] = [None] * len(SIZE_CLASSES)

    def __repr__(self) -> str:
        return (
            f"PoolAllocator(page_size={self.page_size}, "
            f"heap_threshold={self.heap_threshold}, "
            f"heap_size={self.current_heap_size}, slot_pools={len(self.slot_pools)}, "
            f"bump_pages={len(self.bump_pages)}, recycled={len(self.recycled_pools)})"
        )

    def with_page_size(self, page_size: int) -> PoolAllocator:
        """Set the size of new pages and return the allocator."""
        self.page_size = page_size
        return self

    def with_heap_threshold(self, heap_threshold: int) -> PoolAllocator:
        """Set the heap threshold and return the allocator."""
        self.heap_threshold = heap_threshold
        return self

    def pools_len(self) -> int:
        """Number of slot pools and bump pages in use."""
        return len(self.slot_pools) + len(self.bump_pages)

    def heap_size(self) -> int:
        """Bytes held by pools and pages, parked pools included."""
        return self.current_heap_size

    def is_below_threshold(self) -> bool:
        """Return True while the heap leaves a quarter of the threshold free."""
        margin = self.heap_threshold // 4
        return self.heap_size() <= max(0, self.heap_threshold - margin)

    def increase_threshold(self) -> None:
        """Raise the threshold by four pages."""
        self.heap_threshold += self.page_size * 4

    def alloc(self, value: Any, size: int = MIN_ITEM_SIZE) -> PoolPointer:
        """Store ``value``, taking ``size`` bytes, in a slot of its size class."""
        needed = max(size, MIN_ITEM_SIZE)
        sc_idx = size_class_index_for(needed)
        slot_size = SIZE_CLASSES[sc_idx]

        cached = self._alloc_cache[sc_idx]
        if cached is not None and cached < len(self.slot_pools):
            pool = self.slot_pools[cached]
            if pool.slot_size == slot_size:
                slot = pool.alloc_slot()
                if slot is not None:
                    return self._place(slot, value)

        for index in reversed(range(len(self.slot_pools))):
            pool = self.slot_pools[index]
            if pool.slot_size == slot_size:
                slot = pool.alloc_slot()
                if slot is not None:
                    self._alloc_cache[sc_idx] = index
                    return self._place(slot, value)

        pool = self._take_recycled(slot_size)
        if pool is None:
            total = max(self.page_size, slot_size * 4)
            pool = SlotPool(slot_size, total, POOL_ALIGNMENT)
            self.current_heap_size += pool.layout.size
        slot = pool.alloc_slot()
        if slot is None:
            raise PoolOutOfMemory(f"a fresh pool of {slot_size}-byte slots has no room")
        self._alloc_cache[sc_idx] = len(self.slot_pools)
        self.slot_pools.append(pool)
        return self._place(slot, value)

    def _take_recycled(self, slot_size: int) -> SlotPool | None:
        for pos in reversed(range(len(self.recycled_pools))):
            if self.recycled_pools[pos].slot_size == slot_size:
                pool = self.recycled_pools[pos]
                last = self.recycled_pools.pop()
                if pos < len(self.recycled_pools):
                    self.recycled_pools[pos] = last
                return pool
        return None

    @staticmethod
    def _place(slot: ErasedPoolPointer, value: Any) -> PoolPointer:
        ptr = slot.to_typed_pool_pointer()
        ptr.write(value)
        return ptr

    def free_slot_typed(self, ptr: PoolPointer) -> None:
        """Drop the value at ``ptr`` and return its slot to the allocator."""
        ptr.item.drop()
        self.free_slot(ptr)

    def free_slot(self, ptr: ErasedPoolPointer | PoolPointer) -> None:
        """Return the slot at ``ptr`` to the pool that owns it."""
        cached = self._free_cache
        if cached is not None and cached < len(self.slot_pools):
            pool = self.slot_pools[cached]
            if pool.owns(ptr):
                pool.free_slot(ptr)
                return
        for index in reversed(range(len(self.slot_pools))):
            pool = self.slot_pools[index]
            if pool.owns(ptr):
                pool.free_slot(ptr)
                self._free_cache = index
                return
        raise ValueError(
            f"pointer {ptr.address:#x} is not owned by any slot pool; "
            "possible double free or pointer from a raw page"
        )

    def alloc_bytes(self, layout: Layout) -> ErasedPoolPointer:
        """Reserve raw bytes for ``layout`` on a bump page."""
        if self.bump_pages:
            try:
                return self.bump_pages[-1].alloc(layout)
            except PoolAllocError:
                pass
        total = max(self.page_size, layout.size + layout.align + BUMP_MARGIN)
        page = BumpPage(total, max(layout.align, POOL_ALIGNMENT))
        self.current_heap_size += page.layout.size
        try:
            ptr = page.alloc(layout)
        except PoolAllocError as exc:
            raise PoolOutOfMemory(str(exc)) from exc
        self.bump_pages.append(page)
        return ptr

    def _page_for(self, ptr: ErasedPoolPointer) -> BumpPage | None:
        return next((page for page in reversed(self.bump_pages) if page.owns(ptr)), None)

    def dealloc_bytes(self, ptr: ErasedPoolPointer) -> None:
        """Release one raw allocation on the page that owns ``ptr``."""
        page = self._page_for(ptr)
        if page is not None:
            page.dealloc()

    def shrink_bytes_in_place(
        self, ptr: ErasedPoolPointer, old_layout: Layout, new_layout: Layout
    ) -> bool:
        """Shrink a raw allocation in place if it is the latest on its page."""
        page = self._page_for(ptr)
        return page is not None and page.shrink_in_place(ptr, old_layout, new_layout)

    def grow_bytes_in_place(
        self, ptr: ErasedPoolPointer, old_layout: Layout, new_layout: Layout
    ) -> bool:
        """Grow a raw allocation in place if it is the latest on its page."""
        page = self._page_for(ptr)
        return page is not None and page.grow_in_place(ptr, old_layout, new_layout)

    def drop_empty_pools(self) -> None:
        """Park or release empty slot pools and release empty bump pages."""
        live: list[SlotPool] = []
        for pool in self.slot_pools:
            if not pool.run_drop_check():
                live.append(pool)
            elif len(self.recycled_pools) < self.max_recycled:
                pool.reset()
                self.recycled_pools.append(pool)
            else:
                self.current_heap_size = max(0, self.current_heap_size - pool.layout.size)
        self.slot_pools = live

        kept: list[BumpPage] = []
        for page in self.bump_pages:
            if page.run_drop_check():
                self.current_heap_size = max(0, self.current_heap_size - page.layout.size)
            else:
                kept.append(page)
        self.bump_pages = kept

        self._free_cache = None
        self._alloc_cache = [None] * len(SIZE_CLASSES)

    def mark_slot(self, ptr: ErasedPoolPointer | PoolPointer) -> None:
        """Mark the slot at ``ptr`` as occupied in its pool's bitmap."""
        for pool in self.slot_pools:
            if pool.owns(ptr):
                pool.mark_slot(ptr)
                return