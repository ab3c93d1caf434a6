import pytest

from oscars.layout import Layout
from oscars.slot_pool import (
    BumpPage,
    ErasedPoolPointer,
    PoolAlignmentError,
    PoolAllocError,
    PoolItem,
    PoolOutOfMemory,
    PoolPointer,
    SlotPool,
)


def slot_pool_layout(slot_size, total_capacity):
    pool = SlotPool(slot_size, total_capacity, 8)
    return pool.slot_count, pool.bitmap_bytes


def test_slot_count_example_from_doc():
    assert slot_pool_layout(16, 512) == (31, 8)


def test_slot_count_needs_two_bitmap_chunks():
    assert slot_pool_layout(8, 4096) == (504, 64)


def test_slot_count_large_slot_size():
    assert slot_pool_layout(256, 4096) == (15, 8)


def test_slot_count_tight_capacity():
    assert slot_pool_layout(64, 512) == (7, 8)


def test_slot_too_small_for_free_list():
    with pytest.raises(ValueError):
        SlotPool(4, 512, 8)


def test_invalid_alignment_raises_pool_error():
    with pytest.raises(PoolAllocError):
        SlotPool(16, 512, 3)


def test_alloc_until_full_returns_none():
    pool = SlotPool(16, 512, 8)
    ptrs = [pool.alloc_slot() for _ in range(31)]
    assert all(p is not None for p in ptrs)
    assert len({p.address for p in ptrs}) == 31
    assert pool.alloc_slot() is None
    assert pool.live == 31


def test_slots_are_sequential_after_bitmap():
    pool = SlotPool(16, 512, 8)
    first = pool.alloc_slot()
    second = pool.alloc_slot()
    assert first.address == pool.base + 8
    assert second.address - first.address == 16
    assert pool.slot_index(second) == 1
    assert pool.slot_ptr(1) == second


def test_free_list_is_last_in_first_out():
    pool = SlotPool(16, 512, 8)
    a = pool.alloc_slot()
    b = pool.alloc_slot()
    pool.alloc_slot()
    pool.free_slot(a)
    pool.free_slot(b)
    assert pool.alloc_slot() == b
    assert pool.alloc_slot() == a
    assert pool.bump == 3


def test_bitmap_tracks_allocation_and_free():
    pool = SlotPool(16, 512, 8)
    ptr = pool.alloc_slot()
    assert pool.is_marked(ptr)
    pool.free_slot(ptr)
    assert not pool.is_marked(ptr)
    pool.mark_slot(ptr)
    assert pool.is_marked(ptr)
    assert pool.live == 0


def test_owns_only_slot_area():
    pool = SlotPool(16, 512, 8)
    other = SlotPool(16, 512, 8)
    ptr = pool.alloc_slot()
    assert pool.owns(ptr)
    assert not other.owns(ptr)
    assert not pool.owns(ErasedPoolPointer(pool.base, pool))
    assert not pool.owns(pool.slot_ptr(pool.slot_count))


def test_run_drop_check_and_reset():
    pool = SlotPool(16, 512, 8)
    ptrs = [pool.alloc_slot() for _ in range(5)]
    assert not pool.run_drop_check()
    with pytest.raises(RuntimeError):
        pool.reset()
    for ptr in ptrs:
        pool.free_slot(ptr)
    assert pool.run_drop_check()
    pool.reset()
    assert pool.bump == 0
    assert pool.alloc_slot() == pool.slot_ptr(0)
    assert not pool.is_marked(pool.slot_ptr(1))


def test_typed_pointer_round_trip():
    pool = SlotPool(16, 512, 8)
    erased = pool.alloc_slot()
    typed = erased.to_typed_pool_pointer()
    typed.write(42)
    assert typed.value == 42
    assert typed.item == PoolItem(42)
    assert typed.to_erased() == erased
    assert isinstance(typed, PoolPointer)


def test_freed_slot_value_is_gone():
    pool = SlotPool(16, 512, 8)
    typed = pool.alloc_slot().to_typed_pool_pointer()
    typed.write("x")
    pool.free_slot(typed)
    with pytest.raises(RuntimeError):
        _ = typed.value
    with pytest.raises(RuntimeError):
        typed.write("y")


def test_pool_item_drop_runs_destructor():
    dropped = []

    class MyS:
        def drop(self):
            dropped.append(True)

    pool = SlotPool(16, 512, 8)
    typed = pool.alloc_slot().to_typed_pool_pointer()
    obj = MyS()
    typed.write(obj)
    assert typed.value is obj
    typed.item.drop()
    PoolItem(5).drop()
    assert dropped == [True]


def test_bump_page_aligns_allocations():
    page = BumpPage(64, 16)
    p1 = page.alloc(Layout(10, 1))
    p2 = page.alloc(Layout(8, 8))
    assert p1.address == page.base
    assert p2.address - p1.address == 16
    assert page.bump == 24
    assert page.active_allocs == 2


def test_bump_page_out_of_memory():
    page = BumpPage(64, 16)
    page.alloc(Layout(24, 1))
    with pytest.raises(PoolOutOfMemory):
        page.alloc(Layout(48, 1))
    assert page.bump == 24


def test_bump_page_alignment_too_large():
    page = BumpPage(64, 16)
    with pytest.raises(PoolAlignmentError):
        page.alloc(Layout(8, 32))


def test_bump_page_drop_check():
    page = BumpPage(64, 16)
    page.alloc(Layout(8, 8))
    page.alloc(Layout(8, 8))
    assert not page.run_drop_check()
    page.dealloc()
    page.dealloc()
    page.dealloc()
    assert page.active_allocs == 0
    assert page.run_drop_check()


def test_bump_page_shrink_in_place():
    page = BumpPage(64, 16)
    first = page.alloc(Layout(16, 1))
    assert page.shrink_in_place(first, Layout(16, 1), Layout(8, 1))
    second = page.alloc(Layout(8, 1))
    assert second.address == first.address + 8
    assert not page.shrink_in_place(first, Layout(8, 1), Layout(4, 1))


def test_bump_page_grow_in_place():
    page = BumpPage(64, 16)
    first = page.alloc(Layout(16, 1))
    assert page.grow_in_place(first, Layout(16, 1), Layout(32, 1))
    assert page.bump == 32
    assert not page.grow_in_place(first, Layout(32, 1), Layout(128, 1))
    assert page.bump == 32
    page.alloc(Layout(8, 1))
    assert not page.grow_in_place(first, Layout(32, 1), Layout(40, 1))


def test_bump_page_owns():
    page = BumpPage(64, 16)
    other = BumpPage(64, 16)
    ptr = page.alloc(Layout(8, 8))
    assert page.owns(ptr)
    assert not other.owns(ptr)
    assert not page.owns(ErasedPoolPointer(page.base + 64, page))


def test_bump_page_holds_no_typed_values():
    page = BumpPage(64, 16)
    erased = page.alloc(Layout(8, 8))
    assert erased.address == page.base
    ptr = erased.to_typed_pool_pointer()
    assert ptr.to_erased() == erased
    with pytest.raises(TypeError):
        _ = ptr.value