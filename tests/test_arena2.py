import pytest

from oscars.arena2 import (
    AlignmentNotPossible,
    Arena,
    ArenaAllocError,
    ArenaAllocator,
    ArenaHeapItem,
    ArenaOutOfMemory,
)
from oscars.layout import Layout

I32 = Layout(4, 4)
U64 = Layout(8, 8)


class Tracked:
    def __init__(self):
        self.dropped = False

    def drop(self):
        self.dropped = True


def test_alloc_dealloc():
    allocator = ArenaAllocator().with_arena_size(512)

    first_region = [allocator.alloc(i, I32).item for i in range(32)]
    assert allocator.arenas_len() == 1

    second_region = [allocator.alloc(i, I32).item for i in range(32)]
    assert allocator.arenas_len() == 2
    assert [item.value for item in second_region] == list(range(32))

    for item in first_region:
        item.mark_dropped()

    allocator.drop_dead_arenas()
    assert allocator.arenas_len() == 1


def test_arc_drop():
    tracked = Tracked()
    allocator = ArenaAllocator()
    ptr = allocator.alloc(tracked, U64)
    assert allocator.arenas_len() == 1

    heap_item = ptr.item
    heap_item.drop()
    assert tracked.dropped
    assert heap_item.is_dropped()
    assert allocator.arenas_len() == 1

    allocator.drop_dead_arenas()
    assert allocator.arenas_len() == 0


def test_heap_item_drop_runs_once():
    calls = []

    class Counted:
        def drop(self):
            calls.append(1)

    item = ArenaHeapItem(Counted(), 0, 16)
    assert not item.is_dropped()
    item.drop()
    item.drop()
    assert item.is_dropped()
    assert calls == [1]


def test_mark_dropped_skips_destructor():
    tracked = Tracked()
    item = ArenaHeapItem(tracked, 0, 16)
    item.mark_dropped()
    item.drop()
    assert item.is_dropped()
    assert not tracked.dropped


def test_recycled_arena_avoids_realloc():
    allocator = ArenaAllocator().with_arena_size(512)

    items = [allocator.alloc(i, I32).item for i in range(16)]
    assert allocator.arenas_len() == 1
    heap_while_live = allocator.heap_size()
    assert heap_while_live == 512
    original = allocator.active_arena()

    for item in items:
        item.mark_dropped()
    allocator.drop_dead_arenas()

    assert allocator.arenas_len() == 0
    assert allocator.heap_size() == 0
    assert allocator.recycled_count == 1

    for i in range(16, 32):
        allocator.alloc(i, I32)
    assert allocator.arenas_len() == 1
    assert allocator.heap_size() == heap_while_live
    assert allocator.recycled_count == 0
    assert allocator.active_arena() is original


def test_max_recycled_cap_respected():
    allocator = ArenaAllocator().with_arena_size(128)

    items_per_arena = []
    for _ in range(5):
        items = []
        target_len = allocator.arenas_len() + 1
        while allocator.arenas_len() < target_len:
            items.append(allocator.alloc(0, U64).item)
        items_per_arena.append(items)
    assert allocator.arenas_len() == 5

    for items in items_per_arena:
        for item in items:
            item.mark_dropped()

    allocator.drop_dead_arenas()

    assert allocator.arenas_len() == 0
    assert allocator.heap_size() == 0
    assert allocator.recycled_count == 4


def test_drop_states_report_each_item():
    allocator = ArenaAllocator()

    ptr_a = allocator.alloc(1, U64)
    ptr_b = allocator.alloc(2, U64)
    allocator.alloc(3, U64)
    assert allocator.arenas_len() == 1

    ptr_b.item.mark_dropped()
    assert allocator.arena_drop_states()[0] == [False, True, False]

    ptr_a.item.mark_dropped()
    assert allocator.arena_drop_states()[0] == [False, True, True]


def test_item_size_includes_header():
    arena = Arena(512, 16)
    data = arena.get_allocation_data(I32)
    assert (data.size, data.buffer_offset, data.relative_offset) == (16, 0, 0)


def test_alignment_padding_between_items():
    arena = Arena(512, 16)
    arena.alloc("wide", Layout(16, 8))
    assert arena.current_offset == 24
    data = arena.get_allocation_data(Layout(16, 16))
    assert data.size == 32
    assert data.buffer_offset == 32
    assert data.relative_offset == 8
    ptr = arena.alloc_unchecked("aligned", data)
    assert ptr.offset == 32
    assert ptr.value == "aligned"
    assert arena.current_offset == 64


def test_arena_out_of_memory():
    arena = Arena(32, 16)
    arena.alloc(1, U64)
    arena.alloc(2, U64)
    with pytest.raises(ArenaOutOfMemory):
        arena.alloc(3, U64)


def test_alloc_or_close_closes_when_full():
    arena = Arena(16, 16)
    assert arena.alloc_or_close(1, U64).value == 1
    assert not arena.is_full()
    assert arena.alloc_or_close(2, U64) is None
    assert arena.is_full()


def test_close_marks_full():
    arena = Arena(64, 16)
    arena.close()
    assert arena.is_full()


def test_alignment_above_arena_alignment():
    arena = Arena(256, 8)
    with pytest.raises(AlignmentNotPossible):
        arena.alloc(0, Layout(16, 16))


def test_invalid_arena_layout():
    with pytest.raises(ArenaAllocError):
        Arena(64, 3)


def test_reset_empties_arena():
    arena = Arena(64, 16)
    ptr = arena.alloc(1, U64)
    arena.close()
    ptr.item.mark_dropped()
    arena.reset()
    assert arena.current_offset == 0
    assert arena.item_drop_states() == []
    assert not arena.is_full()


def test_reset_with_live_items_fails():
    arena = Arena(64, 16)
    arena.alloc(1, U64)
    with pytest.raises(RuntimeError):
        arena.reset()


def test_run_drop_check():
    arena = Arena(64, 16)
    first = arena.alloc(1, U64)
    second = arena.alloc(2, U64)
    first.item.mark_dropped()
    assert not arena.run_drop_check()
    second.item.mark_dropped()
    assert arena.run_drop_check()


def test_get_allocation_data_without_arena():
    allocator = ArenaAllocator()
    assert allocator.get_allocation_data(U64) is None
    allocator.alloc(1, U64)
    assert allocator.get_allocation_data(U64).buffer_offset == 16


def test_value_larger_than_arena():
    allocator = ArenaAllocator().with_arena_size(64)
    allocator.alloc(1, U64)
    with pytest.raises(ArenaOutOfMemory):
        allocator.alloc("huge", Layout(128, 8))


def test_threshold():
    allocator = ArenaAllocator().with_heap_threshold(100)
    assert allocator.is_below_threshold()
    allocator.alloc(1, U64)
    assert allocator.heap_size() == 4096
    assert not allocator.is_below_threshold()
    allocator.increase_threshold()
    assert allocator.heap_threshold == 100 + 4096 * 4
    assert allocator.is_below_threshold()


def test_default_threshold():
    allocator = ArenaAllocator()
    assert allocator.heap_threshold == 2_097_152
    assert allocator.arena_size == 4096
    assert allocator.is_below_threshold()