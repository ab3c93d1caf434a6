# oscars

Pure-Python models of several allocation strategies. Each allocator keeps the
bookkeeping a real one would: offsets, alignment padding, free lists,
liveness bitmaps, page recycling and heap thresholds. Values are held as
ordinary Python objects, so the strategies can be studied and tested without
touching raw memory.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Modules

### `oscars.layout`

- `Layout(size, align)`: a frozen dataclass. `Layout.from_size_align(size, align)`
  builds one. Construction raises `LayoutError` (a `ValueError`) when the
  alignment is not a power of two, the size is negative, or the size rounded up
  to the alignment would overflow. `pad_to_align()` returns the layout with its
  size rounded up to its alignment.
- `is_power_of_two(value)` and `align_up(offset, align)`.

### `oscars.arena`

- `Arena(arena_size, alignment)`: a single bump buffer. `alloc(value, layout)`
  places a value at the next offset aligned for `layout` and returns an
  `ArenaPtr` with `.offset` and `.value`. It raises `ArenaOutOfMemory` when the
  value does not fit, and `AlignmentNotPossible` when `layout.align` exceeds the
  arena's alignment. Both derive from `ArenaAllocError`.
- `Finalize`: a base class whose `finalize()` does nothing by default.
- `Box(ptr)`: owns an arena value. `drop()` runs the value's `finalize()` (if
  it is a `Finalize`) and releases it. `into_raw()` gives up ownership without
  finalizing. A `Box` is also a context manager that drops on exit.

### `oscars.arena2`

- `ArenaAllocator(arena_size=4096, heap_threshold=2_097_152)`: allocates into
  the newest `Arena` and opens a new one when that arena is full. Each value
  carries an 8-byte header. `drop_dead_arenas()` removes arenas whose items are
  all dropped and parks up to four of them for reuse (`recycled_count`).
  `heap_size()` counts only arenas in use. `is_below_threshold()` and
  `increase_threshold()` support a collection policy.
- `ArenaHeapItem`: `mark_dropped()`, `is_dropped()` and `drop()`. `drop()`
  marks the item and calls the value's `drop()` method once, if the value has
  one.
- `Arena`: `alloc`, `alloc_or_close`, `get_allocation_data`,
  `alloc_unchecked`, `run_drop_check`, `item_drop_states` (newest first) and
  `reset`.

### `oscars.mempool`

- `MemPoolAllocator(capacity=1024)`: a pool of slots held in chunks. When every
  slot is taken it adds a chunk, twice the size of the last one below 5120
  slots and 5% larger above that. `alloc(value)` and `alloc_uninitialized()`
  return a `SlotRef`. `dealloc(ptr)` calls the value's `drop()` method, if it
  has one, and frees the slot. `dealloc_no_drop(ptr)` frees the slot without
  calling it. Both return `False` for a slot the pool does not own.
  `allocated()` and `available()` count slots.

### `oscars.mempool2`

- `Pool(chunk_size, page_size, align)`: one page split into chunks whose size is
  rounded up to the alignment (see `aligned_chunk_size`). `alloc(value, size)`
  raises `OutOfChunks` (a `PoolAllocError`) once every chunk is in use.
  `dealloc(ptr)` calls the value's `drop()` method, if it has one, and returns
  the chunk to the pool.

### `oscars.slot_pool`

- `SlotPool(slot_size, total_capacity, max_align)`: a buffer laid out as
  `[ bitmap ][ slots ]`. The bitmap is sized in 64-bit words from an estimate of
  the slot count. For example, 16-byte slots in 512 bytes give an 8-byte bitmap
  and 31 slots. Freed slots are reused last-in, first-out.
- `BumpPage(total_capacity, max_align)`: hands out raw byte ranges in order and
  counts live ones. It can also grow or shrink the latest allocation in place.
- `PoolItem`, `PoolPointer` and `ErasedPoolPointer`, plus the errors
  `PoolAllocError`, `PoolOutOfMemory` and `PoolAlignmentError`.

### `oscars.pool_allocator`

- `PoolAllocator(page_size=4096, heap_threshold=2_097_152, max_recycled=12)`:
  rounds each typed allocation up to a size class (16 to 2048 bytes) and places
  it in a slot pool of that class. Raw byte allocations go on bump pages.
  `drop_empty_pools()` parks empty slot pools for reuse, up to `max_recycled`.
  Empty pools beyond that, and empty bump pages, are released. `heap_size()`
  includes parked pools. `is_below_threshold()` keeps a quarter of the threshold
  as headroom.
- `size_class_index_for(size)` raises `ValueError` for sizes above 2048 bytes.

## Example

```python
from oscars.pool_allocator import PoolAllocator

allocator = PoolAllocator().with_page_size(4096)
pointers = [allocator.alloc(i, 8) for i in range(16)]
assert allocator.pools_len() == 1

for pointer in pointers:
    allocator.free_slot(pointer.to_erased())
allocator.drop_empty_pools()
assert allocator.pools_len() == 0
assert len(allocator.recycled_pools) == 1
```

## What this package does not do

The allocators do not reserve or manage real memory. Addresses and offsets are
bookkeeping only, and the sizes of values are given by the caller. There is no
garbage collector or tracing. An item counts as dead only when the caller marks,
drops or frees it.