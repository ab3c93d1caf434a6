"""A fixed-size chunk pool carved out of a single page."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from oscars.layout import Layout, LayoutError, align_up, is_power_of_two


class PoolAllocError(Exception):
    """Base error for pool allocation failures."""


class OutOfChunks(PoolAllocError):
    """Every chunk of the pool is in use."""


def aligned_chunk_size(size: int, align: int) -> int:
    """Round a chunk size up to a multiple of ``align``."""
    if not is_power_of_two(align):
        raise ValueError(f"alignment {align} is not a power of two")
    return align_up(size, align)


@dataclass(frozen=True)
class PoolPtr:
    """A handle to a chunk of a pool holding a value."""

    pool: Pool
    offset: int

    @property
    def value(self) -> Any:
        """The value stored in this chunk."""
        return self.pool._read(self.offset)


class Pool:
    """A page split into equal chunks, handed out from a free stack.

    Values that define a ``drop()`` method have it called when their chunk
    is released.
    """

    def __init__(self, chunk_size: int, page_size: int, align: int) -> None:
        try:
            self.layout = Layout.from_size_align(page_size, align)
        except LayoutError as exc:
            raise PoolAllocError(str(exc)) from exc
        self.chunk_size = aligned_chunk_size(chunk_size, align)
        if self.chunk_size == 0:
            raise ValueError("chunk size must be positive")
        if self.chunk_size > page_size:
            raise ValueError(
                f"chunk size {self.chunk_size} does not fit in a page of {page_size}"
            )
        self._values: dict[int, Any] = {}
        self._free: list[int] = []
        self._free_all()

    def __repr__(self) -> str:
        return (
            f"Pool(chunk_size={self.chunk_size}, page_size={self.layout.size}, "
            f"free={len(self._free)})"
        )

    def _free_all(self) -> None:
        chunk_count = self.layout.size // self.chunk_size
        self._free.extend(i * self.chunk_size for i in range(chunk_count))

    def alloc(self, value: Any, size: int) -> PoolPtr:
        """Store a value of ``size`` bytes in a free chunk."""
        if not self._free:
            raise OutOfChunks("out of chunks to allocate")
        if size > self.chunk_size:
            raise ValueError(f"value of {size} bytes exceeds chunk size {self.chunk_size}")
        if size <= 0:
            raise ValueError("cannot allocate a zero-sized value")
        offset = self._free.pop()
        self._values[offset] = value
        return PoolPtr(self, offset)

    def dealloc(self, ptr: PoolPtr) -> None:
        """Drop the value in ``ptr``'s chunk and return the chunk to the pool."""
        if ptr.pool is not self:
            raise ValueError("pointer does not belong to this pool")
        if not 0 <= ptr.offset <= self.layout.size - self.chunk_size:
            raise ValueError(f"offset {ptr.offset} is outside the pool")
        try:
            value = self._values.pop(ptr.offset)
        except KeyError:
            raise ValueError(f"chunk at offset {ptr.offset} is not allocated") from None
        drop = getattr(value, "drop", None)
        if callable(drop):
            drop()
        self._free.append(ptr.offset)

    def _read(self, offset: int) -> Any:
        try:
            return self._values[offset]
        except KeyError:
            raise RuntimeError(f"chunk at offset {offset} has been released") from None