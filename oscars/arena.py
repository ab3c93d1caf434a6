"""A single-buffer bump arena with boxes that finalize their contents."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from oscars.layout import Layout, LayoutError, align_up


class ArenaAllocError(Exception):
    """Base error for arena allocation failures."""


class ArenaOutOfMemory(ArenaAllocError, MemoryError):
    """The arena has no room left for the requested allocation."""


class AlignmentNotPossible(ArenaAllocError):
    """The requested alignment cannot be satisfied by the arena's buffer."""


class Finalize:
    """Base for values that run cleanup when the box owning them is dropped."""

    def finalize(self) -> None:
        """Release resources held by the value; does nothing by default."""


_DROPPED = object()


@dataclass(frozen=True)
class ArenaPtr:
    """A handle to a value placed in an arena."""

    arena: Arena
    offset: int
    _index: int = field(repr=False)

    @property
    def value(self) -> Any:
        """The value stored at this location."""
        return self.arena._read(self._index)


class Arena:
    """A contiguous buffer that hands out aligned regions in order."""

    def __init__(self, arena_size: int, alignment: int) -> None:
        try:
            self.layout = Layout.from_size_align(arena_size, alignment)
        except LayoutError as exc:
            raise ArenaAllocError(str(exc)) from exc
        self.previous_offset = 0
        self.current_offset = 0
        self._values: list[Any] = []

    def __repr__(self) -> str:
        return (
            f"Arena(size={self.layout.size}, align={self.layout.align}, "
            f"current_offset={self.current_offset})"
        )

    def alloc(self, value: Any, layout: Layout) -> ArenaPtr:
        """Place ``value`` occupying ``layout`` and return a handle to it."""
        if layout.align > self.layout.align:
            raise AlignmentNotPossible(
                f"alignment {layout.align} exceeds the arena alignment {self.layout.align}"
            )
        new_offset = align_up(self.current_offset, layout.align)
        if new_offset + layout.size > self.layout.size:
            raise ArenaOutOfMemory(
                f"{layout.size} bytes at offset {new_offset} exceed arena of {self.layout.size}"
            )
        self.previous_offset = new_offset
        self.current_offset = new_offset + layout.size
        self._values.append(value)
        return ArenaPtr(self, new_offset, len(self._values) - 1)

    def _read(self, index: int) -> Any:
        value = self._values[index]
        if value is _DROPPED:
            raise RuntimeError("value has been dropped")
        return value

    def _write(self, index: int, value: Any) -> None:
        if self._values[index] is _DROPPED:
            raise RuntimeError("value has been dropped")
        self._values[index] = value

    def _release(self, index: int) -> None:
        self._values[index] = _DROPPED


class Box(Finalize):
    """Owns a value in an arena; dropping it finalizes and releases the value."""

    def __init__(self, ptr: ArenaPtr) -> None:
        self._ptr = ptr
        self._live = True

    def _check(self) -> None:
        if not self._live:
            raise RuntimeError("box has already been released")

    @property
    def value(self) -> Any:
        """The boxed value."""
        self._check()
        return self._ptr.value

    @value.setter
    def value(self, new_value: Any) -> None:
        self._check()
        self._ptr.arena._write(self._ptr._index, new_value)

    def finalize(self) -> None:
        """Run the boxed value's finalizer, if it has one."""
        value = self.value
        if isinstance(value, Finalize):
            value.finalize()

    def drop(self) -> None:
        """Finalize the value and release it from the arena."""
        self.finalize()
        self._ptr.arena._release(self._ptr._index)
        self._live = False

    def into_raw(self) -> ArenaPtr:
        """Give up ownership without finalizing and return the raw handle."""
        self._check()
        self._live = False
        return self._ptr

    def __enter__(self) -> Box:
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self._live:
            self.drop()