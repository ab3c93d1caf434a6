"""Size and alignment descriptions for simulated allocations."""

from __future__ import annotations

from dataclasses import dataclass

MAX_SIZE = 2**63 - 1
"""Largest size a layout may describe once rounded up to its alignment."""


class LayoutError(ValueError):
    """Raised when a size and an alignment do not form a valid layout."""


def is_power_of_two(value: int) -> bool:
    """Return True if ``value`` is a positive power of two."""
    return value > 0 and value & (value - 1) == 0


def align_up(offset: int, align: int) -> int:
    """Round ``offset`` up to the next multiple of ``align``."""
    if not is_power_of_two(align):
        raise ValueError(f"alignment {align} is not a power of two")
    if offset < 0:
        raise ValueError(f"offset {offset} is negative")
    return (offset + align - 1) & ~(align - 1)


@dataclass(frozen=True)
class Layout:
    """The size and alignment of a block of memory."""

    size: int
    align: int

    def __post_init__(self) -> None:
        if not is_power_of_two(self.align):
            raise LayoutError(f"alignment {self.align} is not a power of two")
        if self.size < 0:
            raise LayoutError(f"size {self.size} is negative")
        if self.size > MAX_SIZE - (self.align - 1):
            raise LayoutError(
                f"size {self.size} rounded up to {self.align} overflows the address space"
            )

    @classmethod
    def from_size_align(cls, size: int, align: int) -> Layout:
        """Build a layout, raising LayoutError if the pair is invalid."""
        return cls(size, align)

    def pad_to_align(self) -> Layout:
        """Return this layout with its size rounded up to its alignment."""
        return Layout(align_up(self.size, self.align), self.align)