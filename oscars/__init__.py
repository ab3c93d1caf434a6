"""Pure-Python allocator models: bump arenas, memory pools and size-class slot pools."""

__version__ = "0.1.0"