[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "oscars"
version = "0.1.0"
description = "Pure-Python models of experimental allocators: bump arenas, memory pools and size-class slot pools"
requires-python = ">=3.10"
dependencies = []
keywords = ["allocator", "arena", "memory-pool", "slot-pool", "bump-allocator", "free-list"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Typing :: Typed",
    "Topic :: Software Development :: Libraries",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["oscars"]

[tool.pytest.ini_options]
addopts = "-ra"
