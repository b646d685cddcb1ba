"""A small Unix-style file system: disk layout, buffer cache, log, inodes, files, console and tools."""

__version__ = "0.1.0"