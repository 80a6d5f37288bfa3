"""An in-memory Unix-style file system: buffer cache, redo log, inodes, pipes, console and file calls."""

__version__ = "0.1.0"

__all__ = [
    "layout",
    "bufcache",
    "log",
    "fs",
    "pipe",
    "file",
    "syscalls",
    "console",
    "kprintf",
]