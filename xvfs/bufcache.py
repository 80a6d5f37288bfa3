"""Block device held in memory and an LRU cache of its blocks."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from .layout import BSIZE, FSSIZE, NBUF


class CacheError(Exception):
    """Misuse of the buffer cache, or no buffer free for a block."""


class MemoryDisk:
    """A disk of fixed-size blocks kept in memory."""

    def __init__(self, image: bytes | None = None, nblocks: int = FSSIZE) -> None:
        if image is not None:
            if len(image) % BSIZE:
                raise ValueError("image size is not a whole number of blocks")
            nblocks = len(image) // BSIZE
            self._data = bytearray(image)
        else:
            self._data = bytearray(nblocks * BSIZE)
        self.nblocks = nblocks
        self.reads = 0
        self.writes = 0

    def _span(self, blockno: int) -> slice:
        if not 0 <= blockno < self.nblocks:
            raise IndexError(f"block {blockno} out of range")
        return slice(blockno * BSIZE, (blockno + 1) * BSIZE)

    def read_block(self, blockno: int) -> bytes:
        span = self._span(blockno)
        self.reads += 1
        return bytes(self._data[span])

    def write_block(self, blockno: int, data: bytes) -> None:
        span = self._span(blockno)
        if len(data) != BSIZE:
            raise ValueError(f"a block is {BSIZE} bytes")
        self.writes += 1
        self._data[span] = data

    def image(self) -> bytes:
        return bytes(self._data)


@dataclass(eq=False)
class Buffer:
    """A cached copy of one disk block."""

    blockno: int = -1
    valid: bool = False
    refcnt: int = 0
    data: bytearray = field(default_factory=lambda: bytearray(BSIZE), repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _owner: int | None = field(default=None, repr=False)

    def _acquire(self) -> None:
        self._lock.acquire()
        self._owner = threading.get_ident()

    def _release(self) -> None:
        self._owner = None
        self._lock.release()

    @property
    def held(self) -> bool:
        """True if the calling thread holds this buffer."""
        return self._lock.locked() and self._owner == threading.get_ident()


class BufferCache:
    """Fixed set of buffers, recycled least recently used first."""

    def __init__(self, disk: MemoryDisk, nbuf: int = NBUF) -> None:
        self.disk = disk
        self._lock = threading.Lock()
        # Most recently used first.
        self._lru: list[Buffer] = [Buffer() for _ in range(nbuf)]

    def _get(self, blockno: int) -> Buffer:
        with self._lock:
            found = next((b for b in self._lru if b.blockno == blockno), None)
            if found is not None:
                found.refcnt += 1
            else:
                found = next((b for b in reversed(self._lru) if b.refcnt == 0), None)
                if found is None:
                    raise CacheError("bget: no buffers")
                found.blockno = blockno
                found.valid = False
                found.refcnt = 1
        found._acquire()
        return found

    def bread(self, blockno: int) -> Buffer:
        """Return the held buffer for blockno, reading it from disk if needed."""
        buf = self._get(blockno)
        if not buf.valid:
            try:
                buf.data[:] = self.disk.read_block(blockno)
            except Exception:
                self.brelse(buf)
                raise
            buf.valid = True
        return buf

    def bwrite(self, buf: Buffer) -> None:
        """Write a held buffer's contents to disk."""
        if not buf.held:
            raise CacheError("bwrite")
        self.disk.write_block(buf.blockno, bytes(buf.data))

    def brelse(self, buf: Buffer) -> None:
        """Release a held buffer and mark it most recently used."""
        if not buf.held:
            raise CacheError("brelse")
        buf._release()
        with self._lock:
            buf.refcnt -= 1
            if buf.refcnt == 0:
                self._lru.remove(buf)
                self._lru.insert(0, buf)

    def pin(self, buf: Buffer) -> None:
        with self._lock:
            buf.refcnt += 1

    def unpin(self, buf: Buffer) -> None:
        with self._lock:
            buf.refcnt -= 1

    @contextmanager
    def block(self, blockno: int) -> Iterator[Buffer]:
        """Hold the buffer for blockno for the duration of the block."""
        buf = self.bread(blockno)
        try:
            yield buf
        finally:
            self.brelse(buf)