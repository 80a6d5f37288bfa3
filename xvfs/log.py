"""Redo log that makes groups of block writes atomic across crashes."""

from __future__ import annotations

import struct
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from .bufcache import Buffer, BufferCache
from .layout import BSIZE, LOGSIZE, MAXOPBLOCKS, Superblock

_COUNT = struct.Struct("<i")


class LogError(Exception):
    """Misuse of the log, or a transaction too large for it."""


class Log:
    """Physical redo log: a header block followed by copies of logged blocks.

    Updates from concurrent operations are grouped; the log commits only
    when no operation is outstanding.
    """

    def __init__(self, cache: BufferCache, sb: Superblock) -> None:
        if _COUNT.size * (LOGSIZE + 1) >= BSIZE:
            raise LogError("initlog: too big logheader")
        self.cache = cache
        self.start = sb.logstart
        self.size = sb.nlog
        self.outstanding = 0
        self.committing = False
        self.blocks: list[int] = []
        self._cond = threading.Condition()
        self.recover()

    def _read_head(self) -> None:
        with self.cache.block(self.start) as buf:
            (n,) = _COUNT.unpack_from(buf.data)
            if not 0 <= n <= LOGSIZE:
                raise LogError(f"corrupt log header: {n} blocks")
            self.blocks = list(struct.unpack_from(f"<{n}i", buf.data, _COUNT.size))

    def _write_head(self) -> None:
        with self.cache.block(self.start) as buf:
            n = len(self.blocks)
            struct.pack_into(f"<i{n}i", buf.data, 0, n, *self.blocks)
            self.cache.bwrite(buf)

    def _install(self, recovering: bool) -> None:
        for tail, blockno in enumerate(self.blocks):
            with self.cache.block(self.start + tail + 1) as lbuf:
                with self.cache.block(blockno) as dbuf:
                    dbuf.data[:] = lbuf.data
                    self.cache.bwrite(dbuf)
                    if not recovering:
                        self.cache.unpin(dbuf)

    def _write_log(self) -> None:
        for tail, blockno in enumerate(self.blocks):
            with self.cache.block(self.start + tail + 1) as to:
                with self.cache.block(blockno) as src:
                    to.data[:] = src.data
                self.cache.bwrite(to)

    def _commit(self) -> None:
        if self.blocks:
            self._write_log()
            self._write_head()
            self._install(recovering=False)
            self.blocks = []
            self._write_head()

    def recover(self) -> None:
        """Install any committed transaction found on disk, then clear the log."""
        self._read_head()
        self._install(recovering=True)
        self.blocks = []
        self._write_head()

    def begin_op(self) -> None:
        """Start an operation, waiting while a commit runs or space is short."""
        with self._cond:
            while (
                self.committing
                or len(self.blocks) + (self.outstanding + 1) * MAXOPBLOCKS > LOGSIZE
            ):
                self._cond.wait()
            self.outstanding += 1

    def end_op(self) -> None:
        """End an operation; the last one out commits."""
        with self._cond:
            if self.outstanding < 1:
                raise LogError("end_op without begin_op")
            self.outstanding -= 1
            if self.committing:
                raise LogError("log.committing")
            do_commit = self.outstanding == 0
            if do_commit:
                self.committing = True
            else:
                self._cond.notify_all()
        if do_commit:
            try:
                self._commit()
            finally:
                with self._cond:
                    self.committing = False
                    self._cond.notify_all()

    def write(self, buf: Buffer) -> None:
        """Record a modified buffer in the current transaction and pin it."""
        with self._cond:
            n = len(self.blocks)
            if n >= LOGSIZE or n >= self.size - 1:
                raise LogError("too big a transaction")
            if self.outstanding < 1:
                raise LogError("log_write outside of trans")
            if buf.blockno not in self.blocks:
                self.cache.pin(buf)
                self.blocks.append(buf.blockno)

    @contextmanager
    def transaction(self) -> Iterator[Log]:
        """Run the enclosed block as one file system operation."""
        self.begin_op()
        try:
            yield self
        finally:
            self.end_op()