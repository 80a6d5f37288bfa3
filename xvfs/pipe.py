"""In-memory pipe with a bounded buffer shared by a reader and a writer."""

from __future__ import annotations

import threading

PIPESIZE = 512


class PipeError(Exception):
    """Write to a pipe whose read end is closed."""


class Pipe:
    """A one-way byte channel holding at most PIPESIZE unread bytes."""

    def __init__(self) -> None:
        self._buf = bytearray()
        self._cond = threading.Condition()
        self.readopen = True
        self.writeopen = True

    def __len__(self) -> int:
        """Number of bytes written but not yet read."""
        with self._cond:
            return len(self._buf)

    def write(self, data: bytes) -> int:
        """Write all of data, waiting for room; raises PipeError if no reader is left."""
        written = 0
        with self._cond:
            while written < len(data):
                if not self.readopen:
                    raise PipeError("read end of pipe is closed")
                room = PIPESIZE - len(self._buf)
                if room == 0:
                    self._cond.notify_all()
                    self._cond.wait()
                    continue
                chunk = data[written : written + room]
                self._buf += chunk
                written += len(chunk)
            self._cond.notify_all()
        return written

    def read(self, n: int) -> bytes:
        """Read up to n bytes, waiting for data while a writer remains.

        Returns b"" once the pipe is empty and the write end is closed.
        """
        with self._cond:
            while not self._buf and self.writeopen:
                self._cond.wait()
            count = max(n, 0)
            out = bytes(self._buf[:count])
            del self._buf[:count]
            self._cond.notify_all()
            return out

    def close(self, writable: bool) -> None:
        """Close the write end if writable, else the read end."""
        with self._cond:
            if writable:
                self.writeopen = False
            else:
                self.readopen = False
            self._cond.notify_all()