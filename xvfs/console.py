"""Console with line editing: erase, kill line and end of file."""

from __future__ import annotations

import threading
from collections.abc import Callable

INPUT_BUF_SIZE = 128


def _ctrl(ch: str) -> int:
    return ord(ch) - ord("@")


CTRL_D = _ctrl("D")
CTRL_H = _ctrl("H")
CTRL_P = _ctrl("P")
CTRL_U = _ctrl("U")
DELETE = 0x7F
NEWLINE = ord("\n")
RETURN = ord("\r")

_ERASE = b"\b \b"


class Console:
    """Line-at-a-time terminal input and plain output.

    Input bytes arrive through interrupt() and are echoed to the sink. A
    reader sees nothing until a whole line, an end-of-file mark or a full
    buffer has arrived.
    """

    def __init__(
        self,
        sink: Callable[[bytes], None] | None = None,
        on_dump: Callable[[], None] | None = None,
        timeout: float | None = None,
    ) -> None:
        self.output = bytearray()
        self._sink = sink if sink is not None else self.output.extend
        self._on_dump = on_dump
        self._timeout = timeout
        self._cond = threading.Condition()
        self._buf = bytearray(INPUT_BUF_SIZE)
        self._r = 0  # read index
        self._w = 0  # write index
        self._e = 0  # edit index

    def _putc(self, c: int) -> None:
        self._sink(bytes([c & 0xFF]))

    def _erase(self) -> None:
        self._sink(_ERASE)

    def interrupt(self, c: int | str) -> None:
        """Handle one input character: edit the line, echo it and wake readers."""
        if isinstance(c, str):
            c = ord(c)
        with self._cond:
            if c == CTRL_P:
                if self._on_dump is not None:
                    self._on_dump()
            elif c == CTRL_U:
                while (
                    self._e != self._w
                    and self._buf[(self._e - 1) % INPUT_BUF_SIZE] != NEWLINE
                ):
                    self._e -= 1
                    self._erase()
            elif c in (CTRL_H, DELETE):
                if self._e != self._w:
                    self._e -= 1
                    self._erase()
            elif c != 0 and self._e - self._r < INPUT_BUF_SIZE:
                if c == RETURN:
                    c = NEWLINE
                self._putc(c)
                self._buf[self._e % INPUT_BUF_SIZE] = c & 0xFF
                self._e += 1
                if (
                    c == NEWLINE
                    or c == CTRL_D
                    or self._e - self._r == INPUT_BUF_SIZE
                ):
                    self._w = self._e
                    self._cond.notify_all()

    def read(self, n: int) -> bytes:
        """Read up to n bytes, at most one line.

        End of file gives a short read; if nothing came before it, b"".
        Raises TimeoutError if the console's timeout passes with no input.
        """
        out = bytearray()
        with self._cond:
            while len(out) < n:
                if not self._cond.wait_for(lambda: self._r != self._w, self._timeout):
                    raise TimeoutError("no console input")
                c = self._buf[self._r % INPUT_BUF_SIZE]
                self._r += 1
                if c == CTRL_D:
                    if out:
                        # Keep the mark so the next read returns b"".
                        self._r -= 1
                    break
                out.append(c)
                if c == NEWLINE:
                    break
        return bytes(out)

    def write(self, data: bytes) -> int:
        """Send data to the sink unchanged; returns the number of bytes written."""
        self._sink(bytes(data))
        return len(data)