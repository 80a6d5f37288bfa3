"""Minimal formatted output: %d, %x, %p, %s, %.*s and %%."""

from __future__ import annotations

import operator
import sys
from collections.abc import Iterator
from typing import Any

_DIGITS = "0123456789abcdef"


class Panic(Exception):
    """An unrecoverable error."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"panic: {self.message}"


def _int32(value: Any) -> int:
    v = operator.index(value) & 0xFFFFFFFF
    return v - (1 << 32) if v & 0x80000000 else v


def _printint(value: Any, base: int) -> str:
    xx = _int32(value)
    x = -xx if xx < 0 else xx
    digits = []
    while True:
        digits.append(_DIGITS[x % base])
        x //= base
        if x == 0:
            break
    if xx < 0:
        digits.append("-")
    return "".join(reversed(digits))


def _printptr(value: Any) -> str:
    return "0x" + format(operator.index(value) & 0xFFFFFFFFFFFFFFFF, "016x")


def _next(args: Iterator[Any]) -> Any:
    try:
        return next(args)
    except StopIteration:
        raise TypeError("not enough arguments for format string") from None


def render(fmt: str | None, *args: Any) -> str:
    """Format args by fmt; integers are taken as 32-bit signed, %x included."""
    if fmt is None:
        raise Panic("null fmt")
    it = iter(args)
    out: list[str] = []
    i = 0
    n = len(fmt)
    while i < n:
        c = fmt[i]
        if c != "%":
            out.append(c)
            i += 1
            continue
        i += 1
        if i >= n:
            break
        c = fmt[i]
        if c == "d":
            out.append(_printint(_next(it), 10))
        elif c == "x":
            out.append(_printint(_next(it), 16))
        elif c == "p":
            out.append(_printptr(_next(it)))
        elif c == "s":
            s = _next(it)
            out.append("(null)" if s is None else str(s))
        elif c == ".":
            if fmt[i + 1 : i + 2] == "*":
                if fmt[i + 2 : i + 3] == "s":
                    i += 2
                    width = _int32(_next(it))
                    s = _next(it)
                    text = "(null)" if s is None else str(s)
                    out.append(text[: max(width, 0)])
            else:
                out.append(".")
        elif c == "%":
            out.append("%")
        else:
            # Unknown sequence printed as is, to draw attention.
            out.append("%" + c)
        i += 1
    return "".join(out)


def panic(message: str) -> None:
    """Report message on standard error and raise Panic."""
    sys.stderr.write(f"panic: {message}\n")
    sys.stderr.flush()
    raise Panic(message)