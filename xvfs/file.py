"""Open files: reference-counted handles on pipes, inodes and devices."""

from __future__ import annotations

import errno
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from .fs import FileSystem, FileSystemError, Inode
from .layout import BSIZE, MAXOPBLOCKS, NDEV, NFILE, Stat
from .pipe import Pipe


class FileType(Enum):
    NONE = 0
    PIPE = 1
    INODE = 2
    DEVICE = 3


@dataclass
class Device:
    """Read and write handlers for one major device number."""

    read: Callable[[int], bytes] | None = None
    write: Callable[[bytes], int] | None = None


@dataclass(eq=False)
class OpenFile:
    """One open file, possibly shared by several descriptors."""

    type: FileType = FileType.NONE
    ref: int = 0
    readable: bool = False
    writable: bool = False
    pipe: Pipe | None = None
    ip: Inode | None = None
    off: int = 0
    major: int = 0


# Blocks one chunk of a file write may touch: the inode, an indirect block,
# an allocation block and two of slop for unaligned writes.
_MAX_WRITE = ((MAXOPBLOCKS - 1 - 1 - 2) // 2) * BSIZE


class FileTable:
    """The system-wide table of open files."""

    def __init__(
        self,
        fs: FileSystem | None = None,
        devices: dict[int, Device] | None = None,
        nfile: int = NFILE,
    ) -> None:
        self.fs = fs
        self.devices = dict(devices or {})
        self._lock = threading.Lock()
        self._files = [OpenFile() for _ in range(nfile)]

    def _need_fs(self) -> FileSystem:
        if self.fs is None:
            raise ValueError("this file table has no file system")
        return self.fs

    def _device(self, f: OpenFile) -> Device | None:
        if not 0 <= f.major < NDEV:
            return None
        return self.devices.get(f.major)

    def alloc(self) -> OpenFile:
        """Take a free entry with one reference."""
        with self._lock:
            for f in self._files:
                if f.ref == 0:
                    f.ref = 1
                    return f
        raise OSError(errno.ENFILE, "file table full")

    def dup(self, f: OpenFile) -> OpenFile:
        with self._lock:
            if f.ref < 1:
                raise ValueError("filedup")
            f.ref += 1
        return f

    def close(self, f: OpenFile) -> None:
        """Drop a reference; release the underlying object on the last one."""
        with self._lock:
            if f.ref < 1:
                raise ValueError("fileclose")
            f.ref -= 1
            if f.ref > 0:
                return
            ftype, pipe, ip, writable = f.type, f.pipe, f.ip, f.writable
            f.type = FileType.NONE
            f.pipe = None
            f.ip = None
            f.readable = f.writable = False
            f.off = 0
            f.major = 0
        if ftype is FileType.PIPE and pipe is not None:
            pipe.close(writable)
        elif ftype in (FileType.INODE, FileType.DEVICE) and ip is not None:
            fs = self._need_fs()
            with fs.log.transaction():
                fs.iput(ip)

    def stat(self, f: OpenFile) -> Stat:
        if f.type not in (FileType.INODE, FileType.DEVICE) or f.ip is None:
            raise OSError(errno.EINVAL, "stat of a file with no inode")
        fs = self._need_fs()
        fs.ilock(f.ip)
        try:
            return fs.stati(f.ip)
        finally:
            fs.iunlock(f.ip)

    def read(self, f: OpenFile, n: int) -> bytes:
        if not f.readable:
            raise PermissionError(errno.EBADF, "file not open for reading")
        if f.type is FileType.PIPE:
            return f.pipe.read(n)
        if f.type is FileType.DEVICE:
            dev = self._device(f)
            if dev is None or dev.read is None:
                raise OSError(errno.ENODEV, f"no reader for device {f.major}")
            return dev.read(n)
        if f.type is FileType.INODE:
            fs = self._need_fs()
            fs.ilock(f.ip)
            try:
                data = fs.readi(f.ip, f.off, n)
                f.off += len(data)
            finally:
                fs.iunlock(f.ip)
            return data
        raise ValueError("fileread")

    def write(self, f: OpenFile, data: bytes) -> int:
        if not f.writable:
            raise PermissionError(errno.EBADF, "file not open for writing")
        if f.type is FileType.PIPE:
            return f.pipe.write(data)
        if f.type is FileType.DEVICE:
            dev = self._device(f)
            if dev is None or dev.write is None:
                raise OSError(errno.ENODEV, f"no writer for device {f.major}")
            return dev.write(data)
        if f.type is FileType.INODE:
            return self._write_inode(f, data)
        raise ValueError("filewrite")

    def _write_inode(self, f: OpenFile, data: bytes) -> int:
        fs = self._need_fs()
        n = len(data)
        i = 0
        while i < n:
            chunk = data[i : i + _MAX_WRITE]
            with fs.log.transaction():
                fs.ilock(f.ip)
                try:
                    r = fs.writei(f.ip, f.off, chunk)
                    f.off += r
                except FileSystemError:
                    r = -1
                finally:
                    fs.iunlock(f.ip)
            if r != len(chunk):
                break
            i += r
        if i != n:
            raise OSError(errno.ENOSPC, "short write")
        return n

    def pipe(self) -> tuple[OpenFile, OpenFile]:
        """Make a pipe; returns its read end and write end."""
        rf = self.alloc()
        try:
            wf = self.alloc()
        except OSError:
            self.close(rf)
            raise
        p = Pipe()
        rf.type, rf.readable, rf.writable, rf.pipe = FileType.PIPE, True, False, p
        wf.type, wf.readable, wf.writable, wf.pipe = FileType.PIPE, False, True, p
        return rf, wf