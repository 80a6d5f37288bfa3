"""Inodes, block allocation, directories and path names on top of the log."""

from __future__ import annotations

import logging
import struct
import threading
from dataclasses import dataclass, field

from .bufcache import BufferCache
from .layout import (
    BPB,
    BSIZE,
    DINODE_SIZE,
    DIRENT_SIZE,
    DIRSIZ,
    FSMAGIC,
    IPB,
    MAXFILE,
    NDIRECT,
    NINDIRECT,
    NINODE,
    ROOTDEV,
    ROOTINO,
    DiskInode,
    Dirent,
    InodeType,
    Stat,
    Superblock,
)
from .log import Log

_logger = logging.getLogger(__name__)

_ADDR = struct.Struct("<I")


class FileSystemError(Exception):
    """Inconsistent file system state or misuse of the inode layer."""


@dataclass(eq=False)
class Inode:
    """In-memory copy of an inode, shared by everyone who refers to it."""

    inum: int = 0
    ref: int = 0
    valid: bool = False
    type: int = InodeType.FREE
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: list[int] = field(default_factory=lambda: [0] * (NDIRECT + 1))
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
        """True if the calling thread holds this inode's lock."""
        return self._lock.locked() and self._owner == threading.get_ident()


def skipelem(path: str) -> tuple[str, str] | None:
    """Split off the first element of path.

    Returns (name, rest) where rest has no leading slashes, or None if
    the path holds no element. Names longer than DIRSIZ are truncated.
    """
    stripped = path.lstrip("/")
    if not stripped:
        return None
    name, _, rest = stripped.partition("/")
    return name[:DIRSIZ], rest.lstrip("/")


def namecmp(s: str, t: str) -> int:
    """Compare two directory entry names over at most DIRSIZ bytes."""
    a = s.encode("utf-8")[:DIRSIZ]
    b = t.encode("utf-8")[:DIRSIZ]
    return (a > b) - (a < b)


class FileSystem:
    """A file system on one disk, reached through a buffer cache."""

    def __init__(self, cache: BufferCache, ninode: int = NINODE) -> None:
        self.cache = cache
        with cache.block(1) as buf:
            sb = Superblock.from_bytes(bytes(buf.data))
        if sb.magic != FSMAGIC:
            raise FileSystemError("invalid file system")
        self.sb = sb
        self.log = Log(cache, sb)
        self._lock = threading.Lock()
        self._table = [Inode() for _ in range(ninode)]

    # Blocks.

    def _bzero(self, blockno: int) -> None:
        with self.cache.block(blockno) as buf:
            buf.data[:] = bytes(BSIZE)
            self.log.write(buf)

    def _balloc(self) -> int:
        """Allocate a zeroed block; 0 if the disk is full."""
        size = self.sb.size
        for base in range(0, size, BPB):
            found = None
            with self.cache.block(self.sb.bitmap_block(base)) as buf:
                for bi in range(min(BPB, size - base)):
                    mask = 1 << (bi % 8)
                    if buf.data[bi // 8] & mask == 0:
                        buf.data[bi // 8] |= mask
                        self.log.write(buf)
                        found = base + bi
                        break
            if found is not None:
                self._bzero(found)
                return found
        _logger.warning("balloc: out of blocks")
        return 0

    def _bfree(self, blockno: int) -> None:
        with self.cache.block(self.sb.bitmap_block(blockno)) as buf:
            bi = blockno % BPB
            mask = 1 << (bi % 8)
            if buf.data[bi // 8] & mask == 0:
                raise FileSystemError("freeing free block")
            buf.data[bi // 8] &= ~mask & 0xFF
            self.log.write(buf)

    # Inodes.

    def _dinode_offset(self, inum: int) -> int:
        return (inum % IPB) * DINODE_SIZE

    def ialloc(self, itype: int) -> Inode:
        """Allocate an inode of the given type; returned unlocked and referenced."""
        for inum in range(1, self.sb.ninodes):
            with self.cache.block(self.sb.inode_block(inum)) as buf:
                off = self._dinode_offset(inum)
                dip = DiskInode.from_bytes(bytes(buf.data[off : off + DINODE_SIZE]))
                if dip.type != InodeType.FREE:
                    continue
                buf.data[off : off + DINODE_SIZE] = DiskInode(type=itype).to_bytes()
                self.log.write(buf)
            return self.iget(inum)
        raise FileSystemError("ialloc: no inodes")

    def iupdate(self, ip: Inode) -> None:
        """Copy a modified in-memory inode to disk."""
        with self.cache.block(self.sb.inode_block(ip.inum)) as buf:
            off = self._dinode_offset(ip.inum)
            dip = DiskInode(ip.type, ip.major, ip.minor, ip.nlink, ip.size, list(ip.addrs))
            buf.data[off : off + DINODE_SIZE] = dip.to_bytes()
            self.log.write(buf)

    def iget(self, inum: int) -> Inode:
        """Find or make the table entry for inum, without locking or reading it."""
        with self._lock:
            empty = None
            for ip in self._table:
                if ip.ref > 0 and ip.inum == inum:
                    ip.ref += 1
                    return ip
                if empty is None and ip.ref == 0:
                    empty = ip
            if empty is None:
                raise FileSystemError("iget: no inodes")
            empty.inum = inum
            empty.ref = 1
            empty.valid = False
            return empty

    def idup(self, ip: Inode) -> Inode:
        """Take another reference to ip."""
        with self._lock:
            ip.ref += 1
        return ip

    def ilock(self, ip: Inode) -> None:
        """Lock ip, reading it from disk if needed."""
        if ip is None or ip.ref < 1:
            raise FileSystemError("ilock")
        ip._acquire()
        if not ip.valid:
            with self.cache.block(self.sb.inode_block(ip.inum)) as buf:
                off = self._dinode_offset(ip.inum)
                dip = DiskInode.from_bytes(bytes(buf.data[off : off + DINODE_SIZE]))
            ip.type = dip.type
            ip.major = dip.major
            ip.minor = dip.minor
            ip.nlink = dip.nlink
            ip.size = dip.size
            ip.addrs = list(dip.addrs)
            ip.valid = True
            if ip.type == InodeType.FREE:
                ip._release()
                raise FileSystemError("ilock: no type")

    def iunlock(self, ip: Inode) -> None:
        if ip is None or not ip.held or ip.ref < 1:
            raise FileSystemError("iunlock")
        ip._release()

    def iput(self, ip: Inode) -> None:
        """Drop a reference; free the inode on disk if it was the last and unlinked.

        Must run inside a transaction.
        """
        self._lock.acquire()
        try:
            if ip.ref == 1 and ip.valid and ip.nlink == 0:
                # No one else refers to ip, so this cannot block.
                ip._acquire()
                self._lock.release()
                try:
                    self.itrunc(ip)
                    ip.type = InodeType.FREE
                    self.iupdate(ip)
                    ip.valid = False
                finally:
                    ip._release()
                    self._lock.acquire()
            ip.ref -= 1
        finally:
            self._lock.release()

    def iunlockput(self, ip: Inode) -> None:
        self.iunlock(ip)
        self.iput(ip)

    # Inode content.

    def _bmap(self, ip: Inode, bn: int) -> int:
        """Disk block holding block bn of ip, allocating it; 0 if the disk is full."""
        if bn < NDIRECT:
            addr = ip.addrs[bn]
            if addr == 0:
                addr = self._balloc()
                if addr == 0:
                    return 0
                ip.addrs[bn] = addr
            return addr
        bn -= NDIRECT
        if bn < NINDIRECT:
            indirect = ip.addrs[NDIRECT]
            if indirect == 0:
                indirect = self._balloc()
                if indirect == 0:
                    return 0
                ip.addrs[NDIRECT] = indirect
            with self.cache.block(indirect) as buf:
                (addr,) = _ADDR.unpack_from(buf.data, bn * _ADDR.size)
                if addr == 0:
                    addr = self._balloc()
                    if addr:
                        _ADDR.pack_into(buf.data, bn * _ADDR.size, addr)
                        self.log.write(buf)
            return addr
        raise FileSystemError("bmap: out of range")

    def itrunc(self, ip: Inode) -> None:
        """Discard the contents of ip."""
        for i in range(NDIRECT):
            if ip.addrs[i]:
                self._bfree(ip.addrs[i])
                ip.addrs[i] = 0
        if ip.addrs[NDIRECT]:
            with self.cache.block(ip.addrs[NDIRECT]) as buf:
                addrs = struct.unpack_from(f"<{NINDIRECT}I", buf.data)
            for addr in addrs:
                if addr:
                    self._bfree(addr)
            self._bfree(ip.addrs[NDIRECT])
            ip.addrs[NDIRECT] = 0
        ip.size = 0
        self.iupdate(ip)

    def stati(self, ip: Inode) -> Stat:
        return Stat(dev=ROOTDEV, ino=ip.inum, type=ip.type, nlink=ip.nlink, size=ip.size)

    def readi(self, ip: Inode, off: int, n: int) -> bytes:
        """Read up to n bytes of ip starting at off."""
        if n < 0 or off < 0 or off > ip.size:
            return b""
        n = min(n, ip.size - off)
        out = bytearray()
        while len(out) < n:
            addr = self._bmap(ip, off // BSIZE)
            if addr == 0:
                break
            with self.cache.block(addr) as buf:
                start = off % BSIZE
                m = min(n - len(out), BSIZE - start)
                out += buf.data[start : start + m]
            off += m
        return bytes(out)

    def writei(self, ip: Inode, off: int, data: bytes) -> int:
        """Write data into ip at off; returns the bytes written, short if the disk fills."""
        n = len(data)
        if off < 0 or off > ip.size:
            raise FileSystemError("write offset beyond end of file")
        if off + n > MAXFILE * BSIZE:
            raise FileSystemError("write beyond maximum file size")
        tot = 0
        while tot < n:
            addr = self._bmap(ip, off // BSIZE)
            if addr == 0:
                break
            with self.cache.block(addr) as buf:
                start = off % BSIZE
                m = min(n - tot, BSIZE - start)
                buf.data[start : start + m] = data[tot : tot + m]
                self.log.write(buf)
            tot += m
            off += m
        if off > ip.size:
            ip.size = off
        # bmap may have added blocks even if the size is unchanged.
        self.iupdate(ip)
        return tot

    # Directories.

    def _entries(self, dp: Inode, start: int = 0):
        for off in range(start, dp.size, DIRENT_SIZE):
            raw = self.readi(dp, off, DIRENT_SIZE)
            if len(raw) != DIRENT_SIZE:
                raise FileSystemError("directory read")
            yield off, Dirent.from_bytes(raw)

    def dirlookup(self, dp: Inode, name: str) -> tuple[Inode, int] | None:
        """Find name in directory dp; returns the inode and the entry's offset."""
        if dp.type != InodeType.DIR:
            raise FileSystemError("dirlookup not DIR")
        for off, de in self._entries(dp):
            if de.inum != 0 and namecmp(name, de.name) == 0:
                return self.iget(de.inum), off
        return None

    def dirlink(self, dp: Inode, name: str, inum: int) -> None:
        """Add the entry (name, inum) to directory dp."""
        found = self.dirlookup(dp, name)
        if found is not None:
            self.iput(found[0])
            raise FileSystemError(f"{name!r} already exists")
        off = dp.size
        for slot, de in self._entries(dp):
            if de.inum == 0:
                off = slot
                break
        entry = Dirent(inum, name).to_bytes()
        if self.writei(dp, off, entry) != len(entry):
            raise FileSystemError("dirlink: out of space")

    # Paths.

    def _namex(self, path: str, parent: bool, cwd: Inode | None):
        if path.startswith("/"):
            ip = self.iget(ROOTINO)
        else:
            if cwd is None:
                raise ValueError("a relative path needs a current directory")
            ip = self.idup(cwd)
        name = ""
        while (step := skipelem(path)) is not None:
            name, path = step
            self.ilock(ip)
            if ip.type != InodeType.DIR:
                self.iunlockput(ip)
                return None
            if parent and path == "":
                # Stop one level early.
                self.iunlock(ip)
                return ip, name
            found = self.dirlookup(ip, name)
            if found is None:
                self.iunlockput(ip)
                return None
            self.iunlockput(ip)
            ip = found[0]
        if parent:
            self.iput(ip)
            return None
        return ip, name

    def namei(self, path: str, cwd: Inode | None = None) -> Inode | None:
        """Inode for path, referenced and unlocked, or None if there is none."""
        result = self._namex(path, False, cwd)
        return None if result is None else result[0]

    def nameiparent(self, path: str, cwd: Inode | None = None) -> tuple[Inode, str] | None:
        """Inode of the directory holding path's last element, and that element."""
        return self._namex(path, True, cwd)