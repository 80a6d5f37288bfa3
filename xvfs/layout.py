"""On-disk layout of the file system: limits, superblock, inodes and directory entries."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum

NOFILE = 16
NFILE = 100
NINODE = 50
NDEV = 10
ROOTDEV = 1
MAXARG = 32
MAXOPBLOCKS = 10
LOGSIZE = MAXOPBLOCKS * 3
NBUF = MAXOPBLOCKS * 3
FSSIZE = 2000
MAXPATH = 128

ROOTINO = 1
BSIZE = 1024
FSMAGIC = 0x10203040

NDIRECT = 12
NINDIRECT = BSIZE // 4
MAXFILE = NDIRECT + NINDIRECT

DIRSIZ = 14

_SUPERBLOCK = struct.Struct("<8I")
_DINODE = struct.Struct(f"<4hI{NDIRECT + 1}I")
_DIRENT = struct.Struct(f"<H{DIRSIZ}s")

SUPERBLOCK_SIZE = _SUPERBLOCK.size
DINODE_SIZE = _DINODE.size
DIRENT_SIZE = _DIRENT.size

IPB = BSIZE // DINODE_SIZE
BPB = BSIZE * 8


class InodeType(IntEnum):
    """Kind of object an inode describes; FREE marks an unallocated inode."""

    FREE = 0
    DIR = 1
    FILE = 2
    DEVICE = 3


@dataclass
class Superblock:
    """Describes the disk layout."""

    magic: int = FSMAGIC
    size: int = 0
    nblocks: int = 0
    ninodes: int = 0
    nlog: int = 0
    logstart: int = 0
    inodestart: int = 0
    bmapstart: int = 0

    @classmethod
    def from_bytes(cls, data: bytes) -> Superblock:
        return cls(*_SUPERBLOCK.unpack_from(data))

    def to_bytes(self) -> bytes:
        return _SUPERBLOCK.pack(
            self.magic,
            self.size,
            self.nblocks,
            self.ninodes,
            self.nlog,
            self.logstart,
            self.inodestart,
            self.bmapstart,
        )

    def inode_block(self, inum: int) -> int:
        """Block that holds inode number inum."""
        return inum // IPB + self.inodestart

    def bitmap_block(self, blockno: int) -> int:
        """Block of the free map that holds the bit for blockno."""
        return blockno // BPB + self.bmapstart


@dataclass
class DiskInode:
    """The on-disk form of an inode."""

    type: int = InodeType.FREE
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: list[int] = field(default_factory=lambda: [0] * (NDIRECT + 1))

    @classmethod
    def from_bytes(cls, data: bytes) -> DiskInode:
        itype, major, minor, nlink, size, *addrs = _DINODE.unpack_from(data)
        return cls(itype, major, minor, nlink, size, list(addrs))

    def to_bytes(self) -> bytes:
        if len(self.addrs) != NDIRECT + 1:
            raise ValueError(f"an inode holds exactly {NDIRECT + 1} addresses")
        return _DINODE.pack(
            int(self.type), self.major, self.minor, self.nlink, self.size, *self.addrs
        )


@dataclass
class Dirent:
    """One entry of a directory; inum 0 marks a free slot."""

    inum: int = 0
    name: str = ""

    @classmethod
    def from_bytes(cls, data: bytes) -> Dirent:
        inum, raw = _DIRENT.unpack_from(data)
        name = raw.split(b"\0", 1)[0].decode("utf-8", errors="replace")
        return cls(inum, name)

    def to_bytes(self) -> bytes:
        raw = self.name.encode("utf-8")[:DIRSIZ]
        return _DIRENT.pack(self.inum, raw)


@dataclass
class Stat:
    """Metadata about a file, as returned by stat."""

    dev: int
    ino: int
    type: int
    nlink: int
    size: int