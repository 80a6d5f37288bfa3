# xvfs

A small Unix-style file system that lives entirely in memory. It is built in
layers, and each layer is a module you can use on its own:

- `xvfs.layout`: the on-disk format. It has `Superblock`, `DiskInode`,
  `Dirent`, `Stat` and `InodeType`, along with the block size (`BSIZE`) and
  the other layout limits (`FSSIZE`, `LOGSIZE`, `NDIRECT`, `DIRSIZ`, `IPB`,
  `BPB`, ...).
- `xvfs.bufcache`: `MemoryDisk`, a block device held in a byte array, and
  `BufferCache`, a fixed set of `Buffer` objects recycled least recently used
  first. `BufferCache.block(blockno)` holds a buffer for the length of a
  `with` block.
- `xvfs.log`: `Log`, a redo log. It groups block writes into transactions,
  commits when the last outstanding operation ends, and on start-up installs
  any committed transaction it finds on disk.
- `xvfs.fs`: `FileSystem` and `Inode`. These cover the block and inode
  allocators, reading and writing file contents (`readi`, `writei`),
  directories (`dirlookup`, `dirlink`) and path lookup (`namei`,
  `nameiparent`, and the helpers `skipelem` and `namecmp`).
- `xvfs.pipe`: `Pipe`, a byte pipe holding at most 512 unread bytes.
- `xvfs.file`: `FileTable` and `OpenFile`, reference-counted open files
  backed by inodes, pipes or a `Device` (a pair of read and write handlers
  registered under a major number).
- `xvfs.syscalls`: `Session`, one process's view of the file system: its
  descriptors and current directory. It offers `open`, `read`, `write`,
  `close`, `dup`, `fstat`, `link`, `unlink`, `mkdir`, `mknod`, `chdir` and
  `pipe`, with flags from `OpenMode`.
- `xvfs.console`: `Console`, line-at-a-time input with backspace/delete,
  control-U (kill line), control-D (end of file) and an optional control-P
  hook, echoing input to a sink.
- `xvfs.kprintf`: `render`, a small formatter that knows
  `%d %x %p %s %.*s %%`, and `panic`, which writes to standard error and
  raises `Panic`.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Getting started

`FileSystem` opens an existing disk: block 1 must hold a superblock with the
right magic number. The package has no formatting tool, so a fresh disk is
laid out by hand:

```python
from xvfs.bufcache import BufferCache, MemoryDisk
from xvfs.fs import FileSystem
from xvfs.layout import (
    BPB, BSIZE, DINODE_SIZE, FSSIZE, IPB, LOGSIZE, ROOTINO,
    DiskInode, InodeType, Superblock,
)
from xvfs.syscalls import OpenMode, Session

nlog = LOGSIZE + 1
ninodes = 200
sb = Superblock(size=FSSIZE, ninodes=ninodes, nlog=nlog, logstart=2,
                inodestart=2 + nlog, bmapstart=2 + nlog + ninodes // IPB + 1)
data_start = sb.bmapstart + FSSIZE // BPB + 1
sb.nblocks = FSSIZE - data_start

image = bytearray(FSSIZE * BSIZE)
image[BSIZE:BSIZE + len(sb.to_bytes())] = sb.to_bytes()
for b in range(data_start):                      # metadata blocks are in use
    image[sb.bmapstart * BSIZE + b // 8] |= 1 << (b % 8)
off = sb.inode_block(ROOTINO) * BSIZE + (ROOTINO % IPB) * DINODE_SIZE
image[off:off + DINODE_SIZE] = DiskInode(type=InodeType.DIR, nlink=1).to_bytes()

disk = MemoryDisk(bytes(image))
fs = FileSystem(BufferCache(disk))
with fs.log.transaction():
    root = fs.iget(ROOTINO)
    fs.ilock(root)
    fs.dirlink(root, ".", ROOTINO)
    fs.dirlink(root, "..", ROOTINO)
    fs.iunlockput(root)

s = Session(fs)
fd = s.open("/hello", OpenMode.CREATE | OpenMode.RDWR)
s.write(fd, b"hi")
s.close(fd)
fd = s.open("/hello", OpenMode.RDONLY)
assert s.read(fd, 10) == b"hi"
```

`disk.image()` returns the disk's bytes; a new `MemoryDisk` built from them
and opened with `FileSystem` sees the same files.

A console can be attached as a device:

```python
from xvfs.console import Console
from xvfs.file import Device, FileTable

console = Console()
files = FileTable(fs, devices={1: Device(read=console.read, write=console.write)})
s = Session(fs, files)
s.mknod("/console", 1, 0)
```

## Errors

When a layer cannot do what it was asked, it raises its own exception:

- `CacheError` in `xvfs.bufcache`: buffer misuse, or no free buffer.
- `LogError` in `xvfs.log`: a transaction too large, or a write outside one.
- `FileSystemError` in `xvfs.fs`: an inconsistent disk or misuse of inodes.
- `PipeError` in `xvfs.pipe`: writing after the read end is closed.
- `SyscallError` in `xvfs.syscalls`, a subclass of `OSError` carrying an
  `errno` value.
- `FileTable` raises `OSError` and `PermissionError` for a full table, a
  missing device handler, a short write or the wrong access mode.
- `Panic` in `xvfs.kprintf`, raised by `panic` and by `render(None)`.

## What it does not do

- There is no command to run and no tool to format a disk; the layout is
  built by hand as shown above.
- Disks exist only in memory; saving `MemoryDisk.image()` to a file and
  loading it back is left to the caller.
- There are no processes, no program loading and no scheduling. A `Session`
  stands in for one process's descriptors and current directory.
- `Console` is fed characters through `Console.interrupt`; it is not
  connected to a real terminal.