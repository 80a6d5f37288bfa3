import pytest

from xvfs.bufcache import BufferCache, MemoryDisk
from xvfs.file import Device, FileTable
from xvfs.fs import FileSystem
from xvfs.layout import (
    BPB,
    BSIZE,
    DINODE_SIZE,
    DIRENT_SIZE,
    IPB,
    LOGSIZE,
    MAXPATH,
    NDEV,
    NDIRECT,
    NOFILE,
    ROOTINO,
    SUPERBLOCK_SIZE,
    DiskInode,
    Dirent,
    InodeType,
    Superblock,
)
from xvfs.syscalls import OpenMode, Session, SyscallError


def _make_fs(nblocks=1000, ninodes=200):
    nlog = LOGSIZE + 1
    logstart = 2
    inodestart = logstart + nlog
    bmapstart = inodestart + ninodes // IPB + 1
    datastart = bmapstart + nblocks // BPB + 1
    sb = Superblock(
        size=nblocks,
        nblocks=nblocks - datastart,
        ninodes=ninodes,
        nlog=nlog,
        logstart=logstart,
        inodestart=inodestart,
        bmapstart=bmapstart,
    )
    image = bytearray(nblocks * BSIZE)
    image[BSIZE : BSIZE + SUPERBLOCK_SIZE] = sb.to_bytes()
    rootblock = datastart
    for b in range(rootblock + 1):
        image[bmapstart * BSIZE + b // 8] |= 1 << (b % 8)
    root = DiskInode(
        type=InodeType.DIR, nlink=1, size=2 * DIRENT_SIZE, addrs=[rootblock] + [0] * NDIRECT
    )
    off = sb.inode_block(ROOTINO) * BSIZE + (ROOTINO % IPB) * DINODE_SIZE
    image[off : off + DINODE_SIZE] = root.to_bytes()
    entries = Dirent(ROOTINO, ".").to_bytes() + Dirent(ROOTINO, "..").to_bytes()
    image[rootblock * BSIZE : rootblock * BSIZE + len(entries)] = entries
    return FileSystem(BufferCache(MemoryDisk(bytes(image))))


@pytest.fixture
def session():
    return Session(_make_fs())


def _write_file(s, path, data):
    fd = s.open(path, OpenMode.CREATE | OpenMode.RDWR)
    assert s.write(fd, data) == len(data)
    s.close(fd)


def _read_file(s, path):
    fd = s.open(path, OpenMode.RDONLY)
    try:
        return s.read(fd, 100000)
    finally:
        s.close(fd)


def test_create_write_read_round_trip(session):
    _write_file(session, "/greeting", b"hello world")
    assert _read_file(session, "/greeting") == b"hello world"


def test_fstat_of_new_file(session):
    _write_file(session, "/f", b"abc")
    fd = session.open("/f", OpenMode.RDONLY)
    st = session.fstat(fd)
    assert st.type == InodeType.FILE
    assert st.size == 3
    assert st.nlink == 1


def test_open_missing_file_fails(session):
    with pytest.raises(SyscallError):
        session.open("/nothing", OpenMode.RDONLY)


def test_readonly_descriptor_refuses_write(session):
    _write_file(session, "/f", b"abc")
    fd = session.open("/f", OpenMode.RDONLY)
    with pytest.raises(OSError):
        session.write(fd, b"x")


def test_truncate_on_open(session):
    _write_file(session, "/f", b"some content")
    fd = session.open("/f", OpenMode.WRONLY | OpenMode.TRUNC)
    assert session.fstat(fd).size == 0
    with pytest.raises(OSError):
        session.read(fd, 1)


def test_mkdir_and_directory_open_modes(session):
    session.mkdir("/d")
    fd = session.open("/d", OpenMode.RDONLY)
    assert session.fstat(fd).type == InodeType.DIR
    with pytest.raises(SyscallError):
        session.open("/d", OpenMode.RDWR)
    with pytest.raises(SyscallError):
        session.mkdir("/d")
    with pytest.raises(SyscallError):
        session.open("/d", OpenMode.CREATE | OpenMode.RDWR)


def test_mkdir_links_parent(session):
    root = session.open("/", OpenMode.RDONLY)
    before = session.fstat(root).nlink
    session.mkdir("/d")
    assert session.fstat(root).nlink == before + 1
    session.unlink("/d")
    assert session.fstat(root).nlink == before


def test_chdir_and_relative_paths(session):
    session.mkdir("/d")
    session.chdir("/d")
    _write_file(session, "inner", b"nested")
    assert _read_file(session, "/d/inner") == b"nested"
    session.chdir("..")
    assert _read_file(session, "d/inner") == b"nested"


def test_chdir_errors(session):
    _write_file(session, "/f", b"")
    with pytest.raises(SyscallError):
        session.chdir("/f")
    with pytest.raises(SyscallError):
        session.chdir("/missing")


def test_link_shares_inode(session):
    _write_file(session, "/a", b"shared")
    session.link("/a", "/b")
    fd = session.open("/b", OpenMode.RDONLY)
    assert session.fstat(fd).nlink == 2
    assert session.read(fd, 100) == b"shared"
    session.close(fd)
    session.unlink("/a")
    assert _read_file(session, "/b") == b"shared"
    fd = session.open("/b", OpenMode.RDONLY)
    assert session.fstat(fd).nlink == 1


def test_link_failures_restore_nlink(session):
    _write_file(session, "/a", b"x")
    _write_file(session, "/b", b"y")
    with pytest.raises(SyscallError):
        session.link("/a", "/b")
    with pytest.raises(SyscallError):
        session.link("/a", "/missing/c")
    fd = session.open("/a", OpenMode.RDONLY)
    assert session.fstat(fd).nlink == 1


def test_link_directory_refused(session):
    session.mkdir("/d")
    with pytest.raises(SyscallError):
        session.link("/d", "/e")


def test_unlink_rules(session):
    session.mkdir("/d")
    _write_file(session, "/d/f", b"x")
    with pytest.raises(SyscallError):
        session.unlink("/d")
    with pytest.raises(SyscallError):
        session.unlink("/d/.")
    with pytest.raises(SyscallError):
        session.unlink("/nothing")
    session.unlink("/d/f")
    session.unlink("/d")
    with pytest.raises(SyscallError):
        session.open("/d", OpenMode.RDONLY)


def test_dup_shares_offset(session):
    fd = session.open("/f", OpenMode.CREATE | OpenMode.RDWR)
    fd2 = session.dup(fd)
    assert fd2 != fd
    session.write(fd, b"abc")
    session.write(fd2, b"def")
    session.close(fd)
    session.close(fd2)
    assert _read_file(session, "/f") == b"abcdef"


def test_bad_descriptors(session):
    with pytest.raises(SyscallError):
        session.close(3)
    with pytest.raises(SyscallError):
        session.read(-1, 1)
    fd = session.open("/f", OpenMode.CREATE | OpenMode.RDWR)
    session.close(fd)
    with pytest.raises(SyscallError):
        session.read(fd, 1)


def test_descriptor_table_exhaustion(session):
    _write_file(session, "/f", b"x")
    fds = [session.open("/f", OpenMode.RDONLY) for _ in range(NOFILE)]
    assert sorted(fds) == list(range(NOFILE))
    with pytest.raises(SyscallError):
        session.open("/f", OpenMode.RDONLY)
    with pytest.raises(SyscallError):
        session.pipe()
    session.close(fds[0])
    assert session.open("/f", OpenMode.RDONLY) == fds[0]


def test_pipe_descriptors(session):
    rfd, wfd = session.pipe()
    assert session.write(wfd, b"through") == 7
    assert session.read(rfd, 100) == b"through"
    session.close(wfd)
    assert session.read(rfd, 100) == b""


def test_device_node(session):
    written = []
    dev = Device(read=lambda n: b"q" * n, write=lambda d: written.append(bytes(d)) or len(d))
    fs = _make_fs()
    s = Session(fs, files=FileTable(fs, devices={1: dev}))
    s.mknod("/console", 1, 0)
    fd = s.open("/console", OpenMode.RDWR)
    assert s.fstat(fd).type == InodeType.DEVICE
    assert s.write(fd, b"hi") == 2
    assert written == [b"hi"]
    assert s.read(fd, 3) == b"qqq"


def test_device_with_bad_major_cannot_open(session):
    session.mknod("/bad", NDEV, 0)
    with pytest.raises(SyscallError):
        session.open("/bad", OpenMode.RDONLY)


def test_path_too_long(session):
    with pytest.raises(SyscallError):
        session.open("/" + "a" * MAXPATH, OpenMode.CREATE | OpenMode.RDWR)


def test_large_file_round_trip(session):
    data = bytes(range(256)) * 60
    _write_file(session, "/big", data)
    assert _read_file(session, "/big") == data