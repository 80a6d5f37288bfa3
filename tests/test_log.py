import struct

import pytest

from xvfs.bufcache import BufferCache, MemoryDisk
from xvfs.layout import BSIZE, FSMAGIC, LOGSIZE, Superblock
from xvfs.log import Log, LogError

LOGSTART = 2


def _setup(nlog=LOGSIZE + 1, disk=None):
    disk = disk or MemoryDisk(nblocks=100)
    sb = Superblock(FSMAGIC, 100, 50, 16, nlog, LOGSTART, LOGSTART + nlog, LOGSTART + nlog + 1)
    cache = BufferCache(disk)
    return disk, cache, Log(cache, sb)


def _header_count(disk):
    return struct.unpack_from("<i", disk.read_block(LOGSTART))[0]


def _pattern(value):
    return bytes([value]) * BSIZE


def test_transaction_installs_blocks():
    disk, cache, log = _setup()
    with log.transaction():
        with cache.block(60) as buf:
            buf.data[:] = _pattern(4)
            log.write(buf)
        assert disk.read_block(60) == bytes(BSIZE)
    assert disk.read_block(60) == _pattern(4)
    assert disk.read_block(LOGSTART + 1) == _pattern(4)
    assert _header_count(disk) == 0
    assert log.blocks == []


def test_nested_operations_commit_once():
    disk, cache, log = _setup()
    log.begin_op()
    with log.transaction():
        with cache.block(70) as buf:
            buf.data[:] = _pattern(2)
            log.write(buf)
    assert log.outstanding == 1
    assert disk.read_block(70) == bytes(BSIZE)
    log.end_op()
    assert disk.read_block(70) == _pattern(2)


def test_log_absorbs_repeated_writes():
    disk, cache, log = _setup()
    log.begin_op()
    with cache.block(61) as buf:
        log.write(buf)
        log.write(buf)
    assert log.blocks == [61]
    assert buf.refcnt == 1
    log.end_op()
    assert buf.refcnt == 0


def test_write_outside_transaction():
    _, cache, log = _setup()
    with cache.block(62) as buf:
        with pytest.raises(LogError):
            log.write(buf)


def test_transaction_too_big_for_log():
    _, cache, log = _setup(nlog=3)
    log.begin_op()
    for blockno in (80, 81):
        with cache.block(blockno) as buf:
            log.write(buf)
    with cache.block(82) as buf:
        with pytest.raises(LogError):
            log.write(buf)


def test_end_op_without_begin():
    _, _, log = _setup()
    with pytest.raises(LogError):
        log.end_op()


def test_recovery_installs_committed_transaction():
    disk = MemoryDisk(nblocks=100)
    disk.write_block(LOGSTART + 1, _pattern(8))
    header = struct.pack("<ii", 1, 90).ljust(BSIZE, b"\0")
    disk.write_block(LOGSTART, header)
    _setup(disk=disk)
    assert disk.read_block(90) == _pattern(8)
    assert _header_count(disk) == 0


def test_uncommitted_log_is_ignored():
    disk = MemoryDisk(nblocks=100)
    disk.write_block(LOGSTART + 1, _pattern(8))
    _, _, log = _setup(disk=disk)
    assert disk.read_block(90) == bytes(BSIZE)
    assert log.blocks == []


def test_corrupt_header_rejected():
    disk = MemoryDisk(nblocks=100)
    disk.write_block(LOGSTART, struct.pack("<i", -1).ljust(BSIZE, b"\0"))
    with pytest.raises(LogError):
        _setup(disk=disk)


def test_transaction_ends_on_exception():
    disk, cache, log = _setup()
    with pytest.raises(RuntimeError):
        with log.transaction():
            with cache.block(63) as buf:
                buf.data[:] = _pattern(5)
                log.write(buf)
            raise RuntimeError("stop")
    assert log.outstanding == 0
    assert disk.read_block(63) == _pattern(5)