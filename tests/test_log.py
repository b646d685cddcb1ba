import struct
import threading
import time

import pytest

from sixfs.bufcache import BufferCache
from sixfs.disk import MemDisk
from sixfs.layout import BSIZE, KernelPanic, Superblock
from sixfs.log import Log

NBLOCKS = 64
LOGSTART = 2
NLOG = 11


def make_log(image=None, logsize=10, maxop=3):
    disk = MemDisk(image if image is not None else bytes(BSIZE * NBLOCKS))
    cache = BufferCache(disk)
    sb = Superblock(
        size=NBLOCKS,
        nblocks=40,
        ninodes=8,
        nlog=NLOG,
        logstart=LOGSTART,
        inodestart=LOGSTART + NLOG,
        bmapstart=LOGSTART + NLOG + 1,
    )
    return disk, cache, Log(cache, 1, sb, logsize=logsize, maxopblocks=maxop)


def block_of(disk, n):
    return disk.image()[n * BSIZE:(n + 1) * BSIZE]


def header_count(disk):
    return struct.unpack_from("<i", disk.image(), LOGSTART * BSIZE)[0]


def test_commit_installs_block():
    disk, cache, log = make_log()
    with log.transaction():
        with cache.block(1, 40) as b:
            b.data[:] = b"z" * BSIZE
            log.log_write(b)
        assert block_of(disk, 40) == bytes(BSIZE)
    assert block_of(disk, 40) == b"z" * BSIZE
    assert log.blocks == []
    assert header_count(disk) == 0


def test_log_absorbs_repeated_writes():
    _, cache, log = make_log()
    log.begin_op()
    for _ in range(3):
        with cache.block(1, 41) as b:
            log.log_write(b)
    assert log.blocks == [41]
    log.end_op()


def test_log_write_outside_transaction():
    _, cache, log = make_log()
    with cache.block(1, 40) as b:
        with pytest.raises(KernelPanic, match="outside of trans"):
            log.log_write(b)


def test_too_big_transaction():
    disk, cache, log = make_log()
    with pytest.raises(KernelPanic, match="too big"):
        with log.transaction():
            for blockno in range(20, 20 + log.logsize + 1):
                with cache.block(1, blockno) as b:
                    b.data[:] = bytes([blockno]) * BSIZE
                    log.log_write(b)
    assert block_of(disk, 20) == bytes([20]) * BSIZE
    assert log.outstanding == 0


def test_recover_replays_committed_transaction():
    image = bytearray(BSIZE * NBLOCKS)
    struct.pack_into("<ii", image, LOGSTART * BSIZE, 1, 50)
    image[(LOGSTART + 1) * BSIZE:(LOGSTART + 2) * BSIZE] = b"r" * BSIZE
    disk, _, log = make_log(bytes(image))
    assert block_of(disk, 50) == b"r" * BSIZE
    assert header_count(disk) == 0
    assert log.blocks == []


def test_header_too_big():
    with pytest.raises(KernelPanic, match="too big logheader"):
        make_log(logsize=BSIZE)


def test_outstanding_count():
    _, _, log = make_log()
    log.begin_op()
    log.begin_op()
    assert log.outstanding == 2
    log.end_op()
    log.end_op()
    assert log.outstanding == 0
    assert not log.committing


def test_begin_op_waits_for_log_space():
    _, _, log = make_log(logsize=10, maxop=6)
    log.begin_op()

    def second():
        log.begin_op()
        log.end_op()

    worker = threading.Thread(target=second, daemon=True)
    worker.start()
    time.sleep(0.1)
    assert worker.is_alive()
    log.end_op()
    worker.join(timeout=5)
    assert not worker.is_alive()
    assert log.outstanding == 0