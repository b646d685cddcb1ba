"""Buffer cache of disk blocks, recycled in least-recently-used order."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from .disk import Buf, MemDisk
from .layout import KernelPanic

NBUF = 30


class BufferCache:
    """Caches disk blocks; at most one holder per buffer at a time."""

    def __init__(self, disk: MemDisk, nbuf: int = NBUF) -> None:
        if nbuf < 1:
            raise ValueError("the cache needs at least one buffer")
        self.disk = disk
        self._lock = threading.Lock()
        # Most recently used first.
        self._mru = [Buf() for _ in range(nbuf)]
        self._mru.reverse()

    def _bget(self, dev: int, blockno: int) -> Buf:
        with self._lock:
            b = next(
                (c for c in self._mru if c.dev == dev and c.blockno == blockno), None
            )
            if b is None:
                # A dirty buffer is pinned by the log until committed.
                b = next(
                    (c for c in reversed(self._mru) if c.refcnt == 0 and not c.dirty),
                    None,
                )
                if b is None:
                    raise KernelPanic("bget: no buffers")
                b.dev, b.blockno = dev, blockno
                b.valid = b.dirty = False
            b.refcnt += 1
        b.lock.acquire()
        return b

    def bread(self, dev: int, blockno: int) -> Buf:
        """Return a locked buffer holding the contents of the block."""
        b = self._bget(dev, blockno)
        if not b.valid:
            self.disk.rw(b)
        return b

    def bwrite(self, b: Buf) -> None:
        """Write a locked buffer's contents to disk."""
        if not b.lock.holding():
            raise KernelPanic("bwrite")
        b.dirty = True
        self.disk.rw(b)

    def brelse(self, b: Buf) -> None:
        """Release a locked buffer and make it the most recently used."""
        if not b.lock.holding():
            raise KernelPanic("brelse")
        b.lock.release()
        with self._lock:
            b.refcnt -= 1
            if b.refcnt == 0:
                self._mru.remove(b)
                self._mru.insert(0, b)

    @contextmanager
    def block(self, dev: int, blockno: int) -> Iterator[Buf]:
        """Read a block and release it when the ``with`` body ends."""
        b = self.bread(dev, blockno)
        try:
            yield b
        finally:
            self.brelse(b)