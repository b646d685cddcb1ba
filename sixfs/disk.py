"""Block buffers and a disk kept entirely in memory."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from .layout import BSIZE, KernelPanic


class _SleepLock:
    """A lock that remembers which thread holds it."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._owner: int | None = None

    def acquire(self) -> None:
        self._lock.acquire()
        self._owner = threading.get_ident()

    def release(self) -> None:
        self._owner = None
        self._lock.release()

    def holding(self) -> bool:
        return self._lock.locked() and self._owner == threading.get_ident()


def _blank_block() -> bytearray:
    return bytearray(BSIZE)


@dataclass(eq=False)
class Buf:
    """A cached copy of one disk block."""

    dev: int = 0
    blockno: int = 0
    data: bytearray = field(default_factory=_blank_block)
    valid: bool = False
    dirty: bool = False
    refcnt: int = 0
    lock: _SleepLock = field(default_factory=_SleepLock, repr=False)


class MemDisk:
    """A disk whose blocks live in memory."""

    def __init__(self, image: bytes, dev: int = 1) -> None:
        self._data = bytearray(image)
        self.dev = dev
        self.nblocks = len(self._data) // BSIZE

    def rw(self, buf: Buf) -> None:
        """Write ``buf`` to disk if dirty, else read it; then mark it valid."""
        if not buf.lock.holding():
            raise KernelPanic("iderw: buf not locked")
        if buf.valid and not buf.dirty:
            raise KernelPanic("iderw: nothing to do")
        if buf.dev != self.dev:
            raise KernelPanic(f"iderw: request not for disk {self.dev}")
        if buf.blockno >= self.nblocks:
            raise KernelPanic("iderw: block out of range")

        start = buf.blockno * BSIZE
        if buf.dirty:
            buf.dirty = False
            self._data[start:start + BSIZE] = buf.data
        else:
            buf.data[:] = self._data[start:start + BSIZE]
        buf.valid = True

    def image(self) -> bytes:
        """The current contents of the whole disk."""
        return bytes(self._data)