"""Write-ahead redo log grouping file-system operations into transactions."""

from __future__ import annotations

import struct
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from .bufcache import BufferCache
from .disk import Buf
from .layout import BSIZE, KernelPanic, Superblock

LOGSIZE = 30
MAXOPBLOCKS = 10


class Log:
    """A physical redo log of whole blocks.

    Commits happen only when no operation is in progress, so a commit never
    writes the updates of an unfinished operation.
    """

    def __init__(
        self,
        cache: BufferCache,
        dev: int,
        sb: Superblock,
        *,
        logsize: int = LOGSIZE,
        maxopblocks: int = MAXOPBLOCKS,
    ) -> None:
        if 4 * (1 + logsize) >= BSIZE:
            raise KernelPanic("initlog: too big logheader")
        self.cache = cache
        self.dev = dev
        self.start = sb.logstart
        self.size = sb.nlog
        self.logsize = logsize
        self.maxopblocks = maxopblocks
        self.outstanding = 0
        self.committing = False
        self.blocks: list[int] = []
        self._cond = threading.Condition()
        self.recover()

    def _read_head(self) -> None:
        with self.cache.block(self.dev, self.start) as b:
            (n,) = struct.unpack_from("<i", b.data)
            if not 0 <= n <= self.logsize:
                raise KernelPanic("log header corrupt")
            self.blocks = list(struct.unpack_from(f"<{n}i", b.data, 4))

    def _write_head(self) -> None:
        """Write the header; with blocks listed this is the commit point."""
        with self.cache.block(self.dev, self.start) as b:
            n = len(self.blocks)
            struct.pack_into(f"<i{n}i", b.data, 0, n, *self.blocks)
            self.cache.bwrite(b)

    def _install(self) -> None:
        """Copy committed blocks from the log to their home locations."""
        for tail, blockno in enumerate(self.blocks):
            with self.cache.block(self.dev, self.start + tail + 1) as logged:
                with self.cache.block(self.dev, blockno) as home:
                    home.data[:] = logged.data
                    self.cache.bwrite(home)

    def _write_log(self) -> None:
        """Copy modified blocks from the cache into the log area."""
        for tail, blockno in enumerate(self.blocks):
            with self.cache.block(self.dev, self.start + tail + 1) as logged:
                with self.cache.block(self.dev, blockno) as cached:
                    logged.data[:] = cached.data
                    self.cache.bwrite(logged)

    def _commit(self) -> None:
        if self.blocks:
            self._write_log()
            self._write_head()
            self._install()
            self.blocks = []
            self._write_head()

    def recover(self) -> None:
        """Replay a committed transaction left on disk, then clear the log."""
        self._read_head()
        self._install()
        self.blocks = []
        self._write_head()

    def begin_op(self) -> None:
        """Start an operation, waiting while a commit runs or space is short."""
        with self._cond:
            while (
                self.committing
                or len(self.blocks) + (self.outstanding + 1) * self.maxopblocks
                > self.logsize
            ):
                self._cond.wait()
            self.outstanding += 1

    def end_op(self) -> None:
        """End an operation; the last one out commits."""
        with self._cond:
            self.outstanding -= 1
            if self.committing:
                raise KernelPanic("log.committing")
            do_commit = self.outstanding == 0
            if do_commit:
                self.committing = True
            else:
                self._cond.notify_all()
        if do_commit:
            try:
                self._commit()
            finally:
                with self._cond:
                    self.committing = False
                    self._cond.notify_all()

    def log_write(self, b: Buf) -> None:
        """Record a modified buffer in the current transaction and pin it."""
        with self._cond:
            if len(self.blocks) >= self.logsize or len(self.blocks) >= self.size - 1:
                raise KernelPanic("too big a transaction")
            if self.outstanding < 1:
                raise KernelPanic("log_write outside of trans")
            if b.blockno not in self.blocks:
                self.blocks.append(b.blockno)
            b.dirty = True

    @contextmanager
    def transaction(self) -> Iterator[Log]:
        """Run the ``with`` body as one operation."""
        self.begin_op()
        try:
            yield self
        finally:
            self.end_op()