"""Open files and pipes, shared through a table of reference-counted entries."""

from __future__ import annotations

import errno
import threading
from dataclasses import dataclass
from enum import Enum

from .fs import FileSystem, FsError, Inode, Stat
from .layout import BSIZE, KernelPanic

NFILE = 100
PIPESIZE = 512


class FileType(Enum):
    NONE = 0
    PIPE = 1
    INODE = 2


class Pipe:
    """A bounded byte channel between one reading and one writing end."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._data = bytearray(PIPESIZE)
        self.nread = 0
        self.nwrite = 0
        self.readopen = True
        self.writeopen = True

    def write(self, data: bytes) -> int:
        """Write all of ``data``, waiting while the pipe is full."""
        data = bytes(data)
        with self._cond:
            for byte in data:
                while self.nwrite == self.nread + PIPESIZE:
                    if not self.readopen:
                        raise BrokenPipeError(errno.EPIPE, "pipe has no reader")
                    self._cond.notify_all()
                    self._cond.wait()
                self._data[self.nwrite % PIPESIZE] = byte
                self.nwrite += 1
            self._cond.notify_all()
        return len(data)

    def read(self, n: int) -> bytes:
        """Read up to ``n`` bytes; b"" once the pipe is empty and the writer gone."""
        with self._cond:
            while self.nread == self.nwrite and self.writeopen:
                self._cond.wait()
            out = bytearray()
            while len(out) < n and self.nread != self.nwrite:
                out.append(self._data[self.nread % PIPESIZE])
                self.nread += 1
            self._cond.notify_all()
        return bytes(out)

    def close(self, writable: bool) -> None:
        """Close the writing end if ``writable``, else the reading end."""
        with self._cond:
            if writable:
                self.writeopen = False
            else:
                self.readopen = False
            self._cond.notify_all()


@dataclass(eq=False)
class File:
    """An entry of the open-file table."""

    type: FileType = FileType.NONE
    ref: int = 0
    readable: bool = False
    writable: bool = False
    pipe: Pipe | None = None
    ip: Inode | None = None
    off: int = 0


class FileTable:
    """A fixed-size table of open files."""

    def __init__(self, fs: FileSystem | None = None, nfile: int = NFILE) -> None:
        self.fs = fs
        self._lock = threading.Lock()
        self.files = [File() for _ in range(nfile)]

    def _require_fs(self, what: str) -> FileSystem:
        if self.fs is None:
            raise KernelPanic(what)
        return self.fs

    def alloc(self) -> File:
        """Claim a free entry with one reference."""
        with self._lock:
            for f in self.files:
                if f.ref == 0:
                    f.ref = 1
                    f.type = FileType.NONE
                    f.readable = f.writable = False
                    f.pipe, f.ip, f.off = None, None, 0
                    return f
        raise OSError(errno.ENFILE, "file table full")

    def dup(self, f: File) -> File:
        """Take another reference to ``f``."""
        with self._lock:
            if f.ref < 1:
                raise KernelPanic("filedup")
            f.ref += 1
        return f

    def close(self, f: File) -> None:
        """Drop a reference; release the pipe end or inode with the last one."""
        with self._lock:
            if f.ref < 1:
                raise KernelPanic("fileclose")
            f.ref -= 1
            if f.ref > 0:
                return
            kind, pipe, ip, writable = f.type, f.pipe, f.ip, f.writable
            f.type = FileType.NONE
            f.pipe = None
            f.ip = None
        if kind is FileType.PIPE and pipe is not None:
            pipe.close(writable)
        elif kind is FileType.INODE and ip is not None:
            fs = self._require_fs("fileclose")
            with fs.log.transaction():
                fs.iput(ip)

    def stat(self, f: File) -> Stat:
        """Metadata of the inode behind ``f``."""
        if f.type is not FileType.INODE or f.ip is None:
            raise FsError(errno.EBADF, "not an inode")
        fs = self._require_fs("filestat")
        fs.ilock(f.ip)
        try:
            return fs.stati(f.ip)
        finally:
            fs.iunlock(f.ip)

    def read(self, f: File, n: int) -> bytes:
        """Read up to ``n`` bytes from ``f``."""
        if not f.readable:
            raise OSError(errno.EBADF, "file not open for reading")
        if f.type is FileType.PIPE and f.pipe is not None:
            return f.pipe.read(n)
        if f.type is FileType.INODE and f.ip is not None:
            fs = self._require_fs("fileread")
            fs.ilock(f.ip)
            try:
                data = fs.readi(f.ip, f.off, n)
                f.off += len(data)
            finally:
                fs.iunlock(f.ip)
            return data
        raise KernelPanic("fileread")

    def write(self, f: File, data: bytes) -> int:
        """Write all of ``data`` to ``f``."""
        if not f.writable:
            raise OSError(errno.EBADF, "file not open for writing")
        if f.type is FileType.PIPE and f.pipe is not None:
            return f.pipe.write(data)
        if f.type is FileType.INODE and f.ip is not None:
            fs = self._require_fs("filewrite")
            data = bytes(data)
            n = len(data)
            # A few blocks per transaction: inode, indirect, bitmap and slop.
            chunk = ((fs.log.maxopblocks - 1 - 1 - 2) // 2) * BSIZE
            i = 0
            while i < n:
                n1 = min(n - i, chunk)
                with fs.log.transaction():
                    fs.ilock(f.ip)
                    try:
                        r = fs.writei(f.ip, data[i:i + n1], f.off)
                        f.off += r
                    finally:
                        fs.iunlock(f.ip)
                if r != n1:
                    raise KernelPanic("short filewrite")
                i += r
            return n
        raise KernelPanic("filewrite")


def pipealloc(table: FileTable) -> tuple[File, File]:
    """Create a pipe and return its reading and writing files."""
    f0: File | None = None
    try:
        f0 = table.alloc()
        f1 = table.alloc()
    except OSError:
        if f0 is not None:
            table.close(f0)
        raise
    p = Pipe()
    f0.type, f0.readable, f0.writable, f0.pipe = FileType.PIPE, True, False, p
    f1.type, f1.readable, f1.writable, f1.pipe = FileType.PIPE, False, True, p
    return f0, f1