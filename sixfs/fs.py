"""Inodes, directories and path names on top of the logged buffer cache."""

from __future__ import annotations

import struct
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from .bufcache import NBUF, BufferCache
from .disk import MemDisk, _SleepLock
from .layout import (
    BPB,
    BSIZE,
    DINODE_SIZE,
    DIRENT_SIZE,
    DIRSIZ,
    IPB,
    MAXFILE,
    NDIRECT,
    NINDIRECT,
    ROOTINO,
    DiskInode,
    Dirent,
    KernelPanic,
    Superblock,
    bblock,
    iblock,
)
from .log import Log

T_DIR = 1
T_FILE = 2
T_DEV = 3

NINODE = 50
NDEV = 10
ROOTDEV = 1
CONSOLE = 1

_ADDR = struct.Struct("<I")


class FsError(OSError):
    """A read or write the file system refuses."""


@dataclass
class Stat:
    """Metadata about an inode."""

    dev: int
    ino: int
    type: int
    nlink: int
    size: int


@dataclass
class Device:
    """Read and write handlers for one major device number."""

    read: Callable[[Inode, int], bytes] | None = None
    write: Callable[[Inode, bytes], int] | None = None


def _empty_addrs() -> list[int]:
    return [0] * (NDIRECT + 1)


@dataclass(eq=False)
class Inode:
    """In-memory copy of an inode."""

    dev: int = 0
    inum: int = 0
    ref: int = 0
    valid: bool = False
    type: int = 0
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: list[int] = field(default_factory=_empty_addrs)
    lock: _SleepLock = field(default_factory=_SleepLock, repr=False)


def _truncate_name(name: str) -> str:
    raw = name.encode("utf-8", "surrogateescape")[:DIRSIZ]
    return raw.decode("utf-8", "surrogateescape")


def _name_key(name: str) -> bytes:
    return name.encode("utf-8", "surrogateescape")[:DIRSIZ].split(b"\0", 1)[0]


def namecmp(s: str, t: str) -> int:
    """Compare two names on their first DIRSIZ bytes, like strncmp."""
    a, b = _name_key(s), _name_key(t)
    return (a > b) - (a < b)


def skipelem(path: str) -> tuple[str, str] | None:
    """Split off the first path element.

    Returns ``(name, rest)`` where ``rest`` has no leading slashes, or None
    when the path holds no element.
    """
    path = path.lstrip("/")
    if not path:
        return None
    elem, _, rest = path.partition("/")
    return _truncate_name(elem), rest.lstrip("/")


class FileSystem:
    """Files and directories stored on one disk through a redo log."""

    def __init__(
        self,
        disk: MemDisk,
        dev: int = ROOTDEV,
        *,
        nbuf: int = NBUF,
        ninode: int = NINODE,
        devices: Mapping[int, Device] | None = None,
    ) -> None:
        self.disk = disk
        self.dev = dev
        self.cache = BufferCache(disk, nbuf)
        self.sb = self._readsb()
        self.log = Log(self.cache, dev, self.sb)
        self.devices: dict[int, Device] = dict(devices or {})
        self._lock = threading.Lock()
        self._inodes = [Inode() for _ in range(ninode)]

    def _readsb(self) -> Superblock:
        with self.cache.block(self.dev, 1) as b:
            return Superblock.from_bytes(bytes(b.data))

    # Blocks.

    def _bzero(self, dev: int, bno: int) -> None:
        with self.cache.block(dev, bno) as bp:
            bp.data[:] = bytes(BSIZE)
            self.log.log_write(bp)

    def _claim_bit(self, dev: int, base: int) -> int | None:
        with self.cache.block(dev, bblock(base, self.sb)) as bp:
            for bi in range(min(BPB, self.sb.size - base)):
                mask = 1 << (bi % 8)
                if not bp.data[bi // 8] & mask:
                    bp.data[bi // 8] |= mask
                    self.log.log_write(bp)
                    return base + bi
        return None

    def _balloc(self, dev: int) -> int:
        for base in range(0, self.sb.size, BPB):
            b = self._claim_bit(dev, base)
            if b is not None:
                self._bzero(dev, b)
                return b
        raise KernelPanic("balloc: out of blocks")

    def _bfree(self, dev: int, b: int) -> None:
        with self.cache.block(dev, bblock(b, self.sb)) as bp:
            bi = b % BPB
            mask = 1 << (bi % 8)
            if not bp.data[bi // 8] & mask:
                raise KernelPanic("freeing free block")
            bp.data[bi // 8] &= ~mask & 0xFF
            self.log.log_write(bp)

    # Inodes.

    def ialloc(self, type_: int) -> Inode:
        """Allocate a free on-disk inode of the given type; returned unlocked."""
        for inum in range(1, self.sb.ninodes):
            with self.cache.block(self.dev, iblock(inum, self.sb)) as bp:
                off = (inum % IPB) * DINODE_SIZE
                if DiskInode.from_bytes(bytes(bp.data[off:off + DINODE_SIZE])).type:
                    continue
                bp.data[off:off + DINODE_SIZE] = DiskInode(type=type_).pack()
                self.log.log_write(bp)
            return self.iget(self.dev, inum)
        raise KernelPanic("ialloc: no inodes")

    def iupdate(self, ip: Inode) -> None:
        """Copy a modified in-memory inode to disk."""
        with self.cache.block(ip.dev, iblock(ip.inum, self.sb)) as bp:
            off = (ip.inum % IPB) * DINODE_SIZE
            dinode = DiskInode(
                type=ip.type,
                major=ip.major,
                minor=ip.minor,
                nlink=ip.nlink,
                size=ip.size,
                addrs=list(ip.addrs),
            )
            bp.data[off:off + DINODE_SIZE] = dinode.pack()
            self.log.log_write(bp)

    def iget(self, dev: int, inum: int) -> Inode:
        """Find or make the cached inode; neither locks nor reads it."""
        with self._lock:
            empty = None
            for ip in self._inodes:
                if ip.ref > 0 and ip.dev == dev and ip.inum == inum:
                    ip.ref += 1
                    return ip
                if empty is None and ip.ref == 0:
                    empty = ip
            if empty is None:
                raise KernelPanic("iget: no inodes")
            empty.dev, empty.inum = dev, inum
            empty.ref = 1
            empty.valid = False
            return empty

    def idup(self, ip: Inode) -> Inode:
        """Take another reference to ``ip``."""
        with self._lock:
            ip.ref += 1
        return ip

    def ilock(self, ip: Inode | None) -> None:
        """Lock the inode, reading it from disk if needed."""
        if ip is None or ip.ref < 1:
            raise KernelPanic("ilock")
        ip.lock.acquire()
        if not ip.valid:
            with self.cache.block(ip.dev, iblock(ip.inum, self.sb)) as bp:
                off = (ip.inum % IPB) * DINODE_SIZE
                d = DiskInode.from_bytes(bytes(bp.data[off:off + DINODE_SIZE]))
            ip.type, ip.major, ip.minor = d.type, d.major, d.minor
            ip.nlink, ip.size, ip.addrs = d.nlink, d.size, list(d.addrs)
            ip.valid = True
            if ip.type == 0:
                raise KernelPanic("ilock: no type")

    def iunlock(self, ip: Inode | None) -> None:
        if ip is None or not ip.lock.holding() or ip.ref < 1:
            raise KernelPanic("iunlock")
        ip.lock.release()

    def iput(self, ip: Inode) -> None:
        """Drop a reference; free the inode on disk if it was the last and unlinked."""
        ip.lock.acquire()
        try:
            if ip.valid and ip.nlink == 0:
                with self._lock:
                    r = ip.ref
                if r == 1:
                    self._itrunc(ip)
                    ip.type = 0
                    self.iupdate(ip)
                    ip.valid = False
        finally:
            ip.lock.release()
        with self._lock:
            ip.ref -= 1

    def iunlockput(self, ip: Inode) -> None:
        self.iunlock(ip)
        self.iput(ip)

    def stati(self, ip: Inode) -> Stat:
        return Stat(ip.dev, ip.inum, ip.type, ip.nlink, ip.size)

    # Inode content.

    def _bmap(self, ip: Inode, bn: int) -> int:
        if bn < NDIRECT:
            if ip.addrs[bn] == 0:
                ip.addrs[bn] = self._balloc(ip.dev)
            return ip.addrs[bn]
        bn -= NDIRECT
        if bn < NINDIRECT:
            if ip.addrs[NDIRECT] == 0:
                ip.addrs[NDIRECT] = self._balloc(ip.dev)
            with self.cache.block(ip.dev, ip.addrs[NDIRECT]) as bp:
                (addr,) = _ADDR.unpack_from(bp.data, 4 * bn)
                if addr == 0:
                    addr = self._balloc(ip.dev)
                    _ADDR.pack_into(bp.data, 4 * bn, addr)
                    self.log.log_write(bp)
            return addr
        raise KernelPanic("bmap: out of range")

    def _itrunc(self, ip: Inode) -> None:
        for i in range(NDIRECT):
            if ip.addrs[i]:
                self._bfree(ip.dev, ip.addrs[i])
                ip.addrs[i] = 0
        if ip.addrs[NDIRECT]:
            with self.cache.block(ip.dev, ip.addrs[NDIRECT]) as bp:
                entries = struct.unpack_from(f"<{NINDIRECT}I", bp.data)
            for addr in entries:
                if addr:
                    self._bfree(ip.dev, addr)
            self._bfree(ip.dev, ip.addrs[NDIRECT])
            ip.addrs[NDIRECT] = 0
        ip.size = 0
        self.iupdate(ip)

    def _device(self, major: int) -> Device | None:
        if not 0 <= major < NDEV:
            return None
        return self.devices.get(major)

    def readi(self, ip: Inode, off: int, n: int) -> bytes:
        """Read up to ``n`` bytes at ``off``; the caller holds the lock."""
        if ip.type == T_DEV:
            device = self._device(ip.major)
            if device is None or device.read is None:
                raise FsError(f"no reader for device {ip.major}")
            return device.read(ip, n)
        if off < 0 or n < 0 or off > ip.size:
            raise FsError(f"read at offset {off} past end of file")
        n = min(n, ip.size - off)
        out = bytearray()
        while len(out) < n:
            pos = off + len(out)
            with self.cache.block(ip.dev, self._bmap(ip, pos // BSIZE)) as bp:
                start = pos % BSIZE
                m = min(n - len(out), BSIZE - start)
                out += bp.data[start:start + m]
        return bytes(out)

    def writei(self, ip: Inode, data: bytes, off: int) -> int:
        """Write ``data`` at ``off``; the caller holds the lock and a transaction."""
        if ip.type == T_DEV:
            device = self._device(ip.major)
            if device is None or device.write is None:
                raise FsError(f"no writer for device {ip.major}")
            return device.write(ip, bytes(data))
        n = len(data)
        if off < 0 or off > ip.size:
            raise FsError(f"write at offset {off} past end of file")
        if off + n > MAXFILE * BSIZE:
            raise FsError("write beyond maximum file size")
        done = 0
        while done < n:
            pos = off + done
            with self.cache.block(ip.dev, self._bmap(ip, pos // BSIZE)) as bp:
                start = pos % BSIZE
                m = min(n - done, BSIZE - start)
                bp.data[start:start + m] = data[done:done + m]
                self.log.log_write(bp)
            done += m
        if n > 0 and off + n > ip.size:
            ip.size = off + n
            self.iupdate(ip)
        return n

    # Directories.

    def _dirent_at(self, dp: Inode, off: int, what: str) -> Dirent:
        raw = self.readi(dp, off, DIRENT_SIZE)
        if len(raw) != DIRENT_SIZE:
            raise KernelPanic(what)
        return Dirent.from_bytes(raw)

    def dirlookup(self, dp: Inode, name: str) -> tuple[Inode, int] | None:
        """Find ``name`` in directory ``dp``: its inode and the entry's offset."""
        if dp.type != T_DIR:
            raise KernelPanic("dirlookup not DIR")
        for off in range(0, dp.size, DIRENT_SIZE):
            de = self._dirent_at(dp, off, "dirlookup read")
            if de.inum and namecmp(name, de.name) == 0:
                return self.iget(dp.dev, de.inum), off
        return None

    def dirlink(self, dp: Inode, name: str, inum: int) -> None:
        """Add the entry ``(name, inum)`` to directory ``dp``."""
        found = self.dirlookup(dp, name)
        if found is not None:
            self.iput(found[0])
            raise FileExistsError(name)
        slots = range(0, dp.size, DIRENT_SIZE)
        off = next(
            (o for o in slots if self._dirent_at(dp, o, "dirlink read").inum == 0),
            -(-dp.size // DIRENT_SIZE) * DIRENT_SIZE,
        )
        try:
            written = self.writei(dp, Dirent(inum, name).pack(), off)
        except FsError as exc:
            raise KernelPanic("dirlink") from exc
        if written != DIRENT_SIZE:
            raise KernelPanic("dirlink")

    # Paths.

    def _namex(
        self, path: str, parent: bool, cwd: Inode | None
    ) -> tuple[Inode, str]:
        if path.startswith("/") or cwd is None:
            ip = self.iget(self.dev, ROOTINO)
        else:
            ip = self.idup(cwd)
        name = ""
        while (step := skipelem(path)) is not None:
            name, path = step
            self.ilock(ip)
            if ip.type != T_DIR:
                self.iunlockput(ip)
                raise NotADirectoryError(name)
            if parent and path == "":
                self.iunlock(ip)
                return ip, name
            found = self.dirlookup(ip, name)
            if found is None:
                self.iunlockput(ip)
                raise FileNotFoundError(name)
            self.iunlockput(ip)
            ip = found[0]
        if parent:
            self.iput(ip)
            raise FileNotFoundError(path or "/")
        return ip, name

    def namei(self, path: str, cwd: Inode | None = None) -> Inode:
        """The inode for ``path``; relative paths start at ``cwd`` (root if None)."""
        return self._namex(path, False, cwd)[0]

    def nameiparent(self, path: str, cwd: Inode | None = None) -> tuple[Inode, str]:
        """The parent directory of ``path`` and the final element's name."""
        return self._namex(path, True, cwd)