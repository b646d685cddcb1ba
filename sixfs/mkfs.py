"""Build a file-system image holding a root directory and some files."""

from __future__ import annotations

import os
import struct
import sys
from collections.abc import Iterable, Mapping, Sequence
from typing import TextIO

from .fs import T_DIR, T_FILE
from .layout import (
    BPB,
    BSIZE,
    IPB,
    MAXFILE,
    NDIRECT,
    NINDIRECT,
    ROOTINO,
    DINODE_SIZE,
    DiskInode,
    Dirent,
    Superblock,
    iblock,
)
from .log import LOGSIZE
from .printf import fprintf

FSSIZE = 1000
NINODES = 200

_INDIRECT = struct.Struct(f"<{NINDIRECT}I")


class ImageBuilder:
    """Lays out boot block, superblock, log, inodes, bitmap and data blocks."""

    def __init__(
        self,
        fssize: int = FSSIZE,
        nlog: int = LOGSIZE,
        ninodes: int = NINODES,
        *,
        out: TextIO | None = None,
    ) -> None:
        self.fssize = fssize
        self.out = out
        self.nbitmap = fssize // BPB + 1
        self.ninodeblocks = ninodes // IPB + 1
        self.nlog = nlog
        self.nmeta = 2 + nlog + self.ninodeblocks + self.nbitmap
        self.nblocks = fssize - self.nmeta
        if self.nblocks <= 0:
            raise ValueError("image too small for its metadata")
        self.sb = Superblock(
            size=fssize,
            nblocks=self.nblocks,
            ninodes=ninodes,
            nlog=nlog,
            logstart=2,
            inodestart=2 + nlog,
            bmapstart=2 + nlog + self.ninodeblocks,
        )
        self.freeinode = 1
        self.freeblock = self.nmeta
        self._finished = False
        self._image = bytearray(fssize * BSIZE)
        self._wsect(1, self.sb.pack())

        self.rootino = self.ialloc(T_DIR)
        if self.rootino != ROOTINO:
            raise RuntimeError("root inode was not the first allocated")
        self.iappend(self.rootino, Dirent(self.rootino, ".").pack())
        self.iappend(self.rootino, Dirent(self.rootino, "..").pack())

    def _wsect(self, sec: int, data: bytes) -> None:
        block = bytes(data).ljust(BSIZE, b"\0")[:BSIZE]
        self._image[sec * BSIZE:(sec + 1) * BSIZE] = block

    def _rsect(self, sec: int) -> bytearray:
        return bytearray(self._image[sec * BSIZE:(sec + 1) * BSIZE])

    def _winode(self, inum: int, din: DiskInode) -> None:
        bn = iblock(inum, self.sb)
        buf = self._rsect(bn)
        off = (inum % IPB) * DINODE_SIZE
        buf[off:off + DINODE_SIZE] = din.pack()
        self._wsect(bn, buf)

    def _rinode(self, inum: int) -> DiskInode:
        buf = self._rsect(iblock(inum, self.sb))
        off = (inum % IPB) * DINODE_SIZE
        return DiskInode.from_bytes(bytes(buf[off:off + DINODE_SIZE]))

    def _next_block(self) -> int:
        if self.freeblock >= self.fssize:
            raise ValueError("image full")
        b = self.freeblock
        self.freeblock += 1
        return b

    def ialloc(self, type_: int) -> int:
        """Allocate the next inode with one link and return its number."""
        if self.freeinode >= self.sb.ninodes:
            raise ValueError("out of inodes")
        inum = self.freeinode
        self.freeinode += 1
        self._winode(inum, DiskInode(type=type_, nlink=1, size=0))
        return inum

    def iappend(self, inum: int, data: bytes) -> None:
        """Append ``data`` to the content of inode ``inum``."""
        din = self._rinode(inum)
        off = din.size
        pos = 0
        while pos < len(data):
            fbn = off // BSIZE
            if fbn >= MAXFILE:
                raise ValueError("file too large")
            if fbn < NDIRECT:
                if din.addrs[fbn] == 0:
                    din.addrs[fbn] = self._next_block()
                x = din.addrs[fbn]
            else:
                if din.addrs[NDIRECT] == 0:
                    din.addrs[NDIRECT] = self._next_block()
                indirect = list(_INDIRECT.unpack(self._rsect(din.addrs[NDIRECT])))
                if indirect[fbn - NDIRECT] == 0:
                    indirect[fbn - NDIRECT] = self._next_block()
                    self._wsect(din.addrs[NDIRECT], _INDIRECT.pack(*indirect))
                x = indirect[fbn - NDIRECT]
            n1 = min(len(data) - pos, (fbn + 1) * BSIZE - off)
            buf = self._rsect(x)
            start = off - fbn * BSIZE
            buf[start:start + n1] = data[pos:pos + n1]
            self._wsect(x, buf)
            pos += n1
            off += n1
        din.size = off
        self._winode(inum, din)

    def add_file(self, name: str, data: bytes) -> int:
        """Add a file to the root directory; a leading '_' is dropped from its name."""
        if "/" in name:
            raise ValueError(f"file name may not contain '/': {name!r}")
        if name.startswith("_"):
            name = name[1:]
        inum = self.ialloc(T_FILE)
        self.iappend(self.rootino, Dirent(inum, name).pack())
        self.iappend(inum, data)
        return inum

    def _balloc(self, used: int) -> None:
        if self.out is not None:
            fprintf(self.out, "balloc: first %d blocks have been allocated\n", used)
        if used >= BPB:
            raise ValueError("too many blocks in use for one bitmap block")
        bitmap = bytearray(BSIZE)
        for i in range(used):
            bitmap[i // 8] |= 1 << (i % 8)
        if self.out is not None:
            fprintf(
                self.out,
                "balloc: write bitmap block at sector %d\n",
                self.sb.bmapstart,
            )
        self._wsect(self.sb.bmapstart, bitmap)

    def finish(self) -> bytes:
        """Round the root directory size up, write the bitmap, return the image."""
        if not self._finished:
            din = self._rinode(self.rootino)
            din.size = (din.size // BSIZE + 1) * BSIZE
            self._winode(self.rootino, din)
            self._balloc(self.freeblock)
            self._finished = True
        return bytes(self._image)


def build_image(
    files: Mapping[str, bytes] | Iterable[tuple[str, bytes]],
    fssize: int = FSSIZE,
    nlog: int = LOGSIZE,
    ninodes: int = NINODES,
) -> bytes:
    """An image whose root directory holds ``files`` (name to contents)."""
    builder = ImageBuilder(fssize, nlog, ninodes)
    items = files.items() if isinstance(files, Mapping) else files
    for name, data in items:
        builder.add_file(name, data)
    return builder.finish()


def main(argv: Sequence[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        fprintf(sys.stderr, "Usage: mkfs fs.img files...\n")
        return 1
    image_path, *paths = args
    builder = ImageBuilder(out=sys.stdout)
    fprintf(
        sys.stdout,
        "nmeta %d (boot, super, log blocks %d inode blocks %d, bitmap blocks %d)"
        " blocks %d total %d\n",
        builder.nmeta,
        builder.nlog,
        builder.ninodeblocks,
        builder.nbitmap,
        builder.nblocks,
        builder.fssize,
    )
    for path in paths:
        try:
            with open(path, "rb") as fh:
                data = fh.read()
        except OSError as exc:
            fprintf(sys.stderr, "%s: %s\n", path, exc.strerror or str(exc))
            return 1
        builder.add_file(os.path.basename(path), data)
    image = builder.finish()
    try:
        with open(image_path, "wb") as fh:
            fh.write(image)
    except OSError as exc:
        fprintf(sys.stderr, "%s: %s\n", image_path, exc.strerror or str(exc))
        return 1
    return 0