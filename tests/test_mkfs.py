import io

import pytest

from sixfs.disk import MemDisk
from sixfs.fs import T_DIR, T_FILE, FileSystem
from sixfs.layout import (
    BSIZE,
    DIRENT_SIZE,
    MAXFILE,
    NDIRECT,
    ROOTINO,
    Dirent,
    Superblock,
)
from sixfs.mkfs import NINODES, ImageBuilder, build_image, main


def read_file(fs, path):
    ip = fs.namei(path)
    fs.ilock(ip)
    try:
        return fs.readi(ip, 0, ip.size)
    finally:
        fs.iunlock(ip)


def test_image_size_and_superblock():
    builder = ImageBuilder()
    image = builder.finish()
    assert len(image) == builder.fssize * BSIZE
    sb = Superblock.from_bytes(image[BSIZE:])
    assert sb.size == builder.fssize
    assert sb.logstart == 2
    assert sb.inodestart == 2 + builder.nlog
    assert sb.bmapstart == sb.inodestart + builder.ninodeblocks
    assert sb.ninodes == NINODES
    assert sb.nblocks == builder.fssize - builder.nmeta


def test_files_readable_through_file_system():
    image = build_image({"README": b"hello world", "_cat": b"meow"})
    fs = FileSystem(MemDisk(image))
    assert read_file(fs, "/README") == b"hello world"
    assert read_file(fs, "/cat") == b"meow"
    with pytest.raises(FileNotFoundError):
        fs.namei("/_cat")


def test_root_directory_entries():
    fs = FileSystem(MemDisk(build_image([])))
    root = fs.namei("/")
    fs.ilock(root)
    try:
        assert root.type == T_DIR
        assert root.size % BSIZE == 0
        dot = Dirent.from_bytes(fs.readi(root, 0, DIRENT_SIZE))
        dotdot = Dirent.from_bytes(fs.readi(root, DIRENT_SIZE, DIRENT_SIZE))
    finally:
        fs.iunlock(root)
    assert dot == Dirent(ROOTINO, ".")
    assert dotdot == Dirent(ROOTINO, "..")


def test_inodes_allocated_in_order():
    builder = ImageBuilder()
    first = builder.ialloc(T_FILE)
    assert first == ROOTINO + 1
    assert builder.ialloc(T_FILE) == first + 1


def test_indirect_blocks_round_trip():
    data = bytes(i % 251 for i in range((NDIRECT + 3) * BSIZE + 7))
    fs = FileSystem(MemDisk(build_image({"big": data})))
    assert read_file(fs, "/big") == data


def test_file_too_large():
    builder = ImageBuilder()
    with pytest.raises(ValueError):
        builder.add_file("huge", bytes(MAXFILE * BSIZE + 1))


def test_name_with_slash_rejected():
    with pytest.raises(ValueError):
        build_image({"a/b": b""})


def test_bitmap_marks_used_blocks():
    builder = ImageBuilder()
    builder.add_file("x", b"1")
    used = builder.freeblock
    assert used > builder.nmeta
    image = builder.finish()
    bmap = image[builder.sb.bmapstart * BSIZE:]
    last_used = used - 1
    assert (bmap[last_used // 8] >> (last_used % 8)) & 1 == 1
    assert (bmap[used // 8] >> (used % 8)) & 1 == 0
    assert bmap[0] == 0xFF


def test_allocation_after_mkfs_uses_free_block():
    builder = ImageBuilder()
    used = builder.freeblock
    fs = FileSystem(MemDisk(builder.finish()))
    with fs.log.transaction():
        ip = fs.ialloc(T_FILE)
        fs.ilock(ip)
        fs.writei(ip, b"z", 0)
        addr = ip.addrs[0]
        fs.iunlock(ip)
    assert addr == used


def test_finish_reports_bitmap():
    out = io.StringIO()
    builder = ImageBuilder(out=out)
    builder.finish()
    assert "balloc: first" in out.getvalue()


def test_main_writes_image(tmp_path, capsys):
    src = tmp_path / "_hello"
    src.write_bytes(b"hi")
    img = tmp_path / "fs.img"
    assert main([str(img), str(src)]) == 0
    fs = FileSystem(MemDisk(img.read_bytes()))
    assert read_file(fs, "/hello") == b"hi"
    assert "nmeta" in capsys.readouterr().out


def test_main_usage_and_missing_file(tmp_path, capsys):
    assert main([]) == 1
    assert "Usage" in capsys.readouterr().err
    assert main([str(tmp_path / "fs.img"), str(tmp_path / "missing")]) == 1