import threading

import pytest

from sixfs.disk import MemDisk
from sixfs.file import FileTable, FileType, Pipe, pipealloc
from sixfs.fs import T_FILE, FileSystem, FsError
from sixfs.layout import KernelPanic
from sixfs.mkfs import build_image


@pytest.fixture
def fs():
    return FileSystem(MemDisk(build_image({"README": b"hello"})))


def open_inode(fs, table, path, readable=True, writable=False):
    f = table.alloc()
    f.type = FileType.INODE
    f.ip = fs.namei(path)
    f.readable = readable
    f.writable = writable
    return f


def test_pipe_round_trip():
    table = FileTable()
    r, w = pipealloc(table)
    assert table.write(w, b"abc") == 3
    assert table.read(r, 10) == b"abc"


def test_pipe_ends_are_one_way():
    table = FileTable()
    r, w = pipealloc(table)
    with pytest.raises(OSError):
        table.read(w, 1)
    with pytest.raises(OSError):
        table.write(r, b"x")


def test_pipe_eof_after_writer_closes():
    table = FileTable()
    r, w = pipealloc(table)
    table.write(w, b"xy")
    table.close(w)
    assert table.read(r, 10) == b"xy"
    assert table.read(r, 10) == b""


def test_pipe_write_without_reader_fails():
    table = FileTable()
    r, w = pipealloc(table)
    table.close(r)
    table.write(w, b"a" * 10)
    with pytest.raises(BrokenPipeError):
        table.write(w, b"b" * 1000)


def test_pipe_larger_than_buffer_with_thread():
    p = Pipe()
    payload = bytes(range(256)) * 4
    t = threading.Thread(target=p.write, args=(payload,))
    t.start()
    got = bytearray()
    while len(got) < len(payload):
        got += p.read(len(payload))
    t.join(5)
    assert bytes(got) == payload


def test_table_exhaustion():
    table = FileTable(nfile=2)
    table.alloc()
    table.alloc()
    with pytest.raises(OSError):
        table.alloc()


def test_pipealloc_failure_frees_entry():
    table = FileTable(nfile=1)
    with pytest.raises(OSError):
        pipealloc(table)
    f = table.alloc()
    assert f.ref == 1


def test_dup_and_close_counts():
    table = FileTable()
    f = table.alloc()
    assert table.dup(f).ref == 2
    table.close(f)
    assert f.ref == 1
    table.close(f)
    assert f.ref == 0
    with pytest.raises(KernelPanic):
        table.close(f)
    with pytest.raises(KernelPanic):
        table.dup(f)


def test_inode_read_advances_offset(fs):
    table = FileTable(fs)
    f = open_inode(fs, table, "/README")
    assert table.read(f, 100) == b"hello"
    assert table.read(f, 100) == b""
    assert f.off == 5


def test_inode_stat(fs):
    table = FileTable(fs)
    f = open_inode(fs, table, "/README")
    st = table.stat(f)
    assert st.size == 5
    assert st.type == T_FILE


def test_stat_of_pipe_fails():
    table = FileTable()
    r, _ = pipealloc(table)
    with pytest.raises(FsError):
        table.stat(r)


def test_read_past_end_fails(fs):
    table = FileTable(fs)
    f = open_inode(fs, table, "/README")
    f.off = 100
    with pytest.raises(FsError):
        table.read(f, 1)


def test_overwrite_part_of_file(fs):
    table = FileTable(fs)
    w = open_inode(fs, table, "/README", readable=False, writable=True)
    assert table.write(w, b"xy") == 2
    r = open_inode(fs, table, "/README")
    assert table.read(r, 100) == b"xyllo"


def test_large_write_is_chunked_and_persists(fs):
    table = FileTable(fs)
    data = bytes(range(256)) * 12
    w = open_inode(fs, table, "/README", readable=False, writable=True)
    assert table.write(w, data) == len(data)
    table.close(w)
    assert w.type is FileType.NONE
    r = open_inode(fs, table, "/README")
    assert table.read(r, 4000) == data

    reopened = FileSystem(MemDisk(fs.disk.image()))
    t2 = FileTable(reopened)
    f = open_inode(reopened, t2, "/README")
    assert t2.read(f, 4000) == data