# sixfs

`sixfs` is a small Unix-style file system written in plain Python. It uses
only the standard library. It follows the classic layered design:

| Layer            | Module             | What it provides                                                       |
|------------------|--------------------|------------------------------------------------------------------------|
| On-disk format   | `sixfs.layout`     | `Superblock`, `DiskInode`, `Dirent`, `iblock`, `bblock`, `KernelPanic` |
| Disk             | `sixfs.disk`       | `MemDisk` keeps blocks in memory; `Buf` is one cached block            |
| Buffer cache     | `sixfs.bufcache`   | `BufferCache` reuses buffers in least-recently-used order              |
| Logging          | `sixfs.log`        | `Log` groups block writes into crash-safe transactions                 |
| Inodes and names | `sixfs.fs`         | `FileSystem`, `Inode`, `Stat`, `Device`, `skipelem`, `namecmp`         |
| Open files       | `sixfs.file`       | `FileTable`, `File`, `FileType`, `Pipe`, `pipealloc`                   |
| Console          | `sixfs.console`    | `Console` line editing, `KeyboardDecoder` for scancodes, `cprintf`     |
| Image builder    | `sixfs.mkfs`       | `ImageBuilder` and `build_image` create a fresh file-system image      |
| Utilities        | `sixfs.printf`, `sixfs.grep` | `sprintf`/`fprintf` formatting and a `^ . * $` matcher       |

When an internal invariant breaks, for example a block is freed twice or the
inodes run out, the code raises `sixfs.layout.KernelPanic`. Refused reads and
writes raise `sixfs.fs.FsError`. Failed path lookups raise `FileNotFoundError`
or `NotADirectoryError`.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Building an image

`sixfs-mkfs` writes a new image. Its first argument is the image path. Every
other argument is a file to copy into the root directory:

```
sixfs-mkfs fs.img README.md notes.txt
```

The image is 1000 blocks of 512 bytes, with a 30-block log and room for 200
inodes. The command prints the layout it chose.

- Each file is stored under its base name, with a leading `_` removed, so
  `_cat` is stored as `cat`.
- Names keep at most 14 bytes.

From Python, `ImageBuilder` lets you allocate inodes and append data step by
step. `build_image(files, fssize, nlog, ninodes)` does the whole job in one
call and returns the image bytes.

## Working with an image

```python
from sixfs.disk import MemDisk
from sixfs.fs import FileSystem
from sixfs.mkfs import build_image

image = build_image({"hello.txt": b"hi\n"})
fs = FileSystem(MemDisk(image))

with fs.log.transaction():
    ip = fs.namei("/hello.txt")
    fs.ilock(ip)
    data = fs.readi(ip, 0, ip.size)
    fs.iunlockput(ip)
```

The pieces do the following:

- **Recovery.** `FileSystem` reads the superblock and opens the `Log`. The log
  replays any committed transaction it finds on disk.
- **Transactions.** `Log.transaction()` wraps a group of block updates. They
  are written all together or not at all.
- **Lookup.** `FileSystem.namei(path, cwd)` and `nameiparent(path, cwd)`
  resolve paths. A relative path starts at `cwd`, or at the root if `cwd` is
  `None`.
- **File data.** `readi` and `writei` move bytes in and out of an inode.
- **Directories.** `dirlookup` finds an entry in a directory and `dirlink`
  adds one.
- **Devices.** Device inodes are served by `Device` handlers, passed to
  `FileSystem` keyed by major number.
- **Open files.** `FileTable` holds reference-counted open files, each with its
  own offset. `pipealloc(table)` returns a connected read end and write end.
- **Saving.** `MemDisk.image()` returns the current disk contents, ready to be
  written to a file.

## Console

`KeyboardDecoder.feed(scancode)` turns PC keyboard scancodes into character
codes. It tracks shift, control and caps lock.

`Console.interrupt(chars)` takes typed input and echoes it to the console's
output stream. It handles these keys:

- backspace
- Ctrl-U, which kills the line
- Ctrl-D, which marks end of input
- Ctrl-P, which calls an optional `procdump` callback

`Console.read(n)` returns at most one line.

## Pattern matching

`sixfs-grep` prints the lines that match a simple expression. The expression
may use `^`, `.`, `*` and `$`:

```
sixfs-grep '^def .*(' module.py
```

With no file named, it reads standard input. The matcher is also available as
`sixfs.grep.match(re, text)`.

## What it does not do

- `sixfs` has no processes, no system-call layer and no shell. Nothing here
  runs programs.
- There are no commands for looking inside an image, such as listing,
  printing or removing files.
- `FileSystem` has no helpers to create files, make directories or unlink
  names. To build those, use `ialloc`, `writei` and `dirlink` inside a
  transaction.
- Disks live only in memory. Save `MemDisk.image()` yourself to keep changes.