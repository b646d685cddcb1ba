"""Console: formatted output, keyboard scancode decoding and line-edited input."""

from __future__ import annotations

import io
import threading
from collections.abc import Callable, Iterable
from typing import Any, TextIO

from .layout import KernelPanic

# Modifier bits.
SHIFT = 1 << 0
CTL = 1 << 1
ALT = 1 << 2
CAPSLOCK = 1 << 3
NUMLOCK = 1 << 4
SCROLLLOCK = 1 << 5
E0ESC = 1 << 6

# Special keycodes.
KEY_HOME = 0xE0
KEY_END = 0xE1
KEY_UP = 0xE2
KEY_DN = 0xE3
KEY_LF = 0xE4
KEY_RT = 0xE5
KEY_PGUP = 0xE6
KEY_PGDN = 0xE7
KEY_INS = 0xE8
KEY_DEL = 0xE9

INPUT_BUF = 128
BACKSPACE = 0x100


def _ctrl(x: str) -> int:
    return (ord(x) - ord("@")) & 0xFF


_SHIFTCODE = {0x1D: CTL, 0x2A: SHIFT, 0x36: SHIFT, 0x38: ALT, 0x9D: CTL, 0xB8: ALT}
_TOGGLECODE = {0x3A: CAPSLOCK, 0x45: NUMLOCK, 0x46: SCROLLLOCK}

_EXTENDED = {
    0xC8: KEY_UP,
    0xD0: KEY_DN,
    0xC9: KEY_PGUP,
    0xD1: KEY_PGDN,
    0xCB: KEY_LF,
    0xCD: KEY_RT,
    0x97: KEY_HOME,
    0xCF: KEY_END,
    0xD2: KEY_INS,
    0xD3: KEY_DEL,
}


def _keymap(base: Iterable[int], enter: int, div: int) -> tuple[int, ...]:
    table = [0] * 256
    for code, ch in enumerate(base):
        table[code] = ch
    table[0x9C] = enter
    table[0xB5] = div
    for code, key in _EXTENDED.items():
        table[code] = key
    return tuple(table)


_NORMALMAP = _keymap(
    (
        "\0\x1b1234567890-=\b\tqwertyuiop[]\n\0asdfghjkl;'`\0\\zxcvbnm,./\0*\0 "
        + "\0" * 13
        + "789-456+1230."
    ).encode("latin-1"),
    ord("\n"),
    ord("/"),
)
_SHIFTMAP = _keymap(
    (
        "\0\x1b!@#$%^&*()_+\b\tQWERTYUIOP{}\n\0ASDFGHJKL:\"~\0|ZXCVBNM<>?\0*\0 "
        + "\0" * 13
        + "789-456+1230."
    ).encode("latin-1"),
    ord("\n"),
    ord("/"),
)
_CTLMAP = _keymap(
    [0] * 16
    + [_ctrl(x) for x in "QWERTYUI"]
    + [_ctrl("O"), _ctrl("P"), 0, 0, ord("\r"), 0, _ctrl("A"), _ctrl("S")]
    + [_ctrl(x) for x in "DFGHJKL"]
    + [0, 0, 0, 0, _ctrl("\\")]
    + [_ctrl(x) for x in "ZXCV"]
    + [_ctrl(x) for x in "BNM"]
    + [0, 0, _ctrl("/"), 0, 0],
    ord("\r"),
    _ctrl("/"),
)
_CHARCODE = (_NORMALMAP, _SHIFTMAP, _CTLMAP, _CTLMAP)

_DIGITS = "0123456789abcdef"


def _printint(value: int, base: int, signed: bool) -> str:
    x = value & 0xFFFFFFFF
    negative = signed and x >= 0x80000000
    if negative:
        x = 0x100000000 - x
    digits = []
    while True:
        digits.append(_DIGITS[x % base])
        x //= base
        if not x:
            break
    if negative:
        digits.append("-")
    return "".join(reversed(digits))


def cprintf(fmt: str | None, *args: Any) -> str:
    """Format for the console; understands %d, %x, %p, %s and %%."""
    if fmt is None:
        raise KernelPanic("null fmt")
    pending = iter(args)

    def next_arg() -> Any:
        try:
            return next(pending)
        except StopIteration:
            raise TypeError("not enough arguments for format string") from None

    out = []
    chars = iter(fmt)
    for ch in chars:
        if ch != "%":
            out.append(ch)
            continue
        ch = next(chars, None)
        if ch is None:
            break
        if ch == "d":
            out.append(_printint(next_arg(), 10, True))
        elif ch in "xp":
            out.append(_printint(next_arg(), 16, False))
        elif ch == "s":
            s = next_arg()
            out.append("(null)" if s is None else str(s))
        elif ch == "%":
            out.append("%")
        else:
            out.append("%" + ch)
    return "".join(out)


class KeyboardDecoder:
    """Turns PC keyboard scancodes into characters, tracking modifier keys."""

    def __init__(self) -> None:
        self.shift = 0

    def feed(self, scancode: int) -> int:
        """Decode one scancode; 0 when it yields no character."""
        data = scancode & 0xFF
        if data == 0xE0:
            self.shift |= E0ESC
            return 0
        if data & 0x80:
            if not self.shift & E0ESC:
                data &= 0x7F
            self.shift &= ~(_SHIFTCODE.get(data, 0) | E0ESC)
            return 0
        if self.shift & E0ESC:
            data |= 0x80
            self.shift &= ~E0ESC

        self.shift |= _SHIFTCODE.get(data, 0)
        self.shift ^= _TOGGLECODE.get(data, 0)
        c = _CHARCODE[self.shift & (CTL | SHIFT)][data]
        if self.shift & CAPSLOCK:
            if ord("a") <= c <= ord("z"):
                c += ord("A") - ord("a")
            elif ord("A") <= c <= ord("Z"):
                c += ord("a") - ord("A")
        return c


class Console:
    """Line-edited keyboard input with echo to an output stream."""

    def __init__(
        self,
        out: TextIO | None = None,
        procdump: Callable[[], None] | None = None,
    ) -> None:
        self.out = out if out is not None else io.StringIO()
        self.procdump = procdump
        self._cond = threading.Condition()
        self._buf = [0] * INPUT_BUF
        self.r = 0  # read index
        self.w = 0  # write index
        self.e = 0  # edit index

    def _putc(self, c: int) -> None:
        if c == BACKSPACE:
            self.out.write("\b \b")
        else:
            self.out.write(chr(c))

    def interrupt(self, chars: str | Iterable[int]) -> None:
        """Handle typed characters: editing keys, echo and line completion."""
        codes = chars.encode("latin-1") if isinstance(chars, str) else bytes(chars)
        doprocdump = False
        with self._cond:
            for c in codes:
                if c == _ctrl("P"):
                    doprocdump = True
                elif c == _ctrl("U"):
                    while (
                        self.e != self.w
                        and self._buf[(self.e - 1) % INPUT_BUF] != ord("\n")
                    ):
                        self.e -= 1
                        self._putc(BACKSPACE)
                elif c in (_ctrl("H"), 0x7F):
                    if self.e != self.w:
                        self.e -= 1
                        self._putc(BACKSPACE)
                elif c != 0 and self.e - self.r < INPUT_BUF:
                    if c == ord("\r"):
                        c = ord("\n")
                    self._buf[self.e % INPUT_BUF] = c
                    self.e += 1
                    self._putc(c)
                    if (
                        c == ord("\n")
                        or c == _ctrl("D")
                        or self.e == self.r + INPUT_BUF
                    ):
                        self.w = self.e
                        self._cond.notify_all()
        if doprocdump and self.procdump is not None:
            self.procdump()

    def read(self, n: int) -> bytes:
        """Read up to ``n`` bytes, stopping after a newline; b"" at end of input."""
        target = n
        out = bytearray()
        with self._cond:
            while n > 0:
                while self.r == self.w:
                    self._cond.wait()
                c = self._buf[self.r % INPUT_BUF]
                self.r += 1
                if c == _ctrl("D"):
                    if n < target:
                        # Keep ^D so the next read returns nothing.
                        self.r -= 1
                    break
                out.append(c)
                n -= 1
                if c == ord("\n"):
                    break
        return bytes(out)

    def write(self, data: bytes) -> int:
        """Echo ``data`` to the output and return its length."""
        data = bytes(data)
        with self._cond:
            for byte in data:
                self._putc(byte)
        return len(data)