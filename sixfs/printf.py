"""Minimal formatted output understanding %d, %x, %p, %s, %c and %%."""

from __future__ import annotations

from typing import Any, TextIO

_DIGITS = "0123456789ABCDEF"


def _format_int(value: int, base: int, signed: bool) -> str:
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


def sprintf(fmt: str, *args: Any) -> str:
    """Format ``args`` into ``fmt``; unknown escapes are kept as written."""
    pending = iter(args)

    def next_arg() -> Any:
        try:
            return next(pending)
        except StopIteration:
            raise TypeError("not enough arguments for format string") from None

    out = []
    escaped = False
    for ch in fmt:
        if not escaped:
            if ch == "%":
                escaped = True
            else:
                out.append(ch)
            continue
        escaped = False
        if ch == "d":
            out.append(_format_int(next_arg(), 10, True))
        elif ch in "xp":
            out.append(_format_int(next_arg(), 16, False))
        elif ch == "s":
            s = next_arg()
            out.append("(null)" if s is None else str(s))
        elif ch == "c":
            c = next_arg()
            out.append(c[:1] if isinstance(c, str) else chr(c & 0xFF))
        elif ch == "%":
            out.append("%")
        else:
            out.append("%" + ch)
    return "".join(out)


def fprintf(stream: TextIO, fmt: str, *args: Any) -> None:
    """Write the formatted text to ``stream``."""
    stream.write(sprintf(fmt, *args))