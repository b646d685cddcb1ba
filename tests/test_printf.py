import io

import pytest

from sixfs.printf import fprintf, sprintf


def test_decimal_negative():
    assert sprintf("%d", -42) == "-42"


def test_decimal_most_negative():
    assert sprintf("%d", -2147483648) == "-2147483648"


def test_hex_is_uppercase():
    assert sprintf("%x", 255) == "FF"


def test_hex_of_negative_is_unsigned():
    assert sprintf("%p", -1) == "FFFFFFFF"


def test_null_string():
    assert sprintf("[%s]", None) == "[(null)]"


def test_char():
    assert sprintf("%c%c", ord("h"), "i") == "hi"


def test_percent_and_unknown():
    assert sprintf("100%% %q") == "100% %q"


def test_trailing_percent_dropped():
    assert sprintf("abc%") == "abc"


def test_mixed():
    assert sprintf("%s %d %s\n", "ls", 3, "file") == "ls 3 file\n"


@pytest.mark.parametrize("n", [0, 1, 9, 10, 12345, -7, 2**31 - 1, -(2**31)])
def test_decimal_round_trip(n):
    assert int(sprintf("%d", n)) == n


@pytest.mark.parametrize("n", [0, 15, 16, 4096, -1, 2**32 - 1])
def test_hex_round_trip(n):
    assert int(sprintf("%x", n), 16) == n & 0xFFFFFFFF


def test_fprintf_writes_stream():
    out = io.StringIO()
    fprintf(out, "%s=%d\n", "x", 5)
    assert out.getvalue() == "x=5\n"


def test_missing_argument():
    with pytest.raises(TypeError):
        sprintf("%d %d", 1)