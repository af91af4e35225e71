import pytest

from ctfdiff.utility import Buffer, CtfFlag


def test_flag_combination_contains_member():
    flags = CtfFlag(0) | CtfFlag.F_IGNORE_CONST
    assert CtfFlag.F_IGNORE_CONST in flags
    assert CtfFlag.F_IGNORE_CONST not in CtfFlag(0)


def test_buffer_size_and_len_match_data():
    buf = Buffer(b"abcdef")
    assert buf.size == len(b"abcdef")
    assert len(buf) == buf.size


def test_buffer_entries_default_and_explicit():
    assert Buffer(b"xy").entries == 0
    assert Buffer(b"xyzw", 2).entries == 2


def test_buffer_slice_returns_bytes_in_range():
    buf = Buffer(b"abcdef")
    assert buf.slice(1, 3) == b"bc"
    assert buf.slice(0, buf.size) == b"abcdef"
    assert buf.slice(4, 4) == b""


@pytest.mark.parametrize("start,end", [(-1, 2), (2, 1), (0, 7), (7, 8)])
def test_buffer_slice_out_of_range_raises(start, end):
    with pytest.raises(IndexError):
        Buffer(b"abcdef").slice(start, end)


def test_empty_buffer():
    buf = Buffer()
    assert buf.size == 0
    assert buf.slice(0, 0) == b""