import struct

from ctfdiff.cli import main


def _blob():
    body = struct.pack("=III", 1, (1 << 26) | (1 << 25), 4)
    body += struct.pack("=I", (1 << 24) | 32) + b"\0int\0"
    return struct.pack("=HBB8I", 0xCFF1, 3, 0, 0, 0, 0, 0, 0, 0, 16, 5) + body


def _files(tmp_path):
    a = tmp_path / "a.ctf"
    b = tmp_path / "b.ctf"
    a.write_bytes(_blob())
    b.write_bytes(_blob())
    return str(a), str(b)


def test_two_files_succeed(tmp_path):
    a, b = _files(tmp_path)
    assert main([a, b]) == 0
    assert main(["-f-ignore-const", a, b]) == 0


def test_too_few_arguments(tmp_path, capsys):
    a, _ = _files(tmp_path)
    assert main([a]) == 1
    assert "usage: ctfdiff" in capsys.readouterr().out


def test_too_many_arguments(tmp_path, capsys):
    a, b = _files(tmp_path)
    assert main([a, b, a]) == 0
    assert "usage: ctfdiff" in capsys.readouterr().out


def test_missing_file(tmp_path, capsys):
    a, _ = _files(tmp_path)
    assert main([a, str(tmp_path / "nope")]) == 1
    assert "Cannot parse file" in capsys.readouterr().out


def test_invalid_ctf(tmp_path, capsys):
    a, _ = _files(tmp_path)
    bad = tmp_path / "bad"
    bad.write_bytes(b"\x00\x00\x00\x00garbage")
    assert main([a, str(bad)]) == 1
    assert "does not contain a valid ctf data" in capsys.readouterr().out