import struct

import pytest

from ctfdiff.metadata import (
    STT_FUNC,
    STT_OBJECT,
    SHN_ABS,
    CtfMetaData,
    ElfSymbol,
    MetadataError,
)

SHT_PROGBITS = 1
SHT_SYMTAB = 2
SHT_STRTAB = 3


def _build_elf(sections, elf64=True, little=True):
    """sections: list of (name, sh_type, data, link, entsize); index 0 is null."""
    bo = "<" if little else ">"
    all_secs = list(sections)
    names = [s[0] for s in all_secs] + [".shstrtab"]
    shstr = b"\0"
    name_offs = []
    for name in names:
        name_offs.append(len(shstr))
        shstr += name.encode() + b"\0"
    all_secs.append((".shstrtab", SHT_STRTAB, shstr, 0, 0))

    ehsize = 64 if elf64 else 52
    body = b""
    offsets = []
    for sec in all_secs:
        offsets.append(ehsize + len(body))
        body += sec[2]
    shoff = ehsize + len(body)

    shfmt = bo + ("IIQQQQIIQQ" if elf64 else "IIIIIIIIII")
    shdrs = struct.pack(shfmt, *([0] * 10))
    for i, (_, typ, data, link, entsize) in enumerate(all_secs):
        shdrs += struct.pack(shfmt, name_offs[i], typ, 0, 0, offsets[i],
                             len(data), link, 0, 1, entsize)

    ident = (b"\x7fELF" + bytes([2 if elf64 else 1, 1 if little else 2, 1])
             + b"\0" * 9)
    hfmt = bo + ("HHIQQQIHHHHHH" if elf64 else "HHIIIIIHHHHHH")
    header = ident + struct.pack(hfmt, 1, 0, 1, 0, 0, shoff, 0, ehsize, 0, 0,
                                 struct.calcsize(shfmt), len(all_secs) + 1,
                                 len(all_secs))
    return header + body + shdrs


def _symtab(entries, elf64=True, little=True):
    """entries: list of (name, info, shndx, value). Returns (symbytes, strbytes, entsize)."""
    bo = "<" if little else ">"
    strtab = b"\0"
    symbytes = b""
    fmt = bo + ("IBBHQQ" if elf64 else "IIIBBH")
    # the null symbol
    rows = [(0, 0, 0, 0)] + [(None, info, shndx, value) for _, info, shndx, value in entries]
    names = [None] + [name for name, *_ in entries]
    for name, (_, info, shndx, value) in zip(names, rows):
        off = 0
        if name:
            off = len(strtab)
            strtab += name.encode() + b"\0"
        if elf64:
            symbytes += struct.pack(fmt, off, info, 0, shndx, value, 0)
        else:
            symbytes += struct.pack(fmt, off, value, 0, info, 0, shndx)
    return symbytes, strtab, struct.calcsize(fmt)


SYMBOLS = [
    ("counter", (1 << 4) | STT_OBJECT, 5, 0x100),
    ("do_work", (1 << 4) | STT_FUNC, 4, 0x200),
    ("_END_", STT_OBJECT, SHN_ABS, 0),
]
CTF_PAYLOAD = b"\xf1\xcf\x03\x00ctf-payload"


def _standard_elf(elf64=True, little=True, symtab_name=".symtab", link_ctf=True):
    symbytes, strbytes, entsize = _symtab(SYMBOLS, elf64, little)
    sections = [
        (".SUNW_ctf", SHT_PROGBITS, CTF_PAYLOAD, 2 if link_ctf else 0, 0),
        (symtab_name, SHT_SYMTAB, symbytes, 3, entsize),
        (".strtab", SHT_STRTAB, strbytes, 0, 0),
    ]
    return _build_elf(sections, elf64, little)


@pytest.mark.parametrize("elf64,little", [(True, True), (False, False), (False, True), (True, False)])
def test_elf_sections_and_symbols_round_trip(elf64, little):
    meta = CtfMetaData.from_bytes(_standard_elf(elf64, little), "obj.o")
    assert meta.ctfdata.data == CTF_PAYLOAD
    assert meta.symdata.entries == len(SYMBOLS) + 1
    syms = list(meta.symbols())
    assert len(syms) == len(SYMBOLS) + 1
    assert [meta.symbol_name(s) for s in syms] == [""] + [n for n, *_ in SYMBOLS]
    assert [s.st_shndx for s in syms[1:]] == [shndx for _, _, shndx, _ in SYMBOLS]
    assert [s.st_value for s in syms[1:]] == [value for *_, value in SYMBOLS]
    assert meta.byteorder == ("<" if little else ">")
    assert meta.elf64 is elf64


def test_symbol_types_from_info():
    meta = CtfMetaData.from_bytes(_standard_elf(), "obj.o")
    types = [s.type() for s in meta.symbols()][1:]
    assert types == [STT_OBJECT, STT_FUNC, STT_OBJECT]


def test_ctf_link_finds_symtab_with_other_name():
    meta = CtfMetaData.from_bytes(_standard_elf(symtab_name=".mysyms"), "obj.o")
    names = [meta.symbol_name(s) for s in meta.symbols()]
    assert "do_work" in names


def test_symtab_found_by_name_without_link():
    meta = CtfMetaData.from_bytes(_standard_elf(link_ctf=False), "obj.o")
    names = [meta.symbol_name(s) for s in meta.symbols()]
    assert names[1:] == [n for n, *_ in SYMBOLS]


def test_no_symtab_without_link_or_name():
    data = _standard_elf(symtab_name=".mysyms", link_ctf=False)
    meta = CtfMetaData.from_bytes(data, "obj.o")
    assert meta.symdata is None
    assert meta.strdata is None
    assert list(meta.symbols()) == []


def test_elf_without_ctf_section_falls_back_to_raw(capsys):
    data = _build_elf([(".text", SHT_PROGBITS, b"\x90\x90", 0, 0)])
    meta = CtfMetaData.from_bytes(data, "plain.o")
    assert "Cannot find .SUNW_ctf in file: plain.o" in capsys.readouterr().out
    assert meta.ctfdata.data == data
    assert meta.symdata is None


def test_raw_file_keeps_whole_content(capsys):
    meta = CtfMetaData.from_bytes(CTF_PAYLOAD, "raw.ctf")
    assert meta.ctfdata.data == CTF_PAYLOAD
    assert meta.filename == "raw.ctf"
    assert list(meta.symbols()) == []
    assert capsys.readouterr().out == ""


def test_empty_input_raises():
    with pytest.raises(MetadataError):
        CtfMetaData.from_bytes(b"", "empty")


def test_from_file_missing_raises(tmp_path):
    with pytest.raises(MetadataError):
        CtfMetaData.from_file(tmp_path / "missing.o")


def test_from_file_reads_elf(tmp_path):
    path = tmp_path / "obj.o"
    path.write_bytes(_standard_elf())
    meta = CtfMetaData.from_file(str(path))
    assert meta.filename == str(path)
    assert meta.ctfdata.data == CTF_PAYLOAD


def test_symbol_name_out_of_range_is_empty():
    meta = CtfMetaData.from_bytes(_standard_elf(), "obj.o")
    bogus = ElfSymbol(st_name=10_000, st_info=0, st_other=0, st_shndx=0,
                      st_value=0, st_size=0)
    assert meta.symbol_name(bogus) == ""


def test_symbol_name_without_strtab_is_empty():
    meta = CtfMetaData.from_bytes(CTF_PAYLOAD, "raw.ctf")
    sym = ElfSymbol(st_name=1, st_info=0, st_other=0, st_shndx=0,
                    st_value=0, st_size=0)
    assert meta.symbol_name(sym) == ""