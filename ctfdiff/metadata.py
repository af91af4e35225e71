"""Locate the CTF section, symbol table and string table of an input file."""

from __future__ import annotations

import struct
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

from .utility import Buffer

CTF_SECTION = ".SUNW_ctf"
SYMTAB_SECTION = ".symtab"

ELF_MAGIC = b"\x7fELF"
ELFCLASS32 = 1
ELFCLASS64 = 2
ELFDATA2LSB = 1
ELFDATA2MSB = 2

SHT_NOBITS = 8
SHN_UNDEF = 0
SHN_ABS = 0xFFF1
SHN_XINDEX = 0xFFFF

STT_NOTYPE = 0
STT_OBJECT = 1
STT_FUNC = 2

_NATIVE_ORDER = "<" if sys.byteorder == "little" else ">"

_EHDR_FORMATS = {True: "HHIQQQIHHHHHH", False: "HHIIIIIHHHHHH"}
_SHDR_FORMATS = {True: "IIQQQQIIQQ", False: "IIIIIIIIII"}
_SYM_FORMATS = {True: "IBBHQQ", False: "IIIBBH"}
_IDENT_SIZE = 16


class MetadataError(Exception):
    """Raised when an input file cannot be read at all."""


@dataclass(frozen=True)
class ElfSymbol:
    """One entry of an ELF symbol table."""

    st_name: int
    st_info: int
    st_other: int
    st_shndx: int
    st_value: int
    st_size: int

    def type(self) -> int:
        """The symbol type (STT_*) held in the low nibble of ``st_info``."""
        return self.st_info & 0xF


@dataclass(frozen=True)
class _Section:
    name_offset: int
    sh_type: int
    offset: int
    size: int
    link: int
    entsize: int


def _cstring(data: bytes, start: int) -> str | None:
    if not 0 <= start < len(data):
        return None
    end = data.find(b"\0", start)
    if end == -1:
        end = len(data)
    return data[start:end].decode("utf-8", errors="replace")


class _ElfImage:
    """Minimal reader for ELF section headers."""

    def __init__(self, data: bytes, order: str, is64: bool,
                 sections: list[_Section], shstrndx: int) -> None:
        self.data = data
        self.order = order
        self.is64 = is64
        self.sections = sections
        self.shstrndx = shstrndx

    @classmethod
    def parse(cls, data: bytes) -> _ElfImage | None:
        if len(data) < _IDENT_SIZE or data[:4] != ELF_MAGIC:
            return None
        elf_class, encoding = data[4], data[5]
        if elf_class not in (ELFCLASS32, ELFCLASS64):
            return None
        if encoding not in (ELFDATA2LSB, ELFDATA2MSB):
            return None
        is64 = elf_class == ELFCLASS64
        order = "<" if encoding == ELFDATA2LSB else ">"

        ehdr_fmt = order + _EHDR_FORMATS[is64]
        try:
            fields = struct.unpack_from(ehdr_fmt, data, _IDENT_SIZE)
        except struct.error:
            return None
        shoff, shnum, shstrndx = fields[5], fields[11], fields[12]
        if shoff == 0:
            return cls(data, order, is64, [], 0)

        shdr_fmt = order + _SHDR_FORMATS[is64]
        shdr_size = struct.calcsize(shdr_fmt)

        def read_shdr(index: int) -> _Section | None:
            try:
                raw = struct.unpack_from(shdr_fmt, data, shoff + index * shdr_size)
            except struct.error:
                return None
            return _Section(name_offset=raw[0], sh_type=raw[1], offset=raw[4],
                            size=raw[5], link=raw[6], entsize=raw[9])

        first = read_shdr(0)
        if first is None:
            return None
        if shnum == 0:
            shnum = first.size
        if shstrndx == SHN_XINDEX:
            shstrndx = first.link

        sections = []
        for index in range(shnum):
            section = read_shdr(index)
            if section is None:
                return None
            sections.append(section)
        return cls(data, order, is64, sections, shstrndx)

    def section(self, index: int) -> _Section | None:
        if 0 < index < len(self.sections):
            return self.sections[index]
        return None

    def section_data(self, section: _Section) -> bytes | None:
        if section.sh_type == SHT_NOBITS:
            return b""
        end = section.offset + section.size
        if end > len(self.data):
            return None
        return self.data[section.offset:end]

    def section_name(self, section: _Section) -> str | None:
        strtab = self.section(self.shstrndx)
        if strtab is None:
            return None
        names = self.section_data(strtab)
        if names is None:
            return None
        return _cstring(names, section.name_offset)

    def find_section(self, name: str) -> _Section | None:
        for section in self.sections[1:]:
            if self.section_name(section) == name:
                return section
        return None


@dataclass(frozen=True)
class CtfMetaData:
    """The raw CTF bytes of a file together with its symbol and string tables."""

    filename: str
    ctfdata: Buffer
    symdata: Buffer | None = None
    strdata: Buffer | None = None
    byteorder: str = _NATIVE_ORDER
    elf64: bool = field(default=True)

    @classmethod
    def from_file(cls, filename) -> CtfMetaData:
        """Read ``filename`` as an ELF object, or as raw CTF data otherwise."""
        try:
            data = Path(filename).read_bytes()
        except OSError as exc:
            raise MetadataError(f"Cannot open {filename}: {exc.strerror}") from exc
        return cls.from_bytes(data, str(filename))

    @classmethod
    def from_bytes(cls, data, filename) -> CtfMetaData:
        """Build metadata from the contents of a file named ``filename``."""
        data = bytes(data)
        found = cls._from_elf(data, filename)
        if found is not None:
            return found
        if not data:
            raise MetadataError(f"Cannot map {filename}: file is empty")
        return cls(filename=filename, ctfdata=Buffer(data))

    @classmethod
    def _from_elf(cls, data: bytes, filename: str) -> CtfMetaData | None:
        elf = _ElfImage.parse(data)
        if elf is None:
            return None

        ctf_section = elf.find_section(CTF_SECTION)
        ctf_bytes = elf.section_data(ctf_section) if ctf_section else None
        if ctf_section is None or ctf_bytes is None:
            print(f"Cannot find {CTF_SECTION} in file: {filename}")
            return None

        if ctf_section.link != 0:
            sym_section = elf.section(ctf_section.link)
        else:
            sym_section = elf.find_section(SYMTAB_SECTION)

        symdata = strdata = None
        if sym_section is not None:
            sym_bytes = elf.section_data(sym_section)
            str_section = elf.section(sym_section.link)
            str_bytes = elf.section_data(str_section) if str_section else None
            if sym_bytes is not None and str_bytes is not None:
                entries = (sym_section.size // sym_section.entsize
                           if sym_section.entsize else 0)
                symdata = Buffer(sym_bytes, entries)
                strdata = Buffer(str_bytes)

        return cls(filename=filename, ctfdata=Buffer(ctf_bytes), symdata=symdata,
                   strdata=strdata, byteorder=elf.order, elf64=elf.is64)

    def symbols(self) -> Iterator[ElfSymbol]:
        """Yield the symbol table entries in index order."""
        if self.symdata is None:
            return
        fmt = self.byteorder + _SYM_FORMATS[self.elf64]
        entry_size = struct.calcsize(fmt)
        for index in range(self.symdata.entries):
            try:
                raw = struct.unpack_from(fmt, self.symdata.data, index * entry_size)
            except struct.error:
                return
            if self.elf64:
                name, info, other, shndx, value, size = raw
            else:
                name, value, size, info, other, shndx = raw
            yield ElfSymbol(st_name=name, st_info=info, st_other=other,
                            st_shndx=shndx, st_value=value, st_size=size)

    def symbol_name(self, symbol: ElfSymbol) -> str:
        """The name of ``symbol`` from the string table, or "" if unavailable."""
        if self.strdata is None:
            return ""
        return _cstring(self.strdata.data, symbol.st_name) or ""