"""Parse a CTF container and compare the symbols of two containers."""

from __future__ import annotations

import struct
import sys
import zlib
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, TextIO, TypeVar

from .ctftype import (
    CTF_F_COMPRESS,
    CTF_K_ARRAY,
    CTF_K_CONST,
    CTF_K_ENUM,
    CTF_K_FLOAT,
    CTF_K_FORWARD,
    CTF_K_FUNCTION,
    CTF_K_INTEGER,
    CTF_K_POINTER,
    CTF_K_RESTRICT,
    CTF_K_STRUCT,
    CTF_K_TYPEDEF,
    CTF_K_UNION,
    CTF_K_UNKNOWN,
    CTF_K_VOLATILE,
    CTF_MAGIC,
    CTF_V2_PARENT_SHIFT,
    CTF_V3_PARENT_SHIFT,
    CTF_VERSION_2,
    CTF_VERSION_3,
    CtfType,
    CtfTypeArray,
    CtfTypeConst,
    CtfTypeEnum,
    CtfTypeFloat,
    CtfTypeForward,
    CtfTypeFunc,
    CtfTypeInteger,
    CtfTypePtr,
    CtfTypeRestrict,
    CtfTypeStruct,
    CtfTypeTypeDef,
    CtfTypeUnion,
    CtfTypeUnknown,
    CtfTypeVaArg,
    CtfTypeVolatile,
    ignored_types,
    parser_for_version,
)
from .metadata import (
    SHN_ABS,
    SHN_UNDEF,
    STT_FUNC,
    STT_OBJECT,
    CtfMetaData,
    ElfSymbol,
)

_NATIVE = "<" if sys.byteorder == "little" else ">"
_PREAMBLE = "=HBB"
_HEADER = "=HBB8I"
PREAMBLE_SIZE = struct.calcsize(_PREAMBLE)
HEADER_SIZE = struct.calcsize(_HEADER)

CTF_STRTAB_0 = 0

T = TypeVar("T")


class CtfError(Exception):
    """Raised when CTF data cannot be used."""


@dataclass(frozen=True)
class CtfHeader:
    """The fixed header at the start of a CTF container."""

    magic: int
    version: int
    flags: int
    parlabel: int
    parname: int
    lbloff: int
    objtoff: int
    funcoff: int
    typeoff: int
    stroff: int
    strlen: int

    @classmethod
    def parse(cls, data) -> CtfHeader:
        """Decode and validate the header at the start of ``data``."""
        return cls._parse(data, "")

    @classmethod
    def _parse(cls, data, filename: str) -> CtfHeader:
        data = bytes(data)
        if len(data) < PREAMBLE_SIZE:
            raise CtfError(f"{filename} does not contain a CTF preamble")
        magic, version, _ = struct.unpack_from(_PREAMBLE, data)
        if magic != CTF_MAGIC:
            raise CtfError(f"{filename} does not contain a valid ctf data")
        if version not in (CTF_VERSION_2, CTF_VERSION_3):
            raise CtfError(f"CTF version {version} is not available")
        if len(data) < HEADER_SIZE:
            raise CtfError(f"File {filename} contains invalid CTF header")
        return cls(*struct.unpack_from(_HEADER, data))

    @property
    def id_width(self) -> int:
        return 2 if self.version == CTF_VERSION_2 else 4


@dataclass
class ObjEntry(Generic[T]):
    """A named variable or function with its type (ids or resolved types)."""

    name: str
    type: T
    id: int


@dataclass
class CtfDiff:
    """Variables and functions found on one side of a comparison only."""

    variables: list = field(default_factory=list)
    functions: list = field(default_factory=list)


def _ignore_symbol(sym: ElfSymbol, name: str) -> bool:
    if sym.st_shndx == SHN_UNDEF or sym.st_name == 0:
        return True
    if name in ("_START_", "_END_"):
        return True
    return sym.type() == STT_OBJECT and sym.st_shndx == SHN_ABS and sym.st_value == 0


def _diff_entries(lhs: list, rhs: list, compare: Callable[[Any, Any], bool],
                  resolve: Callable[[Any, int], Any], out: TextIO):
    l_diff: list = []
    r_diff: list = []

    def report(entry, side, sign, target):
        resolved = resolve(entry.type, side)
        if resolved is not None:
            print(f"{sign} [{entry.id}] {entry.name}", file=out)
            target.append(ObjEntry(entry.name, resolved, entry.id))

    li = ri = 0
    while li < len(lhs) and ri < len(rhs):
        left, right = lhs[li], rhs[ri]
        if left.name < right.name:
            report(left, 0, "<", l_diff)
            li += 1
        elif left.name > right.name:
            report(right, 1, ">", r_diff)
            ri += 1
        else:
            l_res = resolve(left.type, 0)
            r_res = resolve(right.type, 1)
            differs = True
            if l_res is not None and r_res is not None:
                differs = not compare(l_res, r_res)
            if differs:
                if l_res is not None:
                    print(f"< [{left.id}] {left.name}", file=out)
                    l_diff.append(ObjEntry(left.name, l_res, left.id))
                if r_res is not None:
                    print(f"> [{right.id}] {right.name}", file=out)
                    r_diff.append(ObjEntry(right.name, r_res, right.id))
            li += 1
            ri += 1
    for left in lhs[li:]:
        report(left, 0, "<", l_diff)
    # Entries left over on the right side are not reported.
    return l_diff, r_diff


@dataclass(eq=False)
class CtfData:
    """The types, variables and functions of one CTF container."""

    filename: str = ""
    header: CtfHeader | None = None
    data: bytes = b""
    types: dict = field(default_factory=dict)
    static_variables: list = field(default_factory=list)
    functions: list = field(default_factory=list)
    symbols: list = field(default_factory=list, repr=False)
    metadata: CtfMetaData | None = field(default=None, repr=False)

    @classmethod
    def from_metadata(cls, metadata: CtfMetaData) -> CtfData:
        """Parse the CTF container held by ``metadata``."""
        raw = metadata.ctfdata.data
        header = CtfHeader._parse(raw, metadata.filename)
        body = raw[HEADER_SIZE:]
        if header.flags & CTF_F_COMPRESS:
            body = cls._decompress(body, header.stroff + header.strlen)
        info = cls(filename=metadata.filename, header=header, data=body,
                   symbols=list(metadata.symbols()), metadata=metadata)
        info._parse_types()
        info._parse_data()
        info._parse_funcs()
        info.functions.sort(key=lambda entry: entry.name)
        info.static_variables.sort(key=lambda entry: entry.name)
        return info

    @staticmethod
    def _decompress(body: bytes, expected: int) -> bytes:
        try:
            inflater = zlib.decompressobj()
            out = inflater.decompress(body, expected)
            if not inflater.eof:
                raise CtfError("failed to decompress CTF data: incomplete stream")
        except zlib.error as exc:
            raise CtfError(f"failed to decompress CTF data: {exc}") from exc
        if len(out) != expected:
            raise CtfError("CTF data is corrupted")
        return out

    def _read_id(self, pos: int) -> int:
        width = self.header.id_width
        return int.from_bytes(self.data[pos:pos + width].ljust(width, b"\0"),
                              sys.byteorder)

    def _read_u32(self, pos: int) -> int:
        return int.from_bytes(self.data[pos:pos + 4].ljust(4, b"\0"), sys.byteorder)

    def _next_symbol(self, idx: int, sym_type: int) -> tuple[int, str]:
        for i in range(idx + 1, len(self.symbols)):
            sym = self.symbols[i]
            name = self.metadata.symbol_name(sym) if self.metadata else ""
            if sym.type() != sym_type or _ignore_symbol(sym, name):
                continue
            return i, name
        return idx, ""

    def get_str_from_ref(self, ref) -> str:
        """Resolve a name reference against the container's string table."""
        offset = ref & 0x7FFFFFFF
        if ref >> 31 != CTF_STRTAB_0:
            return "<< ??? - name in external strtab >>"
        if offset >= self.header.strlen:
            return "<< ??? - name exceeds strlab len >>"
        start = self.header.stroff + offset
        if start >= len(self.data):
            return "<< ??? - file truncated >>"
        end = self.data.find(b"\0", start)
        text = self.data[start:end if end != -1 else len(self.data)]
        if text.startswith(b"\n"):
            return "(anon)"
        return text.decode("utf-8", errors="replace")

    def _parse_types(self) -> None:
        header = self.header
        size = len(self.data)
        if header.typeoff & 3:
            print("cth_typeoff is not aligned porperly")
            return
        if header.typeoff >= size:
            print("file is truncated or cth_typeoff is corrupt")
            return
        if header.stroff >= size:
            print("file is truncated or cth_stroff is corrupt")
            return
        if header.typeoff > header.stroff:
            print("file is corrupt -- cth_typeoff > cth_stroff")
            return

        width = header.id_width
        type_id = 1
        if header.parname:
            shift = (CTF_V2_PARENT_SHIFT if header.version == CTF_VERSION_2
                     else CTF_V3_PARENT_SHIFT)
            type_id += 1 << shift
        parser_cls = parser_for_version(header.version)
        types = self.types
        types[0] = CtfTypeVaArg(id=0, name="va_arg", types=types)

        pos, end = header.typeoff, header.stroff
        while pos < end:
            try:
                sym = parser_cls.from_bytes(self.data, pos)
            except ValueError:
                print("file is truncated or type data is corrupt")
                return
            inc = sym.increment()
            vpos = pos + inc
            vlen = 0
            name = self.get_str_from_ref(sym.name())
            common = {"id": type_id, "name": name, "parser": sym, "types": types}
            kind = sym.kind()
            try:
                if kind in (CTF_K_INTEGER, CTF_K_FLOAT):
                    cls_ = CtfTypeInteger if kind == CTF_K_INTEGER else CtfTypeFloat
                    types[type_id] = cls_(data=self._read_u32(vpos), **common)
                    vlen = 4
                elif kind == CTF_K_ARRAY:
                    types[type_id] = CtfTypeArray(entry=sym.do_array(self.data, vpos),
                                                  **common)
                    vlen = 8 if header.version == CTF_VERSION_2 else 12
                elif kind == CTF_K_FUNCTION:
                    count = sym.vlen()
                    args = [self._read_id(vpos + i * width) for i in range(count)]
                    types[type_id] = CtfTypeFunc(ret_id=sym.type(), args=args, **common)
                    vlen = (width * count + 3) & ~3
                elif kind in (CTF_K_STRUCT, CTF_K_UNION):
                    length, members = sym.do_struct(self.data, vpos,
                                                    self.get_str_from_ref)
                    cls_ = CtfTypeStruct if kind == CTF_K_STRUCT else CtfTypeUnion
                    types[type_id] = cls_(size=sym.size(), members=members, **common)
                    vlen = length
                elif kind == CTF_K_ENUM:
                    count = sym.vlen()
                    members = []
                    for i in range(count):
                        ref, value = struct.unpack_from("=Ii", self.data, vpos + i * 8)
                        members.append((self.get_str_from_ref(ref), value))
                    types[type_id] = CtfTypeEnum(members=members, **common)
                    vlen = 8 * count
                elif kind == CTF_K_FORWARD:
                    types[type_id] = CtfTypeForward(**common)
                elif kind in _QUALIFIERS:
                    types[type_id] = _QUALIFIERS[kind](ref_id=sym.type(), **common)
                elif kind == CTF_K_UNKNOWN:
                    common["name"] = ""
                    types[type_id] = CtfTypeUnknown(**common)
                else:
                    print(f"Unexpected kind: {kind}")
                    return
            except (ValueError, struct.error):
                print("file is truncated or type data is corrupt")
                return
            pos += inc + vlen
            type_id += 1

    def _parse_data(self) -> None:
        header = self.header
        width = header.id_width
        count = max(0, (header.funcoff - header.objtoff) // width)
        symidx = -1
        for index in range(count):
            name = ""
            if self.symbols:
                symidx, name = self._next_symbol(symidx, STT_OBJECT)
            type_id = self._read_id(header.objtoff + index * width)
            if name:
                self.static_variables.append(ObjEntry(name, type_id, index))

    def _parse_funcs(self) -> None:
        header = self.header
        width = header.id_width
        parser_cls = parser_for_version(header.version)
        pos, end = header.funcoff, header.typeoff
        symidx = -1
        index = 0
        while pos < end:
            info = self._read_id(pos)
            pos += width
            decoded = parser_cls(name_ref=0, info=info, size_or_type=0)
            kind, count = decoded.kind(), decoded.vlen()
            name = ""
            if self.metadata is not None and self.metadata.strdata is not None:
                symidx, name = self._next_symbol(symidx, STT_FUNC)
            current = index
            index += 1
            if kind == CTF_K_UNKNOWN and count == 0:
                continue
            if kind != CTF_K_FUNCTION:
                print(f"incorrect type for function: {name}")
            if pos + count * width > end:
                print(f"function out of bound: {name}")
            if name:
                args = [self._read_id(pos + i * width) for i in range(count + 1)]
                pos += (count + 1) * width
                self.functions.append(ObjEntry(name, args, current))
            else:
                pos += count * width + 1

    def compare_and_get_diff(self, rhs, ignored=None, out=None) -> tuple[CtfDiff, CtfDiff]:
        """Report variables and functions that differ between ``self`` and ``rhs``."""
        if ignored is None:
            ignored = ignored_types(0)
        if out is None:
            out = sys.stdout
        cache: dict = {}
        tables = (self.types, rhs.types)

        def resolve_many(ids, side):
            table = tables[side]
            if any(i not in table for i in ids):
                return None
            return [table[i] for i in ids]

        def compare_many(left, right):
            return len(left) == len(right) and all(
                a.compare(b, cache, ignored) for a, b in zip(left, right))

        l_funcs, r_funcs = _diff_entries(self.functions, rhs.functions,
                                         compare_many, resolve_many, out)
        l_vars, r_vars = _diff_entries(
            self.static_variables, rhs.static_variables,
            lambda a, b: a.compare(b, cache, ignored),
            lambda i, side: tables[side].get(i), out)
        return CtfDiff(l_vars, l_funcs), CtfDiff(r_vars, r_funcs)


_QUALIFIERS: dict[int, type[CtfType]] = {
    CTF_K_POINTER: CtfTypePtr,
    CTF_K_TYPEDEF: CtfTypeTypeDef,
    CTF_K_VOLATILE: CtfTypeVolatile,
    CTF_K_CONST: CtfTypeConst,
    CTF_K_RESTRICT: CtfTypeRestrict,
}