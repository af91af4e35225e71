"""CTF type records: decoding their headers and comparing type graphs."""

from __future__ import annotations

import struct
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, ClassVar, Iterable, Mapping

from .utility import CtfFlag

CTF_MAGIC = 0xCFF1
CTF_VERSION_2 = 2
CTF_VERSION_3 = 3
CTF_F_COMPRESS = 0x1

CTF_V2_PARENT_SHIFT = 15
CTF_V3_PARENT_SHIFT = 31

CTF_K_UNKNOWN = 0
CTF_K_INTEGER = 1
CTF_K_FLOAT = 2
CTF_K_POINTER = 3
CTF_K_ARRAY = 4
CTF_K_FUNCTION = 5
CTF_K_STRUCT = 6
CTF_K_UNION = 7
CTF_K_ENUM = 8
CTF_K_FORWARD = 9
CTF_K_TYPEDEF = 10
CTF_K_VOLATILE = 11
CTF_K_CONST = 12
CTF_K_RESTRICT = 13

CTF_LSTRUCT_THRESH = 1 << 13

_NATIVE_ORDER = "<" if sys.byteorder == "little" else ">"

ChildCompare = Callable[[int, int], bool]


@dataclass(frozen=True)
class ArrayEntry:
    """The element type, index type and element count of an array."""

    contents: int
    index: int
    nelems: int


@dataclass(frozen=True)
class MemberEntry:
    """One member of a struct or union."""

    name: str
    type_id: int
    offset: int


@dataclass(frozen=True)
class CtfTypeParser:
    """The decoded header of one CTF type record."""

    name_ref: int
    info: int
    size_or_type: int
    lsizehi: int = 0
    lsizelo: int = 0
    byteorder: str = _NATIVE_ORDER

    _HEADER: ClassVar[str] = ""
    _LSIZE_SENT: ClassVar[int] = 0
    _KIND_MASK: ClassVar[int] = 0
    _KIND_SHIFT: ClassVar[int] = 0
    _ROOT_MASK: ClassVar[int] = 0
    _ROOT_SHIFT: ClassVar[int] = 0
    _VLEN_MASK: ClassVar[int] = 0
    _ARRAY: ClassVar[str] = ""
    _MEMBER: ClassVar[str] = ""
    _LMEMBER: ClassVar[str] = ""

    @classmethod
    def from_bytes(cls, data, offset=0) -> CtfTypeParser:
        """Decode the type record header that starts at ``offset`` in ``data``."""
        if not cls._HEADER:
            raise TypeError("a versioned parser class is required")
        order = _NATIVE_ORDER
        short_size = struct.calcsize(order + cls._HEADER)
        long_fmt = order + cls._HEADER + "II"
        long_size = struct.calcsize(long_fmt)
        if offset < 0:
            raise ValueError(f"negative offset {offset}")
        raw = bytes(data[offset:offset + long_size])
        if len(raw) < short_size:
            raise ValueError(f"type record at offset {offset} is truncated")
        name, info, size_or_type, hi, lo = struct.unpack(
            long_fmt, raw.ljust(long_size, b"\0"))
        return cls(name_ref=name, info=info, size_or_type=size_or_type,
                   lsizehi=hi, lsizelo=lo, byteorder=order)

    def _fmt(self, layout: str) -> str:
        return self.byteorder + layout

    def is_root(self) -> bool:
        return bool((self.info & self._ROOT_MASK) >> self._ROOT_SHIFT)

    def kind(self) -> int:
        return (self.info & self._KIND_MASK) >> self._KIND_SHIFT

    def vlen(self) -> int:
        return self.info & self._VLEN_MASK

    def name(self) -> int:
        return self.name_ref

    def type(self) -> int:
        return self.size_or_type

    def increment(self) -> int:
        """Length in bytes of this record's header."""
        if self.size_or_type == self._LSIZE_SENT:
            return struct.calcsize(self._fmt(self._HEADER + "II"))
        return struct.calcsize(self._fmt(self._HEADER))

    def size(self) -> int:
        """The size recorded for structs and unions; equal to increment()."""
        return self.increment()

    def do_array(self, data, offset) -> ArrayEntry:
        """Decode the array descriptor at ``offset``."""
        fmt = self._fmt(self._ARRAY)
        try:
            contents, index, nelems = struct.unpack_from(fmt, data, offset)
        except struct.error as exc:
            raise ValueError(f"array descriptor at offset {offset} is truncated") from exc
        return ArrayEntry(contents, index, nelems)

    def do_struct(self, data, offset, get_str) -> tuple[int, list[MemberEntry]]:
        """Decode the members at ``offset``; return their byte length and entries."""
        count = self.vlen()
        large = self.size() >= CTF_LSTRUCT_THRESH
        fmt = self._fmt(self._LMEMBER if large else self._MEMBER)
        length = count * struct.calcsize(fmt)
        raw = bytes(data[offset:offset + length])
        if offset < 0 or len(raw) < length:
            raise ValueError(f"member list at offset {offset} is truncated")
        members = []
        for fields in struct.iter_unpack(fmt, raw):
            if large:
                member_offset = fields[-2] << 32 | fields[-1]
            else:
                member_offset = fields[2]
            members.append(MemberEntry(get_str(fields[0]), fields[1], member_offset))
        return length, members


@dataclass(frozen=True)
class CtfTypeParserV2(CtfTypeParser):
    """Type record header of CTF version 2."""

    _HEADER: ClassVar[str] = "IHH"
    _LSIZE_SENT: ClassVar[int] = 0xFFFF
    _KIND_MASK: ClassVar[int] = 0xF800
    _KIND_SHIFT: ClassVar[int] = 11
    _ROOT_MASK: ClassVar[int] = 0x0400
    _ROOT_SHIFT: ClassVar[int] = 10
    _VLEN_MASK: ClassVar[int] = 0x3FF
    _ARRAY: ClassVar[str] = "HHI"
    _MEMBER: ClassVar[str] = "IHH"
    _LMEMBER: ClassVar[str] = "IHHII"


@dataclass(frozen=True)
class CtfTypeParserV3(CtfTypeParser):
    """Type record header of CTF version 3."""

    _HEADER: ClassVar[str] = "III"
    _LSIZE_SENT: ClassVar[int] = 0xFFFFFFFF
    _KIND_MASK: ClassVar[int] = 0xFC000000
    _KIND_SHIFT: ClassVar[int] = 26
    _ROOT_MASK: ClassVar[int] = 0x02000000
    _ROOT_SHIFT: ClassVar[int] = 25
    _VLEN_MASK: ClassVar[int] = 0x00FFFFFF
    _ARRAY: ClassVar[str] = "III"
    _MEMBER: ClassVar[str] = "III"
    _LMEMBER: ClassVar[str] = "IIII"


def parser_for_version(version) -> type[CtfTypeParser]:
    """The parser class for a CTF format version."""
    if version == CTF_VERSION_2:
        return CtfTypeParserV2
    if version == CTF_VERSION_3:
        return CtfTypeParserV3
    raise ValueError(f"CTF version {version} is not available")


def ignored_types(flags) -> tuple[type, ...]:
    """The type classes that comparisons look through for the given flags."""
    ignored: tuple[type, ...] = (CtfTypeTypeDef,)
    if CtfFlag(flags) & CtfFlag.F_IGNORE_CONST:
        ignored += (CtfTypeConst,)
    return ignored


class _Comparer:
    """Walks two type graphs in step, tolerating cycles."""

    def __init__(self, cache: dict, ignored: tuple[type, ...]) -> None:
        self.cache = cache
        self.ignored = ignored
        self.visited: set[tuple[int, int]] = set()

    def child(self, lhs: CtfType, rhs: CtfType, l_id: int, r_id: int) -> bool:
        l_child = lhs.types.get(l_id)
        r_child = rhs.types.get(r_id)
        if l_child is None or r_child is None:
            return False
        return self.compare(l_child, r_child)

    def _strip(self, ctype: CtfType | None) -> CtfType | None:
        while ctype is not None and type(ctype) in self.ignored:
            if not isinstance(ctype, CtfTypeQualifier):
                break
            ctype = ctype.types.get(ctype.ref_id)
        return ctype

    def compare(self, lhs: CtfType, rhs: CtfType) -> bool:
        lhs, rhs = self._strip(lhs), self._strip(rhs)
        if lhs is None or rhs is None:
            return False
        if type(lhs) is not type(rhs):
            return False

        key = (lhs.id, rhs.id)
        if key in self.visited:
            return True
        if key in self.cache:
            return self.cache[key]

        self.visited.add(key)
        result = lhs._compare_impl(
            rhs, lambda l_id, r_id: self.child(lhs, rhs, l_id, r_id))
        self.cache[key] = result
        self.visited.discard(key)
        return result


@dataclass(eq=False, kw_only=True)
class CtfType(ABC):
    """A type of one CTF container; ``types`` maps ids to that container's types."""

    id: int
    name: str = ""
    parser: CtfTypeParser | None = None
    types: Mapping[int, CtfType] = field(default_factory=dict, repr=False)

    @abstractmethod
    def _compare_impl(self, rhs: CtfType, comp: ChildCompare) -> bool:
        """Compare with a type of the same class; ``comp`` compares child ids."""

    def compare(self, rhs, cache=None, ignored=None) -> bool:
        """Whether this type and ``rhs`` describe the same type."""
        if cache is None:
            cache = {}
        if ignored is None:
            ignored = ignored_types(0)
        return _Comparer(cache, tuple(ignored)).child(self, rhs, self.id, rhs.id)


class CtfTypeVaArg(CtfType):
    """The ``...`` of a variadic function, recorded as type 0."""

    def _compare_impl(self, rhs: CtfType, comp: ChildCompare) -> bool:
        return True


@dataclass(eq=False, kw_only=True)
class CtfTypePrimitive(CtfType):
    """A type described by a single encoding word."""

    data: int

    def _compare_impl(self, rhs: CtfType, comp: ChildCompare) -> bool:
        return self.data == rhs.data


def _encoding(data: int) -> int:
    return (data & 0xFF000000) >> 24


def _offset(data: int) -> int:
    return (data & 0x00FF0000) >> 16


def _bits(data: int) -> int:
    return data & 0x0000FFFF


class CtfTypeInteger(CtfTypePrimitive):
    """An integer type."""

    def encoding(self) -> int:
        return _encoding(self.data)

    def offset(self) -> int:
        return _offset(self.data)

    def width(self) -> int:
        return _bits(self.data)


class CtfTypeFloat(CtfTypePrimitive):
    """A floating-point type."""

    def encoding(self) -> int:
        return _encoding(self.data)

    def offset(self) -> int:
        return _offset(self.data)

    def width(self) -> int:
        return _bits(self.data)


@dataclass(eq=False, kw_only=True)
class CtfTypeArray(CtfType):
    """An array type."""

    entry: ArrayEntry

    def members(self) -> int:
        return self.entry.nelems

    def _compare_impl(self, rhs: CtfType, comp: ChildCompare) -> bool:
        return (self.entry.nelems == rhs.entry.nelems
                and comp(self.entry.index, rhs.entry.index)
                and comp(self.entry.contents, rhs.entry.contents))


@dataclass(eq=False, kw_only=True)
class CtfTypeFunc(CtfType):
    """A function type: return type id and argument type ids."""

    ret_id: int
    args: list[int] = field(default_factory=list)

    def _compare_impl(self, rhs: CtfType, comp: ChildCompare) -> bool:
        if len(self.args) != len(rhs.args):
            return False
        if not comp(self.ret_id, rhs.ret_id):
            return False
        return all(comp(l_arg, r_arg) for l_arg, r_arg in zip(self.args, rhs.args))


@dataclass(eq=False, kw_only=True)
class CtfTypeEnum(CtfType):
    """An enumeration: ordered (name, value) pairs."""

    members: list[tuple[str, int]] = field(default_factory=list)

    def _compare_impl(self, rhs: CtfType, comp: ChildCompare) -> bool:
        return [tuple(m) for m in self.members] == [tuple(m) for m in rhs.members]


class CtfTypeForward(CtfType):
    """A forward declaration, equal to another of the same name."""

    def _compare_impl(self, rhs: CtfType, comp: ChildCompare) -> bool:
        return self.name == rhs.name


@dataclass(eq=False, kw_only=True)
class CtfTypeQualifier(CtfType):
    """A type that wraps another type by id."""

    ref_id: int

    def _compare_impl(self, rhs: CtfType, comp: ChildCompare) -> bool:
        return comp(self.ref_id, rhs.ref_id)


class CtfTypePtr(CtfTypeQualifier):
    """A pointer type."""


class CtfTypeTypeDef(CtfTypeQualifier):
    """A typedef."""


class CtfTypeVolatile(CtfTypeQualifier):
    """A volatile-qualified type."""


class CtfTypeConst(CtfTypeQualifier):
    """A const-qualified type."""


class CtfTypeRestrict(CtfTypeQualifier):
    """A restrict-qualified type."""


class CtfTypeUnknown(CtfType):
    """A type of unknown kind; never equal to anything."""

    def _compare_impl(self, rhs: CtfType, comp: ChildCompare) -> bool:
        return False


@dataclass(eq=False, kw_only=True)
class CtfTypeComplex(CtfType):
    """A type made of members at offsets."""

    size: int
    members: list[MemberEntry] = field(default_factory=list)

    def _compare_impl(self, rhs: CtfType, comp: ChildCompare) -> bool:
        if self.size != rhs.size or len(self.members) != len(rhs.members):
            return False
        for l_member, r_member in zip(self.members, rhs.members):
            if l_member.offset != r_member.offset:
                return False
            if not comp(l_member.type_id, r_member.type_id):
                return False
        return True


class CtfTypeStruct(CtfTypeComplex):
    """A struct type."""


class CtfTypeUnion(CtfTypeComplex):
    """A union type."""


def _all_types() -> Iterable[type]:
    return (CtfTypeVaArg, CtfTypeInteger, CtfTypeFloat, CtfTypeArray, CtfTypeFunc,
            CtfTypeEnum, CtfTypeForward, CtfTypePtr, CtfTypeTypeDef,
            CtfTypeVolatile, CtfTypeConst, CtfTypeRestrict, CtfTypeUnknown,
            CtfTypeStruct, CtfTypeUnion)