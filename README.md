# ctfdiff

`ctfdiff` compares the CTF (Compact C Type Format) data found in the
`.SUNW_ctf` section of two ELF files and reports the functions and global
variables whose types differ.

CTF versions 2 and 3 are supported, both plain and zlib-compressed. Symbol
names come from the ELF symbol table that the CTF section links to, or from
`.symtab` when it has no link. A file that is not ELF, or has no `.SUNW_ctf`
section, is read whole as raw CTF data.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Command line

```
ctfdiff [-f-ignore-const] <file1> <file2>
```

Each differing symbol is printed on its own line. Lines starting with `<`
belong to the first file and lines starting with `>` to the second. The number
in brackets is the symbol's index in that file's CTF object or function table:

```
< [12] vfs_open
> [12] vfs_open
> [40] new_counter
```

Symbols are walked in name order on both sides. A symbol present on one side
only is printed for that side. Symbols of the second file whose names sort
after the last symbol of the first file are not printed.

Typedefs are always looked through during comparison. With `-f-ignore-const`
(also accepted as `-c` or `--f-ignore-const`), `const` qualifiers are looked
through as well. Other options starting with `-` are ignored.

Exit status is 1 when fewer than two files are given, when a file cannot be
read, or when its data is not valid CTF; otherwise it is 0, whether or not
differences were found. Giving more than two files prints the usage text.

## Library use

```python
from ctfdiff.metadata import CtfMetaData
from ctfdiff.ctfdata import CtfData
from ctfdiff.ctftype import ignored_types
from ctfdiff.utility import CtfFlag

left = CtfData.from_metadata(CtfMetaData.from_file("kernel.old"))
right = CtfData.from_metadata(CtfMetaData.from_file("kernel.new"))

l_diff, r_diff = left.compare_and_get_diff(
    right, ignored_types(CtfFlag.F_IGNORE_CONST), None
)
for entry in l_diff.functions:
    print(entry.name, entry.id)
```

`compare_and_get_diff` returns two `CtfDiff` values, one per side. Each holds
the `variables` and `functions` that differ, as `ObjEntry` records with a
`name`, the resolved `type`, and the symbol `id`. The `<`/`>` lines are
written to `out`, or to standard output when `out` is `None`.

Single types can be compared directly with `CtfType.compare(rhs, cache,
ignored)`; cycles between struct types are handled. `CtfHeader.parse` decodes
and validates the header of a CTF container, and `CtfData.get_str_from_ref`
resolves a name reference against its string table.

Unreadable or empty files raise `MetadataError`. A bad magic number, an
unsupported version, a short header or a failed decompression raises
`CtfError`. Damage found later, inside the type section, is reported on
standard output and parsing stops at that point.

## Limitations

- Only the names of differing symbols are reported, not what differs between
  their types.
- Raw CTF data carries no symbol table, so a raw blob yields no named functions
  or variables and nothing is reported for it.
- Names held in an external (parent) string table are not resolved; they appear
  as a placeholder text.