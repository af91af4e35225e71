"""Command line entry point: compare the CTF data of two files."""

from __future__ import annotations

import sys

from .ctfdata import CtfData, CtfError
from .ctftype import ignored_types
from .metadata import CtfMetaData, MetadataError
from .utility import CtfFlag

_IGNORE_CONST = {"-c", "-f-ignore-const", "--f-ignore-const"}


def _print_usage() -> None:
    print("ctfdiff compare the SUNW_ctf section of two ELF files")
    print("usage: ctfdiff <options> <file1> <file2>")
    print("options:")
    print("-f-ignore-const: ignore const decorator", end="")


def main(argv=None) -> int:
    """Run the command; return the exit status."""
    args = list(sys.argv[1:] if argv is None else argv)
    flags = CtfFlag(0)
    files: list[str] = []
    for arg in args:
        if arg in _IGNORE_CONST:
            flags |= CtfFlag.F_IGNORE_CONST
        elif arg.startswith("-") and len(arg) > 1:
            continue
        elif len(files) == 2:
            _print_usage()
            return 0
        else:
            files.append(arg)

    if len(files) < 2:
        _print_usage()
        return 1

    shown = args[0] if args else ""
    infos = []
    try:
        metas = []
        for name in files:
            try:
                metas.append(CtfMetaData.from_file(name))
            except MetadataError:
                print(f"Cannot parse file {shown}")
                return 1
        for meta in metas:
            infos.append(CtfData.from_metadata(meta))
    except CtfError as exc:
        print(exc)
        return 1

    infos[0].compare_and_get_diff(infos[1], ignored_types(flags))
    return 0


if __name__ == "__main__":
    sys.exit(main())