"""Shared flags and the byte buffer type used across the package."""

from __future__ import annotations

import enum
from dataclasses import dataclass


class CtfFlag(enum.IntFlag):
    """Command-line switches that change how types are compared."""

    F_IGNORE_CONST = 1


@dataclass(frozen=True)
class Buffer:
    """An immutable run of bytes, optionally split into fixed-size entries."""

    data: bytes = b""
    entries: int = 0

    @property
    def size(self) -> int:
        return len(self.data)

    def __len__(self) -> int:
        return len(self.data)

    def slice(self, start: int, end: int) -> bytes:
        """Return the bytes in ``[start, end)``; raise IndexError if out of range."""
        if not 0 <= start <= end <= len(self.data):
            raise IndexError(
                f"range [{start}, {end}) is outside a buffer of {len(self.data)} bytes"
            )
        return self.data[start:end]