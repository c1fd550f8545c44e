"""
Pointer resolution against a ByteSource.

Firmware pointers are absolute target addresses. Every one of them is at
or above the flash base by construction, so anything below it is an
``InvalidPointer`` rather than a read attempt.
"""

from __future__ import annotations

import logging
import struct
from typing import Any, Dict, Tuple

from .config import STRING_MAX_LEN, STRING_READ_CHUNK
from .errors import InvalidEncoding, InvalidPointer, OutOfBounds, StringTooLong
from .layout import StructLayout

logger = logging.getLogger(__name__)

__all__ = ['PointerResolver']


class PointerResolver:
    """Bounds-checked reads of pointed-to data through a source."""

    def __init__(self, source, base: int,
                 string_chunk: int = STRING_READ_CHUNK,
                 string_max_len: int = STRING_MAX_LEN):
        if string_chunk < 1 or string_max_len < 1:
            raise ValueError(
                f"String limits must be at least 1, got chunk={string_chunk} max_len={string_max_len}")
        self.source = source
        self.base = base
        self.string_chunk = string_chunk
        self.string_max_len = string_max_len

    def offset(self, pointer: int, what: str = "pointer") -> int:
        """Offset of ``pointer`` from base."""
        if pointer < self.base:
            raise InvalidPointer(pointer, self.base, what)
        return pointer - self.base

    def read(self, pointer: int, length: int, what: str = "pointer") -> bytes:
        self.offset(pointer, what)
        try:
            return self.source.read(pointer, length)
        except OutOfBounds as exc:
            if exc.what:
                raise
            raise OutOfBounds(exc.address, exc.length, exc.limit, what) from None

    def read_u32_array(self, pointer: int, count: int, what: str = "pointer array") -> Tuple[int, ...]:
        raw = self.read(pointer, 4 * count, what)
        return struct.unpack(f"<{count}I", raw)

    def read_record(self, layout: StructLayout, pointer: int, what: str = "") -> Dict[str, Any]:
        raw = self.read(pointer, layout.size, what or layout.name)
        return layout.unpack(raw)

    def read_string(self, pointer: int, what: str = "string") -> str:
        """
        Read a null-terminated UTF-8 string.

        Reads ``string_chunk`` bytes at a time. A chunk running past the end
        of the source is retried with whatever bytes remain, so a string
        stored right at the end of the image still resolves.
        """
        self.offset(pointer, what)
        collected = bytearray()
        address = pointer
        while len(collected) < self.string_max_len:
            want = min(self.string_chunk, self.string_max_len - len(collected))
            chunk = self._read_chunk(address, want, what)
            nul = chunk.find(b"\x00")
            if nul >= 0:
                collected += chunk[:nul]
                break
            collected += chunk
            address += len(chunk)
            if len(chunk) < want:
                # Ran off the end of the source without a terminator
                raise OutOfBounds(address, 1, address, what)
        else:
            raise StringTooLong(pointer, self.string_max_len)

        try:
            return collected.decode("utf-8")
        except UnicodeDecodeError:
            raise InvalidEncoding(pointer, bytes(collected)) from None

    def _read_chunk(self, address: int, length: int, what: str) -> bytes:
        try:
            return self.source.read(address, length)
        except OutOfBounds:
            end = getattr(self.source, "end", None)
            if end is None or address >= end:
                raise
            logger.debug("String chunk at 0x%08X truncated to %d bytes", address, end - address)
            return self.source.read(address, end - address)
