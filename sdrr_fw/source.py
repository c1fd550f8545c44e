"""
Byte sources: windows of absolute target addresses that can be read.

A source is anything with ``read(address, length) -> bytes``. Addresses
are in the target's memory map (flash starts at ``base``), never file
offsets. A request outside what the source can supply raises
``OutOfBounds``; an underlying I/O failure raises ``SourceReadError``.

One decode holds exclusive use of a source, so none of these lock.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import BinaryIO, Optional, Union

from .config import STM32F4_FLASH_BASE
from .errors import OutOfBounds, SourceReadError

logger = logging.getLogger(__name__)

__all__ = ['ByteSource', 'MemorySource', 'FileSource']


class ByteSource:
    """Base class. Subclasses implement ``_read`` and ``size``."""

    base: int = STM32F4_FLASH_BASE

    @property
    def size(self) -> Optional[int]:
        """Bytes available from ``base``, or None if unknown (live targets)."""
        return None

    @property
    def end(self) -> Optional[int]:
        size = self.size
        return None if size is None else self.base + size

    def read(self, address: int, length: int) -> bytes:
        if length < 0:
            raise ValueError(f"negative read length {length}")
        if address < self.base:
            raise OutOfBounds(address, length, self.end)
        end = self.end
        if end is not None and address + length > end:
            raise OutOfBounds(address, length, end)
        data = self._read(address, length)
        if len(data) != length:
            raise OutOfBounds(address, length, address + len(data))
        return data

    def _read(self, address: int, length: int) -> bytes:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class MemorySource(ByteSource):
    """An in-memory image whose first byte lives at ``base``."""

    def __init__(self, data: Union[bytes, bytearray, memoryview],
                 base: int = STM32F4_FLASH_BASE):
        self._data = bytes(data)
        self.base = base

    def __repr__(self) -> str:
        return f"MemorySource({len(self._data)} bytes @ 0x{self.base:08X})"

    @property
    def size(self) -> int:
        return len(self._data)

    def _read(self, address: int, length: int) -> bytes:
        off = address - self.base
        return self._data[off:off + length]


class FileSource(ByteSource):
    """
    A firmware file read on demand (seek + read per request), so large
    images are never held in memory whole.
    """

    def __init__(self, path: Union[str, Path], base: int = STM32F4_FLASH_BASE):
        self.path = Path(path)
        self.base = base
        try:
            self._fh: Optional[BinaryIO] = self.path.open("rb")
            self._size = self.path.stat().st_size
        except OSError as exc:
            raise SourceReadError(f"Cannot open {self.path}: {exc}") from exc
        logger.debug("Opened %s (%d bytes) at base 0x%08X", self.path, self._size, base)

    def __repr__(self) -> str:
        return f"FileSource('{self.path}' @ 0x{self.base:08X})"

    @property
    def size(self) -> int:
        return self._size

    def _read(self, address: int, length: int) -> bytes:
        if self._fh is None:
            raise SourceReadError(f"{self.path} is closed")
        try:
            self._fh.seek(address - self.base)
            return self._fh.read(length)
        except OSError as exc:
            raise SourceReadError(
                f"Read of {length} bytes at 0x{address:08X} from {self.path} failed: {exc}"
            ) from exc

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
