"""
Minimal ELF32 little-endian reader, and flattening of an SDRR firmware
ELF into the flat image layout the decoder expects.

Only section headers and the symbol table are read; program headers and
relocations are irrelevant for a linked firmware image.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from typing import List, Optional

from .config import SDRR_INFO_OFFSET, STM32F4_FLASH_BASE
from .errors import ElfFormatError
from .layout import HEADER

logger = logging.getLogger(__name__)

__all__ = ['ELF_MAGIC', 'Section', 'Symbol', 'ElfFile', 'flatten_elf']

ELF_MAGIC = b"\x7fELF"
ELFCLASS32 = 1
ELFDATA2LSB = 1
SHT_SYMTAB = 2

EHDR = struct.Struct("<16sHHIIIIIHHHHHH")       # 52 bytes
SHDR = struct.Struct("<IIIIIIIIII")             # 40 bytes
SYM = struct.Struct("<IIIBBH")                  # 16 bytes

HEADER_SYMBOL = "sdrr_info"
RODATA_SECTION = ".rodata"


@dataclass(frozen=True)
class Section:
    name: str
    sh_type: int
    sh_addr: int
    sh_offset: int
    sh_size: int
    sh_link: int


@dataclass(frozen=True)
class Symbol:
    name: str
    value: int
    size: int
    shndx: int


def _cstring(table: bytes, offset: int) -> str:
    end = table.find(b"\x00", offset)
    if end < 0:
        end = len(table)
    return table[offset:end].decode("utf-8", errors="replace")


class ElfFile:
    """Section and symbol tables of a 32-bit little-endian ELF."""

    def __init__(self, data: bytes):
        self.data = bytes(data)
        if len(self.data) < EHDR.size or self.data[:4] != ELF_MAGIC:
            raise ElfFormatError("Not an ELF file")
        ident = self.data[:16]
        if ident[4] != ELFCLASS32 or ident[5] != ELFDATA2LSB:
            raise ElfFormatError(
                f"Only 32-bit little-endian ELF is supported (class {ident[4]}, data {ident[5]})"
            )
        (_, _, _, _, _, _, e_shoff, _, _, _, _,
         e_shentsize, e_shnum, e_shstrndx) = EHDR.unpack_from(self.data, 0)
        if e_shnum and e_shentsize < SHDR.size:
            raise ElfFormatError(f"Section header entry size {e_shentsize} too small")

        raw = []
        for i in range(e_shnum):
            off = e_shoff + i * e_shentsize
            if off + SHDR.size > len(self.data):
                raise ElfFormatError(f"Section header {i} lies beyond end of file")
            raw.append(SHDR.unpack_from(self.data, off))

        names = b""
        if e_shstrndx < len(raw):
            names = self.read_bytes(raw[e_shstrndx][4], raw[e_shstrndx][5], "section names")
        self.sections: List[Section] = [
            Section(_cstring(names, r[0]), r[1], r[3], r[4], r[5], r[6]) for r in raw
        ]
        self.symbols: List[Symbol] = self._read_symbols()
        logger.debug("ELF: %d sections, %d symbols", len(self.sections), len(self.symbols))

    def read_bytes(self, offset: int, size: int, what: str) -> bytes:
        if offset + size > len(self.data):
            raise ElfFormatError(f"{what} (0x{offset:X}+0x{size:X}) lies beyond end of file")
        return self.data[offset:offset + size]

    def _read_symbols(self) -> List[Symbol]:
        symbols = []
        for sec in self.sections:
            if sec.sh_type != SHT_SYMTAB:
                continue
            table = self.section_data(sec)
            strtab = b""
            if sec.sh_link < len(self.sections):
                strtab = self.section_data(self.sections[sec.sh_link])
            for off in range(0, len(table) - SYM.size + 1, SYM.size):
                st_name, st_value, st_size, _, _, st_shndx = SYM.unpack_from(table, off)
                symbols.append(Symbol(_cstring(strtab, st_name), st_value, st_size, st_shndx))
        return symbols

    def section(self, name: str) -> Optional[Section]:
        for sec in self.sections:
            if sec.name == name:
                return sec
        return None

    def symbol(self, name: str) -> Optional[Symbol]:
        for sym in self.symbols:
            if sym.name == name:
                return sym
        return None

    def section_data(self, section: Section) -> bytes:
        return self.read_bytes(section.sh_offset, section.sh_size, f"section {section.name!r}")


def flatten_elf(data: bytes, base: int = STM32F4_FLASH_BASE,
                header_offset: int = SDRR_INFO_OFFSET) -> bytes:
    """
    Synthesize a flat firmware image from a linked SDRR ELF.

    The ``sdrr_info`` symbol's bytes land at ``header_offset`` and
    ``.rodata`` lands at its load address relative to ``base``; everything
    else is zero. This is all the decoder needs to follow the header's
    pointers.
    """
    elf = ElfFile(data)

    sym = elf.symbol(HEADER_SYMBOL)
    if sym is None:
        raise ElfFormatError(f"{HEADER_SYMBOL} symbol not found")
    if sym.shndx >= len(elf.sections):
        raise ElfFormatError(f"{HEADER_SYMBOL} is not defined in a section (index {sym.shndx})")
    home = elf.sections[sym.shndx]
    size = sym.size or HEADER.size
    header = elf.read_bytes(home.sh_offset + (sym.value - home.sh_addr), size, HEADER_SYMBOL)

    rodata = elf.section(RODATA_SECTION)
    if rodata is None:
        raise ElfFormatError(f"No {RODATA_SECTION} section found")
    if rodata.sh_addr < base:
        raise ElfFormatError(
            f"{RODATA_SECTION} at 0x{rodata.sh_addr:08X} is below base 0x{base:08X}"
        )
    rodata_offset = rodata.sh_addr - base
    rodata_bytes = elf.section_data(rodata)

    flat = bytearray(max(header_offset + len(header), rodata_offset + len(rodata_bytes)))
    flat[header_offset:header_offset + len(header)] = header
    flat[rodata_offset:rodata_offset + len(rodata_bytes)] = rodata_bytes
    logger.debug("Flattened ELF: %s at 0x%X, %s (%d bytes) at 0x%X", HEADER_SYMBOL,
                 header_offset, RODATA_SECTION, len(rodata_bytes), rodata_offset)
    return bytes(flat)
