"""
SDRR Firmware Tools - ROM Set Image Builder
============================================

The generation side of the mangler: turns logical ROM files into the
pre-permuted ROM set images the firmware serves, and assembles complete
flat firmware images around them.

  RomImage(s) ──▶ build_rom_set_image() ──▶ mangled set image
                                               │
  PinConfiguration ──────────────┐             │
                                 ▼             ▼
                           FirmwareWriter.build() ──▶ flat firmware bytes

Every byte written here must read back identically through
``FirmwareImage.lookup`` with the same pin configuration.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .config import (
    MULTI_ROM_IMAGE_SIZE, SDRR_INFO_OFFSET, SINGLE_ROM_IMAGE_SIZE,
    STM32F4_FLASH_BASE,
)
from .errors import BuildError
from .layout import HEADER, PINS, ROM_SET, rom_info_layout
from .mangle import IDLE_BYTE, AddressBitMap, AddressMangler, ByteDemangler, select_rom
from .model import FirmwareVersion, PinConfiguration
from .types import CsState, McuLine, McuStorage, RomType, ServeAlgorithm, SizeHandling

logger = logging.getLogger(__name__)

__all__ = ['RomImage', 'build_rom_set_image', 'FirmwareWriter', 'PAD_BYTE']

PAD_BYTE = 0xAA


@dataclass(frozen=True)
class RomImage:
    """A logical ROM: its bytes exactly as the original chip holds them."""
    data: bytes
    rom_type: RomType
    cs1: CsState = CsState.ACTIVE_LOW
    cs2: CsState = CsState.NOT_USED
    cs3: CsState = CsState.NOT_USED
    filename: Optional[str] = None

    def __post_init__(self):
        if len(self.data) != self.rom_type.size:
            raise BuildError(
                f"ROM data is {len(self.data)} bytes, {self.rom_type} needs {self.rom_type.size}"
            )

    @classmethod
    def from_bytes(cls, data: bytes, rom_type: RomType,
                   cs1: CsState = CsState.ACTIVE_LOW,
                   cs2: CsState = CsState.NOT_USED,
                   cs3: CsState = CsState.NOT_USED,
                   size_handling: SizeHandling = SizeHandling.NONE,
                   filename: Optional[str] = None) -> "RomImage":
        """
        Fit ``data`` to the ROM type's size.

        DUPLICATE repeats a smaller image (the size must divide evenly);
        PAD fills the remainder with 0xAA. Oversized data is always an error.
        """
        data = bytes(data)
        expected = rom_type.size
        if not data:
            raise BuildError("ROM data is empty")
        if len(data) > expected:
            raise BuildError(
                f"ROM data is {len(data)} bytes, larger than {rom_type} ({expected} bytes)"
            )
        if len(data) < expected:
            if size_handling is SizeHandling.DUPLICATE:
                if expected % len(data):
                    raise BuildError(
                        f"Cannot duplicate {len(data)} bytes to fill {expected} bytes evenly"
                    )
                logger.debug("Duplicating %d byte image x%d", len(data), expected // len(data))
                data = data * (expected // len(data))
            elif size_handling is SizeHandling.PAD:
                logger.debug("Padding %d byte image to %d", len(data), expected)
                data = data + bytes([PAD_BYTE]) * (expected - len(data))
            else:
                raise BuildError(
                    f"ROM data is {len(data)} bytes, {rom_type} needs {expected} "
                    f"(use duplicate or pad size handling)"
                )
        return cls(data, rom_type, cs1, cs2, cs3, filename)


def build_rom_set_image(roms: Sequence[RomImage], pins: PinConfiguration) -> bytes:
    """
    Mangled image for a set of 1-3 ROMs.

    One ROM: 16KB indexed by the 14-bit physical address, chip-select bits
    ignored. Several ROMs: 64KB indexed by the full 16-bit port value, each
    entry answered by whichever ROM the CS1/X1/X2 levels select, or the
    idle byte when none is.
    """
    roms = list(roms)
    if not 1 <= len(roms) <= 3:
        raise BuildError(f"A ROM set holds 1-3 ROMs, got {len(roms)}")
    rom_type = roms[0].rom_type
    if any(r.rom_type is not rom_type for r in roms):
        raise BuildError(f"ROMs in a set must share a type: {[str(r.rom_type) for r in roms]}")

    multi = len(roms) > 1
    demangler = ByteDemangler(pins.data)
    mangler = AddressMangler(AddressBitMap.build(pins, rom_type, multi))

    if not multi:
        rom = roms[0].data
        return bytes(demangler.mangle(rom[mangler.demangle(p).address])
                     for p in range(SINGLE_ROM_IMAGE_SIZE))

    out = bytearray([IDLE_BYTE]) * MULTI_ROM_IMAGE_SIZE
    served = [0] * len(roms)
    for p in range(MULTI_ROM_IMAGE_SIZE):
        index = select_rom(roms, p, pins)
        if index is None:
            continue
        served[index] += 1
        out[p] = demangler.mangle(roms[index].data[mangler.demangle(p).address])
    logger.debug("Multi-ROM set: entries served per ROM %s", served)
    return bytes(out)


class FirmwareWriter:
    """
    Assembles a flat SDRR firmware image: header at ``header_offset``,
    then strings, pins, ROM set images and their records.

    ``symbols`` maps names such as ``"rom_set[0].roms"`` to the absolute
    address each piece was placed at. Header fields may be overridden
    through keyword arguments.
    """

    def __init__(self, pins: PinConfiguration,
                 version: FirmwareVersion = FirmwareVersion(0, 2, 1, 0),
                 base: int = STM32F4_FLASH_BASE,
                 header_offset: int = SDRR_INFO_OFFSET,
                 boot_logging: bool = False,
                 build_date: Optional[str] = "Jan  1 2025 12:00:00",
                 hw_rev: Optional[str] = "24-d",
                 **header_fields):
        self.pins = pins
        self.version = version
        self.base = base
        self.header_offset = header_offset
        self.boot_logging = boot_logging
        self.build_date = build_date
        self.hw_rev = hw_rev
        self.header_fields = header_fields
        self.symbols: Dict[str, int] = {}
        self._sets: List[dict] = []

    def add_rom_set(self, roms: Sequence[RomImage],
                    serve: ServeAlgorithm = ServeAlgorithm.TWO_CS_ONE_ADDR,
                    multi_rom_cs1: Optional[CsState] = None,
                    image: Optional[bytes] = None) -> int:
        """Queue a ROM set; returns its index."""
        roms = list(roms)
        if multi_rom_cs1 is None:
            multi_rom_cs1 = roms[0].cs1 if len(roms) > 1 else CsState.NOT_USED
        if image is None:
            image = build_rom_set_image(roms, self.pins)
        self._sets.append(dict(roms=roms, serve=serve, multi_rom_cs1=multi_rom_cs1,
                               image=bytes(image)))
        return len(self._sets) - 1

    def _place(self, buf: bytearray, name: str, data: bytes) -> int:
        buf.extend(b"\x00" * (-len(buf) % 4))
        address = self.base + len(buf)
        buf.extend(data)
        self.symbols[name] = address
        return address

    @staticmethod
    def _cstr(text: str) -> bytes:
        return text.encode("utf-8") + b"\x00"

    def build(self) -> bytes:
        buf = bytearray(self.header_offset + HEADER.size)
        self.symbols = {"header": self.base + self.header_offset}

        build_date_ptr = hw_rev_ptr = 0
        if self.build_date is not None:
            build_date_ptr = self._place(buf, "build_date", self._cstr(self.build_date))
        if self.hw_rev is not None:
            hw_rev_ptr = self._place(buf, "hw_rev", self._cstr(self.hw_rev))
        pins_ptr = self._place(buf, "pins", PINS.pack(**self.pins.as_record()))

        info_layout = rom_info_layout(self.boot_logging)
        set_records = []
        for i, rs in enumerate(self._sets):
            path = f"rom_set[{i}]"
            data_ptr = self._place(buf, f"{path}.data", rs["image"])
            info_ptrs = []
            for j, rom in enumerate(rs["roms"]):
                fields = dict(rom_type=rom.rom_type.value, cs1_state=rom.cs1.value,
                              cs2_state=rom.cs2.value, cs3_state=rom.cs3.value)
                if self.boot_logging:
                    name = rom.filename or f"rom{i}_{j}.bin"
                    fields["filename_ptr"] = self._place(buf, f"{path}.roms[{j}].filename",
                                                         self._cstr(name))
                info_ptrs.append(self._place(buf, f"{path}.roms[{j}]", info_layout.pack(**fields)))
            roms_ptr = self._place(buf, f"{path}.roms",
                                   b"".join(p.to_bytes(4, "little") for p in info_ptrs))
            set_records.append(ROM_SET.pack(
                data_ptr=data_ptr, size=len(rs["image"]), roms_ptr=roms_ptr,
                rom_count=len(rs["roms"]), serve=rs["serve"].value,
                multi_rom_cs1_state=rs["multi_rom_cs1"].value,
            ))
        rom_sets_ptr = self._place(buf, "rom_sets", b"".join(set_records))

        header = dict(
            major=self.version.major, minor=self.version.minor,
            patch=self.version.patch, build=self.version.build,
            build_date_ptr=build_date_ptr, commit=b"1a2b3c4d", hw_rev_ptr=hw_rev_ptr,
            stm_line=McuLine.F411.value, stm_storage=McuStorage.STORAGE_E.value,
            freq=100, swd_enabled=1, boot_logging_enabled=int(self.boot_logging),
            rom_set_count=len(self._sets), rom_sets_ptr=rom_sets_ptr, pins_ptr=pins_ptr,
        )
        header.update(self.header_fields)
        buf[self.header_offset:self.header_offset + HEADER.size] = HEADER.pack(**header)
        logger.debug("Assembled %d byte firmware with %d ROM set(s)", len(buf), len(self._sets))
        return bytes(buf)
