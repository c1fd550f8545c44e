"""
SDRR Firmware Tools - Address and Data Bit Mangling
====================================================

The STM32 reads the ROM socket's address and chip-select lines as one
port value, and drives the data lines from another, in whatever bit order
the PCB routes them. The firmware therefore stores each ROM set image
pre-permuted: indexed by the raw port value, holding the raw port byte.

  logical address + CS/X levels ──mangle──▶ physical port value (index)
  physical port byte            ──demangle──▶ logical data byte

Logical bit slots of the address side:

  ┌────────┬────────────────────┬─────────────────────────────┐
  │ Bits   │ Meaning            │ Notes                       │
  ├────────┼────────────────────┼─────────────────────────────┤
  │ 0..N-1 │ A0..A(N-1)         │ N = 11/12/13/14 per type    │
  │ 13     │ CS1                │ 2364, 2332, 2316            │
  │ 12     │ CS2 (2332)         │                             │
  │ 11     │ CS2 (2316)         │                             │
  │ 12     │ CS3 (2316)         │                             │
  │ 14, 15 │ X1, X2             │ multi-ROM sets only         │
  └────────┴────────────────────┴─────────────────────────────┘

Control line arguments are line LEVELS (True = high), not "active".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from .errors import AddressOverflow, PinConfigError, PinConflict
from .types import RomType

logger = logging.getLogger(__name__)

__all__ = [
    'ByteDemangler', 'AddressBitMap', 'AddressMangler', 'LogicalAddress',
    'select_rom', 'IDLE_BYTE', 'X1_BIT', 'X2_BIT', 'CS_SLOTS',
]

NUM_SLOTS = 16
X1_BIT = 14
X2_BIT = 15

# All data lines high when no ROM in a multi-ROM set is selected.
# Every permutation of 0xFF is 0xFF, so this is also the mangled value.
IDLE_BYTE = 0xFF

# Fixed by each ROM family's addressing convention
CS_SLOTS = {
    RomType.ROM_2364: (("cs1", 13),),
    RomType.ROM_2332: (("cs1", 13), ("cs2", 12)),
    RomType.ROM_2316: (("cs1", 13), ("cs2", 11), ("cs3", 12)),
    RomType.ROM_23128: (),
}


def _permute(value: int, mapping: Sequence[int]) -> int:
    """out bit i = in bit mapping[i]"""
    out = 0
    for i, src in enumerate(mapping):
        if value & (1 << src):
            out |= 1 << i
    return out


# ──────────────────────────────────────────────
# Data lines
# ──────────────────────────────────────────────

class ByteDemangler:
    """
    Data line permutation. ``data_pins[i]`` is the port bit carrying D<i>.

    demangle: logical bit i = physical bit data_pins[i]
    mangle:   the inverse, used when building images
    """

    def __init__(self, data_pins: Sequence[int]):
        pins = tuple(data_pins)
        if len(pins) != 8:
            raise PinConfigError(f"Expected 8 data pins, got {len(pins)}")
        for pin in pins:
            if not 0 <= pin < 8:
                raise PinConfigError(f"Data pin {pin} out of range (must be 0-7)")
        if len(set(pins)) != 8:
            raise PinConfigError(f"Data pins must be distinct, got {list(pins)}")
        self.data_pins = pins

        inverse = [0] * 8
        for logical, physical in enumerate(pins):
            inverse[physical] = logical
        self._demangle_table = bytes(_permute(b, pins) for b in range(256))
        self._mangle_table = bytes(_permute(b, inverse) for b in range(256))

    def __repr__(self) -> str:
        return f"ByteDemangler({list(self.data_pins)})"

    def demangle(self, byte: int) -> int:
        if not 0 <= byte <= 0xFF:
            raise ValueError(f"byte value {byte} out of range")
        return self._demangle_table[byte]

    def mangle(self, byte: int) -> int:
        if not 0 <= byte <= 0xFF:
            raise ValueError(f"byte value {byte} out of range")
        return self._mangle_table[byte]

    def demangle_bytes(self, data: bytes) -> bytes:
        return bytes(data).translate(self._demangle_table)

    def mangle_bytes(self, data: bytes) -> bytes:
        return bytes(data).translate(self._mangle_table)


# ──────────────────────────────────────────────
# Address lines
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class AddressBitMap:
    """
    16-slot table: physical port bit -> logical address bit (or None).

    ``owners`` names the line occupying each slot ('A3', 'CS1', 'X2', ...).
    """
    rom_type: RomType
    multi_rom: bool
    slots: Tuple[Optional[int], ...]
    owners: Tuple[Optional[str], ...]

    @classmethod
    def build(cls, pins, rom_type: RomType, multi_rom: bool = False) -> "AddressBitMap":
        """
        Build the table from a PinConfiguration.

        Only the first ``rom_type.address_bits`` address pins are mapped.
        Raises PinConflict if any two lines (address, CS, X1/X2) share a
        pin, and PinConfigError if a required address, CS or X pin is
        missing or not on the address port (>= 16).
        """
        if len(pins.addr) > NUM_SLOTS:
            raise PinConfigError(f"Expected at most 16 address pins, got {len(pins.addr)}")

        slots = [None] * NUM_SLOTS
        owners = [None] * NUM_SLOTS

        # Address pins above the type's width double as its chip selects
        width = rom_type.address_bits
        if len(pins.addr) < width:
            raise PinConfigError(
                f"{rom_type} needs {width} address pins, got {len(pins.addr)}")
        for bit, pin in enumerate(pins.addr[:width]):
            if pin >= NUM_SLOTS:
                raise PinConfigError(
                    f"A{bit} pin for {rom_type} must be less than 16, got {pin}")
            if owners[pin] is not None:
                raise PinConflict(f"A{bit}", pin, owners[pin])
            slots[pin] = bit
            owners[pin] = f"A{bit}"

        for line, bit in CS_SLOTS[rom_type]:
            pin = pins.cs_pin(line, rom_type)
            label = line.upper()
            if pin >= NUM_SLOTS:
                raise PinConfigError(f"{label} pin for {rom_type} must be less than 16, got {pin}")
            if owners[pin] is not None:
                raise PinConflict(label, pin, owners[pin])
            slots[pin] = bit
            owners[pin] = label

        if multi_rom:
            for label, pin, bit in (("X1", pins.x1, X1_BIT), ("X2", pins.x2, X2_BIT)):
                if pin >= NUM_SLOTS:
                    raise PinConfigError(f"{label} pin must be less than 16 for multi-ROM sets, got {pin}")
                if owners[pin] is not None:
                    raise PinConflict(label, pin, owners[pin])
                slots[pin] = bit
                owners[pin] = label

        return cls(rom_type, multi_rom, tuple(slots), tuple(owners))

    def pin_for_bit(self, bit: int) -> Optional[int]:
        """Physical pin carrying logical bit ``bit``, if any."""
        try:
            return self.slots.index(bit)
        except ValueError:
            return None


@dataclass(frozen=True)
class LogicalAddress:
    """A logical address plus the control line levels that accompany it."""
    address: int
    cs1: Optional[bool] = None
    cs2: Optional[bool] = None
    cs3: Optional[bool] = None
    x1: Optional[bool] = None
    x2: Optional[bool] = None


class AddressMangler:
    """Logical address <-> physical port value for one ROM set."""

    def __init__(self, bitmap: AddressBitMap):
        self.bitmap = bitmap
        self.rom_type = bitmap.rom_type
        self.mask = bitmap.rom_type.address_mask

    def __repr__(self) -> str:
        return f"AddressMangler({self.rom_type}, multi_rom={self.bitmap.multi_rom})"

    def _scatter(self, logical: int) -> int:
        result = 0
        for pin, bit in enumerate(self.bitmap.slots):
            if bit is not None and logical & (1 << bit):
                result |= 1 << pin
        return result

    def _gather(self, physical: int) -> int:
        logical = 0
        for pin, bit in enumerate(self.bitmap.slots):
            if bit is not None and physical & (1 << pin):
                logical |= 1 << bit
        return logical

    def mangle(self, address: int, cs1: bool, cs2: Optional[bool] = None,
               cs3: Optional[bool] = None, x1: Optional[bool] = None,
               x2: Optional[bool] = None) -> int:
        """
        Physical port value presented for ``address`` with the given line
        levels. Lines the ROM type or set does not have are ignored.
        """
        if address < 0 or address & ~self.mask:
            raise AddressOverflow(address, self.rom_type, self.mask)

        logical = address
        levels = {"cs1": cs1, "cs2": cs2, "cs3": cs3}
        for line, bit in CS_SLOTS[self.rom_type]:
            if levels[line]:
                logical |= 1 << bit
        if self.bitmap.multi_rom:
            if x1:
                logical |= 1 << X1_BIT
            if x2:
                logical |= 1 << X2_BIT
        return self._scatter(logical)

    def demangle(self, physical: int) -> LogicalAddress:
        """Recover address and line levels from a physical port value."""
        logical = self._gather(physical)
        levels = {line: bool(logical & (1 << bit)) for line, bit in CS_SLOTS[self.rom_type]}
        multi = self.bitmap.multi_rom
        return LogicalAddress(
            address=logical & self.mask,
            cs1=levels.get("cs1"),
            cs2=levels.get("cs2"),
            cs3=levels.get("cs3"),
            x1=bool(logical & (1 << X1_BIT)) if multi else None,
            x2=bool(logical & (1 << X2_BIT)) if multi else None,
        )


# ──────────────────────────────────────────────
# Multi-ROM sets
# ──────────────────────────────────────────────

def _level(physical: int, pin: int, what: str) -> bool:
    if pin >= NUM_SLOTS:
        raise PinConfigError(f"{what} pin must be less than 16, got {pin}")
    return bool(physical & (1 << pin))


def select_rom(roms: Sequence, physical: int, pins) -> Optional[int]:
    """
    Index of the ROM in a set that answers ``physical``, or None if idle.

    ROM 0 is selected by its CS1 pin, ROM 1 by X1, ROM 2 by X2, each
    according to that ROM's own CS1 polarity. CS2/CS3 requirements of the
    ROM must also hold. First match wins.
    """
    for index, rom in enumerate(roms[:3]):
        if index == 0:
            select_pin = pins.cs_pin("cs1", rom.rom_type)
        else:
            select_pin = pins.x1 if index == 1 else pins.x2
        label = ("CS1", "X1", "X2")[index]
        if rom.cs1.active_level is not None:
            if not rom.cs1.is_active(_level(physical, select_pin, label)):
                continue
        if rom.rom_type.supports_cs2 and rom.cs2.active_level is not None:
            if not rom.cs2.is_active(_level(physical, pins.cs_pin("cs2", rom.rom_type), "CS2")):
                continue
        if rom.rom_type.supports_cs3 and rom.cs3.active_level is not None:
            if not rom.cs3.is_active(_level(physical, pins.cs_pin("cs3", rom.rom_type), "CS3")):
                continue
        return index
    return None
