"""
Enumerated codes stored in SDRR firmware structures.

Every enum carries the exact byte/halfword code the firmware writes, so
``RomType(2)`` is a 2364. ``from_code()`` raises ``InvalidFieldValue``
rather than ``ValueError`` so the decoder can record it against a field.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from .errors import InvalidFieldValue


class _CodedEnum(Enum):
    """Enum whose values are on-disk codes."""

    @classmethod
    def from_code(cls, code: int, field: str = ""):
        try:
            return cls(code)
        except ValueError:
            valid = ", ".join(str(m.value) for m in cls)
            raise InvalidFieldValue(field or cls.__name__, code, f"one of {valid}") from None


# =============================================================================
#  ROM TYPES
# =============================================================================

class RomType(_CodedEnum):
    """ROM chip families served by SDRR."""
    ROM_2316 = 0     # 2KB, 11 address lines, CS1/CS2/CS3
    ROM_2332 = 1     # 4KB, 12 address lines, CS1/CS2
    ROM_2364 = 2     # 8KB, 13 address lines, CS1
    ROM_23128 = 3    # 16KB, 14 address lines, CE/OE

    def __str__(self) -> str:
        return self.name[4:]

    @property
    def address_bits(self) -> int:
        return _ADDRESS_BITS[self]

    @property
    def size(self) -> int:
        """ROM size in bytes."""
        return 1 << self.address_bits

    @property
    def address_mask(self) -> int:
        return self.size - 1

    @property
    def supports_cs2(self) -> bool:
        return self in (RomType.ROM_2316, RomType.ROM_2332)

    @property
    def supports_cs3(self) -> bool:
        return self is RomType.ROM_2316


_ADDRESS_BITS = {
    RomType.ROM_2316: 11,
    RomType.ROM_2332: 12,
    RomType.ROM_2364: 13,
    RomType.ROM_23128: 14,
}


class CsState(_CodedEnum):
    """Active state of a chip-select line."""
    ACTIVE_LOW = 0
    ACTIVE_HIGH = 1
    NOT_USED = 2

    def __str__(self) -> str:
        return {0: "Active Low", 1: "Active High", 2: "Not Used"}[self.value]

    def is_active(self, level: bool) -> bool:
        """True if a line at ``level`` (True = high) satisfies this state."""
        if self is CsState.NOT_USED:
            return True
        return level if self is CsState.ACTIVE_HIGH else not level

    @property
    def active_level(self) -> Optional[bool]:
        """Line level that selects the chip, or None if the line is unused."""
        if self is CsState.NOT_USED:
            return None
        return self is CsState.ACTIVE_HIGH


class ServeAlgorithm(_CodedEnum):
    """How the firmware serves bytes for a ROM set."""
    TWO_CS_ONE_ADDR = 0
    ADDR_ON_CS = 1
    ADDR_ON_ANY_CS = 2

    def __str__(self) -> str:
        return {
            0: "Two CS checks every address check",
            1: "Check address only on CS active",
            2: "Check address on any CS active",
        }[self.value]


# =============================================================================
#  MCU
# =============================================================================

class Port(_CodedEnum):
    """GPIO port used for a pin group."""
    NONE = 0
    A = 1
    B = 2
    C = 3
    D = 4

    def __str__(self) -> str:
        return "None" if self is Port.NONE else self.name


class McuLine(_CodedEnum):
    """STM32F4 product line."""
    F401DE = 0
    F405 = 1
    F411 = 2
    F446 = 3
    F401BC = 4

    def __str__(self) -> str:
        return f"STM32{self.name}"

    @property
    def ram_kb(self) -> int:
        """SRAM size, excluding any CCM RAM."""
        if self is McuLine.F401DE:
            return 96
        if self is McuLine.F401BC:
            return 64
        return 128


class McuStorage(_CodedEnum):
    """Flash size code, e.g. 'E' in STM32F401RET6."""
    STORAGE_8 = 0
    STORAGE_B = 1
    STORAGE_C = 2
    STORAGE_D = 3
    STORAGE_E = 4
    STORAGE_F = 5
    STORAGE_G = 6

    @property
    def package_code(self) -> str:
        return self.name[-1]

    @property
    def kb(self) -> int:
        return (64, 128, 256, 384, 512, 768, 1024)[self.value]

    def __str__(self) -> str:
        return f"{self.package_code} ({self.kb}KB)"


class SizeHandling(Enum):
    """What to do when a ROM file is smaller than its ROM type."""
    NONE = "none"
    DUPLICATE = "duplicate"
    PAD = "pad"


__all__ = [
    'RomType', 'CsState', 'ServeAlgorithm', 'Port', 'McuLine', 'McuStorage',
    'SizeHandling',
]
