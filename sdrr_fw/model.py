"""
Decoded firmware model.

Everything here is an immutable value: frozen dataclasses, tuples and
bytes. All variable-length data (ROM images, strings) is copied out during
decode, so a ``FirmwareImage`` is self-contained once the source that
produced it has been closed, and can be shared between threads freely.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from .errors import OutOfBounds, PinConfigError
from .layout import PIN_UNUSED
from .mangle import AddressBitMap, AddressMangler, ByteDemangler
from .types import CsState, McuLine, McuStorage, Port, RomType, ServeAlgorithm

__all__ = [
    'FirmwareVersion', 'ParseError', 'RomInfo', 'RomSet', 'PinConfiguration',
    'RuntimeInfo', 'FirmwareImage',
]


@dataclass(frozen=True, order=True)
class FirmwareVersion:
    """major.minor.patch ordering; the build number does not take part."""
    major: int
    minor: int
    patch: int
    build: int = field(default=0, compare=False)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"

    @property
    def full(self) -> str:
        return f"v{self} (build {self.build})"


@dataclass(frozen=True)
class ParseError:
    """A field that could not be decoded, and why."""
    path: str       # e.g. "rom_set[1].roms[2]"
    reason: str
    kind: str = ""  # exception class name

    def __str__(self) -> str:
        return f"{self.path}: {self.reason}"


# =============================================================================
#  ROMS
# =============================================================================

@dataclass(frozen=True)
class RomInfo:
    rom_type: RomType
    cs1: CsState
    cs2: CsState = CsState.NOT_USED
    cs3: CsState = CsState.NOT_USED
    filename: Optional[str] = None   # only present in boot-logging builds


@dataclass(frozen=True)
class RomSet:
    """
    One switchable set of 1-3 ROMs plus the mangled image serving them.

    ``roms`` holds only the ROMs that decoded; ``rom_count`` is what the
    firmware declared.
    """
    index: int
    data: bytes
    rom_count: int
    roms: Tuple[RomInfo, ...] = ()
    serve: Optional[ServeAlgorithm] = None
    multi_rom_cs1: Optional[CsState] = None

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_multi_rom(self) -> bool:
        return self.rom_count > 1


# =============================================================================
#  PINS
# =============================================================================

_CS_PIN_FIELDS = {
    RomType.ROM_2364: {"cs1": "cs1_2364"},
    RomType.ROM_2332: {"cs1": "cs1_2332", "cs2": "cs2_2332"},
    RomType.ROM_2316: {"cs1": "cs1_2316", "cs2": "cs2_2316", "cs3": "cs3_2316"},
    RomType.ROM_23128: {"cs1": "ce_23128", "cs2": "oe_23128"},
}


@dataclass(frozen=True)
class PinConfiguration:
    """
    Physical MCU port bit for every ROM socket line. 255 means unused.

    ``data[i]`` is the port bit carrying D<i>; ``addr[i]`` carries A<i>.
    """
    data: Tuple[int, ...]
    addr: Tuple[int, ...]
    data_port: Optional[Port] = Port.NONE
    addr_port: Optional[Port] = Port.NONE
    cs_port: Optional[Port] = Port.NONE
    sel_port: Optional[Port] = Port.NONE
    status_port: Optional[Port] = Port.NONE
    rom_pins: int = 24
    cs1_2364: int = PIN_UNUSED
    cs1_2332: int = PIN_UNUSED
    cs1_2316: int = PIN_UNUSED
    cs2_2332: int = PIN_UNUSED
    cs2_2316: int = PIN_UNUSED
    cs3_2316: int = PIN_UNUSED
    x1: int = PIN_UNUSED
    x2: int = PIN_UNUSED
    ce_23128: int = PIN_UNUSED
    oe_23128: int = PIN_UNUSED
    sel: Tuple[int, ...] = (PIN_UNUSED,) * 4
    status: int = PIN_UNUSED

    def cs_pin(self, line: str, rom_type: RomType) -> int:
        """Pin for chip-select ``line`` ('cs1'/'cs2'/'cs3') of a ROM type."""
        name = _CS_PIN_FIELDS[rom_type].get(line)
        return PIN_UNUSED if name is None else getattr(self, name)

    @property
    def used_addr(self) -> Tuple[int, ...]:
        return tuple(p for p in self.addr if p != PIN_UNUSED)

    def problems(self):
        """Invariant violations, as (field, value, expected) triples."""
        out = []
        data = list(self.data)
        if len(data) != 8 or len(set(data)) != 8 or any(p > 7 for p in data):
            out.append(("data", data, "8 distinct pins 0-7"))
        used = list(self.used_addr)
        if len(self.addr) > 16 or len(set(used)) != len(used):
            out.append(("addr", used, "at most 16 distinct pins"))
        return out

    def as_record(self) -> Dict[str, Any]:
        """Field dict suitable for ``layout.PINS.pack``."""
        rec = {}
        for name in self.__dataclass_fields__:
            value = getattr(self, name)
            if isinstance(value, Port):
                value = value.value
            elif value is None:
                value = 0
            rec[name] = value
        return rec


@dataclass(frozen=True)
class RuntimeInfo:
    """Live state the firmware keeps in RAM."""
    runtime_info_size: int
    image_sel: int
    rom_set_index: int
    count_rom_access: bool
    access_count: int
    rom_table_ptr: int
    rom_table_size: int


# =============================================================================
#  FIRMWARE IMAGE
# =============================================================================

@dataclass(frozen=True)
class FirmwareImage:
    """Everything decoded from one firmware image, plus any parse errors."""
    version: FirmwareVersion
    commit: bytes
    freq: int
    build_date: Optional[str] = None
    hw_rev: Optional[str] = None
    mcu_line: Optional[McuLine] = None
    mcu_storage: Optional[McuStorage] = None
    overclock: bool = False
    swd_enabled: bool = False
    preload_image_to_ram: bool = False
    bootloader_capable: bool = False
    status_led_enabled: bool = False
    boot_logging_enabled: bool = False
    mco_enabled: bool = False
    count_rom_access: bool = False
    rom_set_count: int = 0
    rom_sets_ptr: int = 0
    pins_ptr: int = 0
    boot_config: bytes = b"\x00" * 4
    rom_sets: Tuple[RomSet, ...] = ()
    pins: Optional[PinConfiguration] = None
    parse_errors: Tuple[ParseError, ...] = ()

    @property
    def commit_str(self) -> str:
        return self.commit.rstrip(b"\x00").decode("ascii", errors="replace")

    @property
    def has_errors(self) -> bool:
        return bool(self.parse_errors)

    # ──────────────────────────────────────────────
    # Accessors
    # ──────────────────────────────────────────────

    def rom_set(self, n: int) -> RomSet:
        for rs in self.rom_sets:
            if rs.index == n:
                return rs
        raise IndexError(f"ROM set {n} not present (decoded sets: "
                         f"{[rs.index for rs in self.rom_sets]})")

    def rom_set_image(self, n: int) -> bytes:
        """Mangled image bytes for ROM set n."""
        return self.rom_set(n).data

    def rom_infos(self, n: int) -> Tuple[RomInfo, ...]:
        return self.rom_set(n).roms

    def _require_pins(self) -> PinConfiguration:
        if self.pins is None:
            raise PinConfigError("Firmware has no decoded pin configuration")
        return self.pins

    def demangler(self) -> ByteDemangler:
        return ByteDemangler(self._require_pins().data)

    def mangler_for(self, n: int) -> AddressMangler:
        """Address mangler for ROM set n, keyed on the set's first ROM type."""
        rs = self.rom_set(n)
        if not rs.roms:
            raise PinConfigError(f"ROM set {n} has no decoded ROMs")
        bitmap = AddressBitMap.build(self._require_pins(), rs.roms[0].rom_type,
                                     rs.is_multi_rom)
        return AddressMangler(bitmap)

    # ──────────────────────────────────────────────
    # Byte lookups
    # ──────────────────────────────────────────────

    def lookup_raw(self, n: int, physical: int, mangled: bool = False) -> int:
        """Byte stored at a physical (already mangled) address in set n."""
        image = self.rom_set_image(n)
        if not 0 <= physical < len(image):
            raise OutOfBounds(physical, 1, len(image), f"rom_set[{n}] image")
        byte = image[physical]
        return byte if mangled else self.demangler().demangle(byte)

    def lookup(self, n: int, address: int, cs1: bool,
               cs2: Optional[bool] = None, cs3: Optional[bool] = None,
               x1: Optional[bool] = None, x2: Optional[bool] = None,
               mangled: bool = False) -> int:
        """
        Byte set n serves for a logical address with the given control line
        levels (True = high).
        """
        physical = self.mangler_for(n).mangle(address, cs1, cs2, cs3, x1, x2)
        return self.lookup_raw(n, physical, mangled)

    def lookup_range(self, n: int, start: int, end: int, cs1: bool,
                     cs2: Optional[bool] = None, cs3: Optional[bool] = None,
                     x1: Optional[bool] = None, x2: Optional[bool] = None,
                     mangled: bool = False) -> bytes:
        """Bytes for logical addresses start..end inclusive."""
        if end < start:
            raise ValueError(f"range end 0x{end:04X} before start 0x{start:04X}")
        mangler = self.mangler_for(n)
        image = self.rom_set_image(n)
        demangler = None if mangled else self.demangler()
        out = bytearray()
        for address in range(start, end + 1):
            physical = mangler.mangle(address, cs1, cs2, cs3, x1, x2)
            if physical >= len(image):
                raise OutOfBounds(physical, 1, len(image), f"rom_set[{n}] image")
            byte = image[physical]
            out.append(byte if demangler is None else demangler.demangle(byte))
        return bytes(out)
