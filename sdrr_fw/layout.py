"""
SDRR Firmware Tools - Binary Layout Tables
===========================================

Fixed-offset descriptions of every structure the firmware embeds. Pure
data: the decoder reads records through these, the tests and the image
builder pack records through them.

All structures are little-endian with no implicit alignment:

  ┌────────────────┬──────┬─────────┐
  │ Structure      │ Size │ Magic   │
  ├────────────────┼──────┼─────────┤
  │ HEADER         │  56  │ "SDRR"  │
  │ ROM_SET        │  16  │         │
  │ ROM_INFO_BASIC │   4  │         │
  │ ROM_INFO_LOG   │   8  │         │  (boot logging builds)
  │ PINS           │  64  │         │
  │ RUNTIME_INFO   │  20  │ "sdrr"  │
  └────────────────┴──────┴─────────┘
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

__all__ = [
    'Field', 'StructLayout', 'PIN_UNUSED',
    'HEADER', 'ROM_SET', 'ROM_INFO_BASIC', 'ROM_INFO_LOGGING', 'PINS',
    'RUNTIME_INFO', 'rom_info_layout',
]

PIN_UNUSED = 255


@dataclass(frozen=True)
class Field:
    """
    One field of a record.

    ``code`` is a single struct code ('B', 'H', 'I', 's' or 'x'). For 'B'
    with count > 1 the field unpacks to a tuple; for 's' count is the byte
    length; 'x' is reserved padding and has no name.
    """
    name: Optional[str]
    code: str
    count: int = 1
    default: Any = 0

    @property
    def fmt(self) -> str:
        return self.code if self.count == 1 else f"{self.count}{self.code}"

    @property
    def is_array(self) -> bool:
        return self.code not in ("s", "x") and self.count > 1


def _pad(n: int) -> Field:
    return Field(None, "x", n)


class StructLayout:
    """Ordered field table for one fixed-size structure."""

    def __init__(self, name: str, fields: List[Field], size: int,
                 magic: Optional[bytes] = None):
        self.name = name
        self.fields = tuple(fields)
        self.magic = magic
        self._struct = struct.Struct("<" + "".join(f.fmt for f in self.fields))
        if self._struct.size != size:
            raise ValueError(
                f"{name} layout is {self._struct.size} bytes, expected {size}"
            )
        self.size = size

    def __repr__(self) -> str:
        return f"StructLayout({self.name!r}, size={self.size})"

    def offset_of(self, field_name: str) -> int:
        """Byte offset of a named field from the start of the record."""
        off = 0
        for f in self.fields:
            if f.name == field_name:
                return off
            off += struct.calcsize("<" + f.fmt)
        raise KeyError(field_name)

    def unpack(self, buf: bytes) -> Dict[str, Any]:
        """Decode ``buf[:size]`` into a field dict. Caller checks length."""
        values = self._struct.unpack_from(buf, 0)
        out: Dict[str, Any] = {}
        i = 0
        for f in self.fields:
            if f.code == "x":
                continue
            if f.is_array:
                out[f.name] = tuple(values[i:i + f.count])
                i += f.count
            else:
                out[f.name] = values[i]
                i += 1
        return out

    def pack(self, **values: Any) -> bytes:
        """
        Encode a record. Unnamed fields use their defaults; the magic
        field, if any, defaults to the layout's magic.
        """
        flat: List[Any] = []
        known = set()
        for f in self.fields:
            if f.code == "x":
                continue
            known.add(f.name)
            if f.name in values:
                value = values[f.name]
            elif f.name == "magic" and self.magic is not None:
                value = self.magic
            else:
                value = f.default
            if f.is_array:
                seq = list(value)
                if len(seq) < f.count:
                    seq += [f.default] * (f.count - len(seq))
                flat.extend(seq[:f.count])
            else:
                flat.append(value)
        unknown = set(values) - known
        if unknown:
            raise KeyError(f"{self.name} has no field(s) {sorted(unknown)}")
        return self._struct.pack(*flat)


# =============================================================================
#  FIRMWARE HEADER
# =============================================================================
HEADER = StructLayout("header", [
    Field("magic", "s", 4, b"SDRR"),
    Field("major", "H"),
    Field("minor", "H"),
    Field("patch", "H"),
    Field("build", "H"),
    Field("build_date_ptr", "I"),
    Field("commit", "s", 8, b""),
    Field("hw_rev_ptr", "I"),
    Field("stm_line", "H"),
    Field("stm_storage", "H"),
    Field("freq", "H"),
    Field("overclock", "B"),
    Field("swd_enabled", "B"),
    Field("preload_image_to_ram", "B"),
    Field("bootloader_capable", "B"),
    Field("status_led_enabled", "B"),
    Field("boot_logging_enabled", "B"),
    Field("mco_enabled", "B"),
    Field("rom_set_count", "B"),
    Field("count_rom_access", "B"),     # zero in firmware predating access counting
    _pad(1),
    Field("rom_sets_ptr", "I"),
    Field("pins_ptr", "I"),
    Field("boot_config", "s", 4, b""),
], size=56, magic=b"SDRR")

# =============================================================================
#  ROM SETS
# =============================================================================
ROM_SET = StructLayout("rom_set", [
    Field("data_ptr", "I"),
    Field("size", "I"),
    Field("roms_ptr", "I"),             # -> array of rom_count u32 RomInfo pointers
    Field("rom_count", "B"),
    Field("serve", "B"),
    Field("multi_rom_cs1_state", "B"),
    _pad(1),
], size=16)

_ROM_INFO_FIELDS = [
    Field("rom_type", "B"),
    Field("cs1_state", "B"),
    Field("cs2_state", "B"),
    Field("cs3_state", "B"),
]

ROM_INFO_BASIC = StructLayout("rom_info", list(_ROM_INFO_FIELDS), size=4)

ROM_INFO_LOGGING = StructLayout("rom_info", _ROM_INFO_FIELDS + [
    Field("filename_ptr", "I"),
], size=8)


def rom_info_layout(boot_logging: bool) -> StructLayout:
    """RomInfo width follows the header's boot-logging flag."""
    return ROM_INFO_LOGGING if boot_logging else ROM_INFO_BASIC


# =============================================================================
#  PIN CONFIGURATION
# =============================================================================
_U = PIN_UNUSED

PINS = StructLayout("pins", [
    Field("data_port", "B"),
    Field("addr_port", "B"),
    Field("cs_port", "B"),
    Field("sel_port", "B"),
    Field("status_port", "B"),
    Field("rom_pins", "B"),
    _pad(2),
    Field("data", "B", 8, _U),
    Field("addr", "B", 16, _U),
    _pad(4),
    Field("cs1_2364", "B", default=_U),
    Field("cs1_2332", "B", default=_U),
    Field("cs1_2316", "B", default=_U),
    Field("cs2_2332", "B", default=_U),
    Field("cs2_2316", "B", default=_U),
    Field("cs3_2316", "B", default=_U),
    Field("x1", "B", default=_U),
    Field("x2", "B", default=_U),
    Field("ce_23128", "B", default=_U),
    Field("oe_23128", "B", default=_U),
    _pad(6),
    Field("sel", "B", 4, _U),
    _pad(4),
    Field("status", "B", default=_U),
    _pad(3),
], size=64)

# =============================================================================
#  RUNTIME INFO (RAM, live devices only)
# =============================================================================
RUNTIME_INFO = StructLayout("runtime_info", [
    Field("magic", "s", 4, b"sdrr"),
    Field("runtime_info_size", "B", default=20),
    Field("image_sel", "B"),
    Field("rom_set_index", "B"),
    Field("count_rom_access", "B"),
    Field("access_count", "I"),
    Field("rom_table_ptr", "I"),
    Field("rom_table_size", "I"),
], size=20, magic=b"sdrr")
