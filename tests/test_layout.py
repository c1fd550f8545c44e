"""
Layout table tests.

Checks record sizes and field offsets against the firmware's C structs,
and that pack/unpack agree.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from sdrr_fw.layout import (
    HEADER, PINS, PIN_UNUSED, ROM_INFO_BASIC, ROM_INFO_LOGGING, ROM_SET,
    RUNTIME_INFO, rom_info_layout,
)


class TestSizes:
    """Record sizes are fixed by the firmware."""

    def test_record_sizes(self):
        assert HEADER.size == 56
        assert ROM_SET.size == 16
        assert ROM_INFO_BASIC.size == 4
        assert ROM_INFO_LOGGING.size == 8
        assert PINS.size == 64
        assert RUNTIME_INFO.size == 20

    def test_magics(self):
        assert HEADER.magic == b"SDRR"
        assert RUNTIME_INFO.magic == b"sdrr"
        assert ROM_SET.magic is None

    def test_rom_info_width_follows_boot_logging(self):
        assert rom_info_layout(False) is ROM_INFO_BASIC
        assert rom_info_layout(True) is ROM_INFO_LOGGING


class TestOffsets:
    """Field offsets match the on-device structures."""

    def test_header_offsets(self):
        cases = [
            ("magic", 0), ("major", 4), ("build", 10), ("build_date_ptr", 12),
            ("commit", 16), ("hw_rev_ptr", 24), ("stm_line", 28),
            ("stm_storage", 30), ("freq", 32), ("overclock", 34),
            ("mco_enabled", 40), ("rom_set_count", 41), ("count_rom_access", 42),
            ("rom_sets_ptr", 44), ("pins_ptr", 48), ("boot_config", 52),
        ]
        for name, offset in cases:
            assert HEADER.offset_of(name) == offset, name

    def test_pins_offsets(self):
        cases = [
            ("data_port", 0), ("status_port", 4), ("rom_pins", 5), ("data", 8),
            ("addr", 16), ("cs1_2364", 36), ("cs3_2316", 41), ("x1", 42),
            ("x2", 43), ("ce_23128", 44), ("oe_23128", 45), ("sel", 52),
            ("status", 60),
        ]
        for name, offset in cases:
            assert PINS.offset_of(name) == offset, name

    def test_rom_set_and_runtime_offsets(self):
        assert ROM_SET.offset_of("roms_ptr") == 8
        assert ROM_SET.offset_of("multi_rom_cs1_state") == 14
        assert RUNTIME_INFO.offset_of("access_count") == 8
        assert RUNTIME_INFO.offset_of("rom_table_size") == 16

    def test_unknown_field(self):
        with pytest.raises(KeyError):
            HEADER.offset_of("nope")


class TestPackUnpack:
    """pack() and unpack() are inverses over named fields."""

    def test_header_defaults(self):
        raw = HEADER.pack(major=0, minor=2, patch=1, rom_set_count=3)
        assert len(raw) == 56
        assert raw[:4] == b"SDRR"
        fields = HEADER.unpack(raw)
        assert (fields["major"], fields["minor"], fields["patch"]) == (0, 2, 1)
        assert fields["rom_set_count"] == 3
        assert fields["commit"] == b"\x00" * 8

    def test_little_endian(self):
        raw = ROM_SET.pack(data_ptr=0x08004000, size=0x4000)
        assert raw[:4] == bytes([0x00, 0x40, 0x00, 0x08])
        assert raw[4:8] == bytes([0x00, 0x40, 0x00, 0x00])

    def test_pin_arrays_pad_with_unused(self):
        raw = PINS.pack(data=range(8), addr=range(13))
        fields = PINS.unpack(raw)
        assert fields["data"] == tuple(range(8))
        assert fields["addr"] == tuple(range(13)) + (PIN_UNUSED,) * 3
        assert fields["x1"] == PIN_UNUSED
        assert fields["sel"] == (PIN_UNUSED,) * 4

    def test_reserved_bytes_zero(self):
        raw = PINS.pack(data=range(8), addr=range(16))
        assert raw[6:8] == b"\x00\x00"
        assert raw[46:52] == b"\x00" * 6
        assert raw[61:64] == b"\x00" * 3

    def test_unknown_field_rejected(self):
        with pytest.raises(KeyError):
            ROM_SET.pack(bogus=1)

    def test_runtime_info_roundtrip(self):
        raw = RUNTIME_INFO.pack(image_sel=3, rom_set_index=1, count_rom_access=1,
                                access_count=123456, rom_table_ptr=0x20000100,
                                rom_table_size=0x4000)
        fields = RUNTIME_INFO.unpack(raw)
        assert fields["magic"] == b"sdrr"
        assert fields["runtime_info_size"] == 20
        assert fields["access_count"] == 123456
        assert fields["rom_table_ptr"] == 0x20000100
