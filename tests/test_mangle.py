"""
Address and data bit mangling tests.

Covers the data line permutation, logical <-> physical address mapping for
every ROM type, pin conflict detection and multi-ROM selection.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import itertools
from dataclasses import replace

import pytest
from sdrr_fw.errors import AddressOverflow, PinConfigError, PinConflict
from sdrr_fw.mangle import (
    X1_BIT, AddressBitMap, AddressMangler, ByteDemangler, LogicalAddress, select_rom,
)
from sdrr_fw.model import PinConfiguration, RomInfo
from sdrr_fw.types import CsState, RomType

CS_ROM_TYPES = (RomType.ROM_2316, RomType.ROM_2332, RomType.ROM_2364)


def _mangler(pins, rom_type, multi_rom=False) -> AddressMangler:
    return AddressMangler(AddressBitMap.build(pins, rom_type, multi_rom))


def _sample_addresses(rom_type):
    mask = rom_type.address_mask
    return sorted({0, 1, 2, 0x55 & mask, 0x2AA & mask, 0x555 & mask,
                   rom_type.size // 2, mask - 1, mask})


def _cs_combos(rom_type):
    n = 1 + rom_type.supports_cs2 + rom_type.supports_cs3
    for combo in itertools.product((False, True), repeat=n):
        levels = list(combo) + [None] * (3 - n)
        yield tuple(levels)


# ═══════════════════════════════════════════════════════════════
# Data lines
# ═══════════════════════════════════════════════════════════════

class TestByteDemangler:
    """Data line permutation."""

    def test_reversed_data_lines(self):
        """D0 wired to port bit 7: physical 0x01 is logical 0x80."""
        d = ByteDemangler([7, 6, 5, 4, 3, 2, 1, 0])
        assert d.demangle(0x01) == 0x80
        assert d.mangle(0x80) == 0x01
        assert d.demangle(0x0F) == 0xF0

    def test_identity(self):
        d = ByteDemangler(range(8))
        assert all(d.demangle(b) == b for b in range(256))

    def test_mangle_inverts_demangle(self, pins):
        d = ByteDemangler(pins.data)
        for b in range(256):
            assert d.demangle(d.mangle(b)) == b
            assert d.mangle(d.demangle(b)) == b

    def test_single_bit_moves_to_its_pin(self, pins):
        d = ByteDemangler(pins.data)
        for logical, physical in enumerate(pins.data):
            assert d.mangle(1 << logical) == 1 << physical

    def test_bulk_helpers(self, pins):
        d = ByteDemangler(pins.data)
        data = bytes(range(256))
        assert d.demangle_bytes(d.mangle_bytes(data)) == data
        assert d.mangle_bytes(data)[0x01] == d.mangle(0x01)

    @pytest.mark.parametrize("data_pins", [
        [0, 1, 2, 3, 4, 5, 6],          # seven lines
        [0, 0, 2, 3, 4, 5, 6, 7],       # duplicate
        [0, 1, 2, 3, 4, 5, 6, 8],       # not on the byte
    ])
    def test_invalid_pins(self, data_pins):
        with pytest.raises(PinConfigError):
            ByteDemangler(data_pins)

    def test_byte_out_of_range(self):
        with pytest.raises(ValueError):
            ByteDemangler(range(8)).demangle(256)


# ═══════════════════════════════════════════════════════════════
# Address lines
# ═══════════════════════════════════════════════════════════════

class TestAddressMangler:
    """Logical address + line levels <-> physical port value."""

    def test_straight_wired_2364(self):
        """A0-A12 on bits 0-12, CS1 on bit 13."""
        pins = PinConfiguration(data=(7, 6, 5, 4, 3, 2, 1, 0), addr=tuple(range(13)),
                                cs1_2364=13)
        m = _mangler(pins, RomType.ROM_2364)
        assert m.mangle(0x0000, cs1=True) == 0x2000
        assert m.mangle(0x0000, cs1=False) == 0x0000
        assert m.mangle(0x1FFF, cs1=False) == 0x1FFF
        assert m.demangle(0x2001) == LogicalAddress(0x0001, cs1=True)

    def test_board_routing(self, pins):
        m = _mangler(pins, RomType.ROM_2364)
        assert m.mangle(1, cs1=False) == 1 << 5          # A0 on bit 5
        assert m.mangle(1 << 9, cs1=False) == 1 << 13    # A9 on bit 13
        assert m.mangle(0, cs1=True) == 1 << 10          # CS1 on bit 10

    def test_2316_chip_selects_use_their_own_pins(self, pins):
        m = _mangler(pins, RomType.ROM_2316)
        assert m.mangle(0, cs1=True, cs2=False, cs3=False) == 1 << 10
        assert m.mangle(0, cs1=False, cs2=True, cs3=False) == 1 << 12
        assert m.mangle(0, cs1=False, cs2=False, cs3=True) == 1 << 9

    def test_2332_cs2_on_a12_pin(self, pins):
        """Address pins above the type's width double as chip selects."""
        bitmap = AddressBitMap.build(pins, RomType.ROM_2332)
        assert bitmap.owners[9] == "CS2"
        assert _mangler(pins, RomType.ROM_2332).mangle(0, cs1=False, cs2=True) == 1 << 9

    @pytest.mark.parametrize("rom_type", CS_ROM_TYPES, ids=str)
    def test_round_trip(self, pins, rom_type):
        m = _mangler(pins, rom_type)
        for address in _sample_addresses(rom_type):
            for cs1, cs2, cs3 in _cs_combos(rom_type):
                physical = m.mangle(address, cs1, cs2, cs3)
                assert m.demangle(physical) == LogicalAddress(address, cs1, cs2, cs3), \
                    f"{rom_type} 0x{address:04X} cs={cs1},{cs2},{cs3}"

    def test_round_trip_multi_rom(self, pins):
        m = _mangler(pins, RomType.ROM_2364, multi_rom=True)
        for address in _sample_addresses(RomType.ROM_2364):
            for cs1, x1, x2 in itertools.product((False, True), repeat=3):
                physical = m.mangle(address, cs1, x1=x1, x2=x2)
                assert m.demangle(physical) == LogicalAddress(address, cs1, x1=x1, x2=x2)

    def test_x_lines_ignored_for_single_rom(self, pins):
        m = _mangler(pins, RomType.ROM_2364)
        assert m.mangle(0, cs1=False, x1=True, x2=True) == 0
        assert m.demangle(0xFFFF).x1 is None

    def test_23128_has_fourteen_address_lines(self, pins):
        pins = replace(pins, addr=pins.addr[:13] + (10, 255, 255))
        m = _mangler(pins, RomType.ROM_23128)
        assert m.mangle(1 << 13, cs1=False) == 1 << 10
        assert m.mangle(0, cs1=True) == 0
        la = m.demangle(m.mangle(0x3ABC, cs1=False))
        assert la == LogicalAddress(0x3ABC)

    @pytest.mark.parametrize("rom_type", CS_ROM_TYPES, ids=str)
    def test_address_boundary(self, pins, rom_type):
        m = _mangler(pins, rom_type)
        m.mangle(rom_type.size - 1, cs1=False)
        with pytest.raises(AddressOverflow) as exc:
            m.mangle(rom_type.size, cs1=False)
        assert exc.value.mask == rom_type.address_mask
        with pytest.raises(AddressOverflow):
            m.mangle(-1, cs1=False)

    def test_pin_for_bit(self, pins):
        bitmap = AddressBitMap.build(pins, RomType.ROM_2364)
        assert bitmap.pin_for_bit(0) == 5
        assert bitmap.pin_for_bit(13) == 10
        assert bitmap.pin_for_bit(X1_BIT) is None
        assert bitmap.owners[10] == "CS1"


class TestPinValidation:
    """Shared or missing pins are rejected when the bit map is built."""

    def test_x1_on_address_pin(self, pins):
        with pytest.raises(PinConflict) as exc:
            AddressBitMap.build(replace(pins, x1=3), RomType.ROM_2364, multi_rom=True)
        assert exc.value.line == "X1"
        assert exc.value.pin == 3
        assert exc.value.claimed_by == "A4"

    def test_x1_not_checked_for_single_rom(self, pins):
        AddressBitMap.build(replace(pins, x1=3), RomType.ROM_2364)

    def test_cs_on_address_pin(self, pins):
        with pytest.raises(PinConflict) as exc:
            AddressBitMap.build(replace(pins, cs1_2364=0), RomType.ROM_2364)
        assert exc.value.claimed_by == "A7"

    def test_duplicate_address_pin(self, pins):
        addr = (0, 0) + pins.addr[2:]
        with pytest.raises(PinConflict):
            AddressBitMap.build(replace(pins, addr=addr), RomType.ROM_2364)

    def test_missing_cs_pin(self, pins):
        with pytest.raises(PinConfigError) as exc:
            AddressBitMap.build(replace(pins, cs1_2364=255), RomType.ROM_2364)
        assert not isinstance(exc.value, PinConflict)

    @pytest.mark.parametrize("rom_type", CS_ROM_TYPES + (RomType.ROM_23128,), ids=str)
    def test_unrouted_address_pin(self, pins, rom_type):
        """An address line with no port bit would alias two addresses."""
        pins = replace(pins, addr=pins.addr[:13] + (10, 255, 255))
        top = rom_type.address_bits - 1
        addr = list(pins.addr)
        addr[top] = 255
        with pytest.raises(PinConfigError) as exc:
            AddressBitMap.build(replace(pins, addr=tuple(addr)), rom_type)
        assert f"A{top} pin" in str(exc.value)

    def test_23128_on_board_pins(self, pins):
        """The board map routes only 13 address lines, one short for a 23128."""
        with pytest.raises(PinConfigError):
            AddressBitMap.build(pins, RomType.ROM_23128)

    def test_too_few_address_pins(self, pins):
        with pytest.raises(PinConfigError):
            AddressBitMap.build(replace(pins, addr=pins.addr[:12]), RomType.ROM_2364)

    def test_x2_off_port_for_multi_rom(self, pins):
        with pytest.raises(PinConfigError):
            AddressBitMap.build(replace(pins, x2=255), RomType.ROM_2364, multi_rom=True)


# ═══════════════════════════════════════════════════════════════
# Multi-ROM selection
# ═══════════════════════════════════════════════════════════════

IDLE = (1 << 10) | (1 << 14) | (1 << 15)     # CS1, X1, X2 all high


class TestSelectRom:
    """Which ROM of a set answers a physical port value."""

    def test_active_low_set(self, pins):
        roms = [RomInfo(RomType.ROM_2364, CsState.ACTIVE_LOW)] * 3
        assert select_rom(roms, IDLE, pins) is None
        assert select_rom(roms, IDLE & ~(1 << 10), pins) == 0
        assert select_rom(roms, IDLE & ~(1 << 14), pins) == 1
        assert select_rom(roms, IDLE & ~(1 << 15), pins) == 2

    def test_first_match_wins(self, pins):
        roms = [RomInfo(RomType.ROM_2364, CsState.ACTIVE_LOW)] * 3
        assert select_rom(roms, 0, pins) == 0
        assert select_rom(roms, 1 << 10, pins) == 1

    def test_active_high(self, pins):
        roms = [RomInfo(RomType.ROM_2364, CsState.ACTIVE_HIGH)] * 2
        assert select_rom(roms, 0, pins) is None
        assert select_rom(roms, 1 << 10, pins) == 0
        assert select_rom(roms, 1 << 14, pins) == 1

    def test_two_rom_set_ignores_x2(self, pins):
        roms = [RomInfo(RomType.ROM_2364, CsState.ACTIVE_LOW)] * 2
        assert select_rom(roms, (1 << 10) | (1 << 15), pins) == 1
        assert select_rom(roms, (1 << 10) | (1 << 14), pins) is None

    def test_cs2_must_hold(self, pins):
        roms = [RomInfo(RomType.ROM_2332, CsState.ACTIVE_LOW, CsState.ACTIVE_HIGH)]
        assert select_rom(roms, 1 << 9, pins) == 0
        assert select_rom(roms, 0, pins) is None

    def test_unused_cs2_ignored(self, pins):
        roms = [RomInfo(RomType.ROM_2332, CsState.ACTIVE_LOW, CsState.NOT_USED)]
        assert select_rom(roms, 0, pins) == 0
        assert select_rom(roms, 1 << 9, pins) == 0
