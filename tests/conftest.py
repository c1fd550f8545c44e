"""
Shared fixtures: a 24-pin STM32F4 board pin map and ROM content factory.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from sdrr_fw.model import PinConfiguration
from sdrr_fw.types import Port, RomType

BASE = 0x08000000

# Port C bit for A0..A12, as routed on a 24-pin board. Unused slots are 255.
BOARD_ADDR = (5, 4, 6, 7, 3, 2, 1, 0, 8, 13, 11, 12, 9, 255, 255, 255)
BOARD_DATA = (3, 2, 1, 0, 7, 6, 5, 4)


def board_pins() -> PinConfiguration:
    return PinConfiguration(
        data=BOARD_DATA,
        addr=BOARD_ADDR,
        data_port=Port.A,
        addr_port=Port.C,
        cs_port=Port.C,
        sel_port=Port.B,
        status_port=Port.B,
        rom_pins=24,
        cs1_2364=10,
        cs1_2332=10,
        cs1_2316=10,
        cs2_2332=9,
        cs2_2316=12,
        cs3_2316=9,
        x1=14,
        x2=15,
        sel=(0, 1, 2, 7),
        status=15,
    )


def rom_data(rom_type: RomType, seed: int = 0) -> bytes:
    """Deterministic ROM contents that differ between neighbouring addresses."""
    return bytes(((i * 37) ^ (i >> 7) ^ seed) & 0xFF for i in range(rom_type.size))


@pytest.fixture(scope="session")
def pins():
    return board_pins()


@pytest.fixture(scope="session")
def make_rom():
    return rom_data
