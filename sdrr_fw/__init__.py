"""
SDRR Firmware Tools
===================
Decoder and address/data bit-mangling engine for Software Defined Retro
ROM (SDRR) firmware images: STM32F4 firmware that serves 2316/2332/2364
(and 23128) ROM contents from its GPIO ports.

Architecture:
    ┌────────────┐    ┌─────────────────┐    ┌─────────────────┐    ┌────────────────┐
    │ ByteSource │───>│ PointerResolver │───>│ FirmwareDecoder │───>│ FirmwareImage  │
    │ file/probe │    │ (bounds, str)   │    │ (ParseReport)   │    │ (frozen model) │
    └────────────┘    └─────────────────┘    └─────────────────┘    └───────┬────────┘
                                                                            │ lookup
                                                                            ▼
    ┌────────────┐    ┌─────────────────────────────────────┐    ┌────────────────┐
    │ RomImage   │───>│ build_rom_set_image, FirmwareWriter │<───│ AddressMangler │
    │ (logical)  │    │ (mangled set images)                │    │ ByteDemangler  │
    └────────────┘    └─────────────────────────────────────┘    └────────────────┘

    - source.py / probe.py:  where bytes come from (memory, file, live probe)
    - layout.py:             fixed-offset record tables
    - pointers.py:           pointer -> bounded read, null-terminated strings
    - decoder.py:            header -> version -> strings -> ROM sets -> pins
    - mangle.py:             pin permutation, both directions
    - builder.py:            logical ROMs -> mangled images -> flat firmware
    - elf.py / loader.py:    .elf/.bin files -> decoded FirmwareImage
"""

__version__ = "0.2.1"

from .errors import *
from .types import CsState, McuLine, McuStorage, Port, RomType, ServeAlgorithm, SizeHandling
from .model import (
    FirmwareImage, FirmwareVersion, ParseError, PinConfiguration, RomInfo, RomSet,
    RuntimeInfo,
)
from .config import DEFAULT_CONFIG, DecoderConfig
from .mangle import AddressBitMap, AddressMangler, ByteDemangler, LogicalAddress, select_rom
from .source import ByteSource, FileSource, MemorySource
from .probe import GdbRemoteSource
from .decoder import FirmwareDecoder, ParseReport, decode_firmware, decode_runtime_info
from .builder import FirmwareWriter, RomImage, build_rom_set_image
from .loader import FileType, LoadedFirmware, load_firmware


def decode_bytes(data: bytes, config: DecoderConfig = DEFAULT_CONFIG) -> FirmwareImage:
    """Decode a flat firmware image held in memory (first byte at config.base_address)."""
    return decode_firmware(MemorySource(data, config.base_address), config)
