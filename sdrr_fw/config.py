"""
SDRR Firmware Tools - Decoder Configuration
============================================

Memory-map constants for the STM32F4 family SDRR targets, and the
``DecoderConfig`` value handed to each ``FirmwareDecoder``.

The version ceiling lives on the config rather than as a module global so
two decoders can target different firmware generations side by side
(e.g. replaying an old image with an older ceiling in a test).
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from .model import FirmwareVersion


# =============================================================================
#  TARGET MEMORY MAP
# =============================================================================
STM32F4_FLASH_BASE = 0x08000000   # Flash start; all firmware pointers are >= this
SDRR_INFO_OFFSET = 0x200          # sdrr_info sits just after the vector table

# =============================================================================
#  STRING RESOLUTION
# =============================================================================
STRING_READ_CHUNK = 64            # Bytes fetched per string read
STRING_MAX_LEN = 1024             # Give up if no terminator within this many bytes

# =============================================================================
#  SUPPORTED FIRMWARE
# =============================================================================
MAX_SUPPORTED_VERSION = FirmwareVersion(0, 2, 1)

# =============================================================================
#  ROM SET IMAGE SIZES
# =============================================================================
SINGLE_ROM_IMAGE_SIZE = 16384     # 14 physical address lines (A0-A12 + CS)
MULTI_ROM_IMAGE_SIZE = 65536      # 16 physical address lines (+ X1/X2)

# =============================================================================
#  DEBUG PROBE (GDB remote serial protocol over a serial port)
# =============================================================================
PROBE_BAUD = 115200       # Ignored by USB CDC probes, needed by UART bridges
PROBE_TIMEOUT = 2.0       # Seconds per serial read/write
PROBE_MAX_PACKET = 256    # Bytes requested per 'm' packet
PROBE_RETRIES = 3         # Resends on a NAK or bad reply checksum


@dataclass(frozen=True)
class DecoderConfig:
    """
    Where to find the header and what this decoder will accept.

    Attributes:
        base_address: Absolute address of the start of the image (flash base).
        header_offset: Offset of the SDRR header from base_address.
        max_version: Newest firmware version this decoder will decode.
        string_chunk: Bytes read per chunk when resolving strings.
        string_max_len: Hard cap on string length.
    """
    base_address: int = STM32F4_FLASH_BASE
    header_offset: int = SDRR_INFO_OFFSET
    max_version: FirmwareVersion = MAX_SUPPORTED_VERSION
    string_chunk: int = STRING_READ_CHUNK
    string_max_len: int = STRING_MAX_LEN

    def __post_init__(self):
        if self.string_chunk < 1:
            raise ValueError(f"string_chunk must be at least 1, got {self.string_chunk}")
        if self.string_max_len < 1:
            raise ValueError(f"string_max_len must be at least 1, got {self.string_max_len}")

    @property
    def header_address(self) -> int:
        return self.base_address + self.header_offset

    def with_max_version(self, major: int, minor: int, patch: int) -> "DecoderConfig":
        return replace(self, max_version=FirmwareVersion(major, minor, patch))


DEFAULT_CONFIG = DecoderConfig()
