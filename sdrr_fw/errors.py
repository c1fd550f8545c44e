"""
Exception hierarchy for the SDRR firmware tools.

Decode errors:  something is wrong with the bytes being inspected.
                A handful are fatal (the image cannot be decoded at all),
                the rest are recorded against a field path by the decoder
                and decoding carries on.

Mangle errors:  the caller asked for something the pin configuration or
                ROM type cannot represent. Raised straight back to the
                caller, never accumulated.

Build errors:   ROM data that cannot be turned into a ROM set image.
"""

from __future__ import annotations
from typing import Optional

__all__ = [
    'SdrrError',
    'DecodeError', 'FatalDecodeError', 'NotSdrrFirmware', 'UnsupportedVersion',
    'HeaderTruncated', 'SourceReadError', 'OutOfBounds', 'InvalidPointer',
    'StringTooLong', 'InvalidEncoding', 'InvalidFieldValue',
    'MangleError', 'AddressOverflow', 'PinConfigError', 'PinConflict',
    'BuildError', 'ElfFormatError',
]


class SdrrError(Exception):
    """Base class for every error raised by this package."""


# ──────────────────────────────────────────────
# Decode errors
# ──────────────────────────────────────────────

class DecodeError(SdrrError):
    """Problem with the firmware bytes themselves."""


class FatalDecodeError(DecodeError):
    """The image cannot be decoded at all."""


class NotSdrrFirmware(FatalDecodeError):
    """Magic bytes missing at the expected header location."""
    def __init__(self, address: int, found: bytes, expected: bytes = b"SDRR"):
        self.address = address
        self.found = found
        self.expected = expected
        super().__init__(
            f"No SDRR header at 0x{address:08X}: expected magic {expected!r}, "
            f"found {found!r}"
        )


class UnsupportedVersion(FatalDecodeError):
    """Firmware is newer than this decoder understands."""
    def __init__(self, found, maximum):
        self.found = found
        self.maximum = maximum
        super().__init__(
            f"SDRR firmware version v{found} unsupported - max version v{maximum}"
        )


class HeaderTruncated(FatalDecodeError):
    """Header region could not be read in full."""


class ElfFormatError(FatalDecodeError):
    """ELF file is malformed or lacks what is needed to flatten it."""


class SourceReadError(DecodeError):
    """The underlying ByteSource failed (I/O error, probe error reply, timeout)."""


class OutOfBounds(DecodeError):
    """A read fell outside the bytes a source can supply."""
    def __init__(self, address: int, length: int, limit: Optional[int] = None,
                 what: str = ""):
        self.address = address
        self.length = length
        self.limit = limit
        self.what = what
        label = f"{what} " if what else ""
        if limit is None:
            msg = f"{label}read of {length} bytes at 0x{address:08X} out of bounds"
        else:
            msg = (f"{label}read of {length} bytes at 0x{address:08X} out of bounds "
                   f"(source ends at 0x{limit:08X})")
        super().__init__(msg)


class InvalidPointer(DecodeError):
    """A pointer lies below the base address, so cannot point into the image."""
    def __init__(self, pointer: int, base: int, what: str = "pointer"):
        self.pointer = pointer
        self.base = base
        self.what = what
        super().__init__(
            f"Invalid {what}: 0x{pointer:08X} is below base address 0x{base:08X}"
        )


class StringTooLong(DecodeError):
    """No null terminator found within the string length cap."""
    def __init__(self, pointer: int, cap: int):
        self.pointer = pointer
        self.cap = cap
        super().__init__(f"String at 0x{pointer:08X} has no terminator within {cap} bytes")


class InvalidEncoding(DecodeError):
    """String bytes are not valid UTF-8."""
    def __init__(self, pointer: int, raw: bytes):
        self.pointer = pointer
        self.raw = raw
        super().__init__(f"String at 0x{pointer:08X} is not valid UTF-8")


class InvalidFieldValue(DecodeError):
    """An enumerated field holds a code this decoder does not know."""
    def __init__(self, field: str, value: int, expected: str = ""):
        self.field = field
        self.value = value
        self.expected = expected
        tail = f" (expected {expected})" if expected else ""
        super().__init__(f"Invalid {field} value {value}{tail}")


# ──────────────────────────────────────────────
# Mangle errors
# ──────────────────────────────────────────────

class MangleError(SdrrError):
    """Misuse of the address/data mangler."""


class AddressOverflow(MangleError):
    """Logical address does not fit the ROM type's address lines."""
    def __init__(self, address: int, rom_type, mask: int):
        self.address = address
        self.rom_type = rom_type
        self.mask = mask
        super().__init__(
            f"Requested address 0x{address:08X} overflows the address space for "
            f"ROM type {rom_type} (max 0x{mask:04X})"
        )


class PinConfigError(MangleError):
    """Pin configuration cannot support the requested operation."""


class PinConflict(PinConfigError):
    """Two logical lines claim the same physical pin."""
    def __init__(self, line: str, pin: int, claimed_by: str):
        self.line = line
        self.pin = pin
        self.claimed_by = claimed_by
        super().__init__(
            f"{line} pin {pin} collides with {claimed_by}, which already uses it"
        )


# ──────────────────────────────────────────────
# Build errors
# ──────────────────────────────────────────────

class BuildError(SdrrError):
    """A ROM image or ROM set cannot be built as requested."""
