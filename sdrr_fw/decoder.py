"""
SDRR Firmware Tools - Firmware Decoder
=======================================

Walks an SDRR firmware image through a ByteSource and produces a
``FirmwareImage``.

  ┌──────────────┐   ┌────────────────┐   ┌────────────────┐
  │ LocateHeader │──▶│ ValidateVersion│──▶│ ResolveStrings │
  └──────────────┘   └────────────────┘   └───────┬────────┘
        fatal               fatal                 │ recorded
                                                  ▼
                     ┌────────────────┐   ┌────────────────┐
                     │   DecodePins   │◀──│ DecodeRomSets  │
                     └───────┬────────┘   └────────────────┘
                             │ recorded          recorded
                             ▼
                       FirmwareImage

Only the first two steps can abort the decode. Everything after records a
path-qualified ParseError in a single ParseReport and carries on with the
failed field set to None, or the failed set/ROM left out.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from .config import DEFAULT_CONFIG, DecoderConfig
from .errors import (
    DecodeError, HeaderTruncated, NotSdrrFirmware, OutOfBounds, SourceReadError,
    UnsupportedVersion, InvalidFieldValue,
)
from .layout import HEADER, PINS, ROM_SET, RUNTIME_INFO, rom_info_layout
from .model import (
    FirmwareImage, FirmwareVersion, ParseError, PinConfiguration, RomInfo,
    RomSet, RuntimeInfo,
)
from .pointers import PointerResolver
from .types import CsState, McuLine, McuStorage, Port, RomType, ServeAlgorithm

logger = logging.getLogger(__name__)

__all__ = ['ParseReport', 'FirmwareDecoder', 'decode_firmware', 'decode_runtime_info']

MAX_ROMS_PER_SET = 3


class ParseReport:
    """Accumulates recoverable errors for one decode."""

    def __init__(self):
        self._errors: List[ParseError] = []

    def __len__(self) -> int:
        return len(self._errors)

    def __iter__(self):
        return iter(self._errors)

    def record(self, path: str, error: Exception) -> None:
        logger.warning("%s: %s", path, error)
        self._errors.append(ParseError(path, str(error), type(error).__name__))

    @property
    def errors(self) -> Tuple[ParseError, ...]:
        return tuple(self._errors)


class FirmwareDecoder:
    """
    Decodes one firmware image from a source.

    The decoder holds the source for the duration of ``decode()`` only and
    never retries a read; timeouts and retries belong to the source.
    """

    def __init__(self, source, config: DecoderConfig = DEFAULT_CONFIG):
        self.source = source
        self.config = config
        self.resolver = PointerResolver(source, config.base_address,
                                        config.string_chunk, config.string_max_len)

    def decode(self) -> FirmwareImage:
        report = ParseReport()

        hdr = self._locate_header()
        version = self._validate_version(hdr)
        logger.debug("SDRR firmware v%s found at 0x%08X", version.full, self.config.header_address)

        build_date = self._resolve_string(report, "build_date", hdr["build_date_ptr"])
        hw_rev = self._resolve_string(report, "hw_rev", hdr["hw_rev_ptr"])
        mcu_line = self._code(report, McuLine, hdr["stm_line"], "stm_line")
        mcu_storage = self._code(report, McuStorage, hdr["stm_storage"], "stm_storage")

        boot_logging = bool(hdr["boot_logging_enabled"])
        rom_sets = self._decode_rom_sets(report, hdr["rom_sets_ptr"],
                                         hdr["rom_set_count"], boot_logging)
        pins = self._decode_pins(report, hdr["pins_ptr"])

        if len(report):
            logger.info("Decoded with %d parse error(s)", len(report))
        else:
            logger.debug("Decoded cleanly: %d ROM set(s)", len(rom_sets))

        return FirmwareImage(
            version=version,
            commit=hdr["commit"],
            freq=hdr["freq"],
            build_date=build_date,
            hw_rev=hw_rev,
            mcu_line=mcu_line,
            mcu_storage=mcu_storage,
            overclock=bool(hdr["overclock"]),
            swd_enabled=bool(hdr["swd_enabled"]),
            preload_image_to_ram=bool(hdr["preload_image_to_ram"]),
            bootloader_capable=bool(hdr["bootloader_capable"]),
            status_led_enabled=bool(hdr["status_led_enabled"]),
            boot_logging_enabled=boot_logging,
            mco_enabled=bool(hdr["mco_enabled"]),
            count_rom_access=bool(hdr["count_rom_access"]),
            rom_set_count=hdr["rom_set_count"],
            rom_sets_ptr=hdr["rom_sets_ptr"],
            pins_ptr=hdr["pins_ptr"],
            boot_config=hdr["boot_config"],
            rom_sets=rom_sets,
            pins=pins,
            parse_errors=report.errors,
        )

    # ──────────────────────────────────────────────
    # Fatal steps
    # ──────────────────────────────────────────────

    def _locate_header(self) -> Dict[str, Any]:
        address = self.config.header_address
        try:
            raw = self.source.read(address, HEADER.size)
        except (OutOfBounds, SourceReadError) as exc:
            # Tell a short non-SDRR file apart from a truncated SDRR one
            try:
                magic = self.source.read(address, len(HEADER.magic))
            except (OutOfBounds, SourceReadError):
                magic = None
            if magic is not None and magic != HEADER.magic:
                raise NotSdrrFirmware(address, magic) from exc
            raise HeaderTruncated(
                f"Header ({HEADER.size} bytes at 0x{address:08X}) unreadable: {exc}"
            ) from exc

        hdr = HEADER.unpack(raw)
        if hdr["magic"] != HEADER.magic:
            raise NotSdrrFirmware(address, hdr["magic"])
        return hdr

    def _validate_version(self, hdr: Dict[str, Any]) -> FirmwareVersion:
        version = FirmwareVersion(hdr["major"], hdr["minor"], hdr["patch"], hdr["build"])
        if version > self.config.max_version:
            raise UnsupportedVersion(version, self.config.max_version)
        return version

    # ──────────────────────────────────────────────
    # Recoverable steps
    # ──────────────────────────────────────────────

    def _resolve_string(self, report: ParseReport, path: str, pointer: int) -> Optional[str]:
        try:
            return self.resolver.read_string(pointer, path)
        except DecodeError as exc:
            report.record(path, exc)
            return None

    @staticmethod
    def _code(report: ParseReport, enum_cls, value: int, path: str):
        try:
            return enum_cls.from_code(value, path)
        except InvalidFieldValue as exc:
            report.record(path, exc)
            return None

    def _decode_rom_sets(self, report: ParseReport, pointer: int, count: int,
                         boot_logging: bool) -> Tuple[RomSet, ...]:
        sets = []
        for index in range(count):
            path = f"rom_set[{index}]"
            try:
                rom_set = self._decode_rom_set(report, index, pointer + index * ROM_SET.size,
                                               boot_logging)
            except DecodeError as exc:
                report.record(path, exc)
                continue
            logger.debug("%s: %d ROM(s), %d image bytes", path, len(rom_set.roms), rom_set.size)
            sets.append(rom_set)
        return tuple(sets)

    def _decode_rom_set(self, report: ParseReport, index: int, pointer: int,
                        boot_logging: bool) -> RomSet:
        path = f"rom_set[{index}]"
        rec = self.resolver.read_record(ROM_SET, pointer, path)

        rom_count = rec["rom_count"]
        if not 1 <= rom_count <= MAX_ROMS_PER_SET:
            raise InvalidFieldValue(f"{path}.rom_count", rom_count, "1-3")

        data = self.resolver.read(rec["data_ptr"], rec["size"], f"{path}.data")
        serve = self._code(report, ServeAlgorithm, rec["serve"], f"{path}.serve")
        multi_cs1 = self._code(report, CsState, rec["multi_rom_cs1_state"],
                               f"{path}.multi_rom_cs1_state")
        rom_ptrs = self.resolver.read_u32_array(rec["roms_ptr"], rom_count, f"{path}.roms")

        roms = []
        for j, rom_ptr in enumerate(rom_ptrs):
            rom_path = f"{path}.roms[{j}]"
            try:
                roms.append(self._decode_rom_info(report, rom_path, rom_ptr, boot_logging))
            except DecodeError as exc:
                report.record(rom_path, exc)

        return RomSet(index=index, data=data, rom_count=rom_count, roms=tuple(roms),
                      serve=serve, multi_rom_cs1=multi_cs1)

    def _decode_rom_info(self, report: ParseReport, path: str, pointer: int,
                         boot_logging: bool) -> RomInfo:
        rec = self.resolver.read_record(rom_info_layout(boot_logging), pointer, path)
        rom_type = RomType.from_code(rec["rom_type"], f"{path}.rom_type")
        cs1 = CsState.from_code(rec["cs1_state"], f"{path}.cs1_state")
        cs2 = CsState.from_code(rec["cs2_state"], f"{path}.cs2_state")
        cs3 = CsState.from_code(rec["cs3_state"], f"{path}.cs3_state")
        filename = None
        if boot_logging:
            filename = self._resolve_string(report, f"{path}.filename", rec["filename_ptr"])
        return RomInfo(rom_type, cs1, cs2, cs3, filename)

    def _decode_pins(self, report: ParseReport, pointer: int) -> Optional[PinConfiguration]:
        try:
            rec = self.resolver.read_record(PINS, pointer, "pins")
        except DecodeError as exc:
            report.record("pins", exc)
            return None

        for port_field in ("data_port", "addr_port", "cs_port", "sel_port", "status_port"):
            rec[port_field] = self._code(report, Port, rec[port_field], f"pins.{port_field}")
        pins = PinConfiguration(**rec)

        # Kept for inspection; mangling rejects it later if it is unusable
        for name, value, expected in pins.problems():
            report.record(f"pins.{name}", InvalidFieldValue(f"pins.{name}", value, expected))
        return pins


def decode_firmware(source, config: DecoderConfig = DEFAULT_CONFIG) -> FirmwareImage:
    """Decode the firmware image readable through ``source``."""
    return FirmwareDecoder(source, config).decode()


def decode_runtime_info(source, address: int) -> RuntimeInfo:
    """
    Decode the RAM runtime info record at ``address`` of a live device.

    Raises NotSdrrFirmware on a magic mismatch and HeaderTruncated if the
    record cannot be read or declares itself smaller than the known layout.
    """
    try:
        raw = source.read(address, RUNTIME_INFO.size)
    except (OutOfBounds, SourceReadError) as exc:
        raise HeaderTruncated(
            f"Runtime info ({RUNTIME_INFO.size} bytes at 0x{address:08X}) unreadable: {exc}"
        ) from exc
    rec = RUNTIME_INFO.unpack(raw)
    if rec["magic"] != RUNTIME_INFO.magic:
        raise NotSdrrFirmware(address, rec["magic"], RUNTIME_INFO.magic)
    if rec["runtime_info_size"] < RUNTIME_INFO.size:
        raise HeaderTruncated(
            f"Invalid runtime info size: {rec['runtime_info_size']} < {RUNTIME_INFO.size}"
        )
    del rec["magic"]
    rec["count_rom_access"] = bool(rec["count_rom_access"])
    return RuntimeInfo(**rec)
