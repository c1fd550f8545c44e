"""
sdrr-info - SDRR Firmware Inspector
====================================

    sdrr-info info       - Header, ROM sets and pins of a firmware file
    sdrr-info lookup     - Byte served for a logical address + CS levels
    sdrr-info lookup-raw - Byte stored at a physical (mangled) address
    sdrr-info probe      - Decode a live device through a GDB serial probe

Examples:
    sdrr-info info sdrr-stm32f411re.bin --detail
    sdrr-info lookup sdrr.elf --set 0 --addr 0x0100 --cs1 0
    sdrr-info lookup sdrr.bin --set 1 --range 0x0000-0x0FFF --cs1 0 --x1 1 --binary > rom.bin
    sdrr-info lookup-raw sdrr.bin --set 0 --addr 0x2100 --mangled
    sdrr-info probe --port /dev/ttyACM0 --runtime 0x20000000
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional, Tuple

from . import __version__
from .config import PROBE_BAUD, PROBE_TIMEOUT, STM32F4_FLASH_BASE, DecoderConfig
from .decoder import decode_firmware, decode_runtime_info
from .errors import SdrrError
from .loader import load_firmware
from .log_setup import level_for, setup_logging
from .model import FirmwareImage
from .probe import GdbRemoteSource

logger = logging.getLogger(__name__)

MAX_LOOKUP_ADDR = 0xFFFF


def _parse_hex(s):
    """Parse hex string with optional 0x or $ prefix."""
    s = s.strip()
    if s.startswith(("0x", "0X")):
        return int(s, 16)
    if s.startswith("$"):
        return int(s[1:], 16)
    return int(s, 16)


def _hex_arg(s: str) -> int:
    try:
        value = _parse_hex(s)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a hex value: {s!r}") from None
    return value


def _addr_arg(s: str) -> int:
    value = _hex_arg(s)
    if not 0 <= value <= MAX_LOOKUP_ADDR:
        raise argparse.ArgumentTypeError("address must be in the range 0x0000 to 0xFFFF")
    return value


def _range_arg(s: str) -> Tuple[int, int]:
    """START-END in hex, e.g. 0x1000-1FFF"""
    parts = s.split("-")
    if len(parts) != 2:
        raise argparse.ArgumentTypeError(f"range must be START-END, got {s!r}")
    start, end = _addr_arg(parts[0]), _addr_arg(parts[1])
    if end < start:
        raise argparse.ArgumentTypeError(f"range end 0x{end:04X} before start 0x{start:04X}")
    return start, end


def _level_arg(s: str) -> bool:
    if s in ("0", "1"):
        return s == "1"
    raise argparse.ArgumentTypeError("line level must be 0 (low) or 1 (high)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sdrr-info",
        description="SDRR firmware inspector: decode headers, look up served bytes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Use '<command> --help' for detailed options (e.g. 'lookup --help')",
    )
    parser.add_argument("--version", action="version", version=f"sdrr-info {__version__}")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="Increase verbosity (-v, -vv)")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only show errors")
    parser.add_argument("--log-file", help="Also write a DEBUG log to this file")
    parser.add_argument("--base", type=_hex_arg, default=STM32F4_FLASH_BASE,
                        help="Flash base address (hex, default 0x08000000)")
    sub = parser.add_subparsers(dest="command", metavar="command")

    # ── info ─────────────────────────────────────────────────────────────
    p_info = sub.add_parser("info", help="Show firmware header, ROM sets and pins")
    p_info.add_argument("firmware", help="Firmware .bin or .elf")
    p_info.add_argument("-d", "--detail", action="store_true",
                        help="Include pin assignments and pointers")

    # ── lookup ───────────────────────────────────────────────────────────
    p_look = sub.add_parser("lookup", help="Byte served for a logical address")
    p_look.add_argument("firmware", help="Firmware .bin or .elf")
    p_look.add_argument("-s", "--set", type=int, required=True, help="ROM set number")
    where = p_look.add_mutually_exclusive_group(required=True)
    where.add_argument("-a", "--addr", type=_addr_arg, help="Address (hex)")
    where.add_argument("-r", "--range", type=_range_arg, help="Address range (hex), e.g. 0x1000-1FFF")
    p_look.add_argument("--cs1", type=_level_arg, required=True, help="CS1 line level 0/1")
    p_look.add_argument("--cs2", type=_level_arg, help="CS2 line level 0/1")
    p_look.add_argument("--cs3", type=_level_arg, help="CS3 line level 0/1")
    p_look.add_argument("--x1", type=_level_arg, help="X1 line level 0/1 (multi-ROM sets)")
    p_look.add_argument("--x2", type=_level_arg, help="X2 line level 0/1 (multi-ROM sets)")
    p_look.add_argument("-m", "--mangled", action="store_true",
                        help="Output mangled data byte(s) instead of demangled")
    p_look.add_argument("-b", "--binary", action="store_true",
                        help="Write raw bytes to stdout instead of text")
    p_look.add_argument("-d", "--detail", action="store_true", help="Show the mangled address")

    # ── lookup-raw ───────────────────────────────────────────────────────
    p_raw = sub.add_parser("lookup-raw", help="Byte stored at a physical (mangled) address")
    p_raw.add_argument("firmware", help="Firmware .bin or .elf")
    p_raw.add_argument("-s", "--set", type=int, required=True, help="ROM set number")
    p_raw.add_argument("-a", "--addr", type=_addr_arg, required=True, help="Mangled address (hex)")
    p_raw.add_argument("-m", "--mangled", action="store_true",
                       help="Output the mangled data byte instead of demangled")

    # ── probe ────────────────────────────────────────────────────────────
    p_probe = sub.add_parser("probe", help="Decode a live device through a GDB serial probe")
    p_probe.add_argument("-p", "--port", required=True, help="Probe serial port, e.g. /dev/ttyACM0")
    p_probe.add_argument("--baud", type=int, default=PROBE_BAUD, help="Serial baud rate")
    p_probe.add_argument("--timeout", type=float, default=PROBE_TIMEOUT, help="Per-read timeout (s)")
    p_probe.add_argument("--runtime", type=_hex_arg,
                         help="Also decode runtime info at this RAM address (hex)")
    p_probe.add_argument("-d", "--detail", action="store_true",
                         help="Include pin assignments and pointers")
    return parser


# ═════════════════════════════════════════════════════════════════════════════
# REPORTING
# ═════════════════════════════════════════════════════════════════════════════

def _flag(value: bool) -> str:
    return "Enabled" if value else "Disabled"


def _opt(value) -> str:
    return "<unavailable>" if value is None else str(value)


def _pin(value: int) -> str:
    return "-" if value == 255 else str(value)


def format_info(image: FirmwareImage, detail: bool = False) -> List[str]:
    lines = [
        "Core Firmware Properties",
        "------------------------",
        f"Version:        {image.version.full}",
        f"Build Date:     {_opt(image.build_date)}",
        f"Git commit:     {image.commit_str}",
        f"Hardware:       {_opt(image.hw_rev)}",
    ]
    if image.mcu_line is not None and image.mcu_storage is not None:
        lines.append(f"STM32:          {image.mcu_line} (flash {image.mcu_storage}, "
                     f"RAM {image.mcu_line.ram_kb}KB)")
    else:
        lines.append(f"STM32:          {_opt(image.mcu_line)} / {_opt(image.mcu_storage)}")
    lines += [
        f"Frequency:      {image.freq} MHz (overclocking: {image.overclock})",
        "",
        "Configurable Options",
        "--------------------",
        f"SWD:            {_flag(image.swd_enabled)}",
        f"Preload to RAM: {_flag(image.preload_image_to_ram)}",
        f"Bootloader:     {_flag(image.bootloader_capable)}",
        f"Status LED:     {_flag(image.status_led_enabled)}",
        f"Boot logging:   {_flag(image.boot_logging_enabled)}",
        f"MCO:            {_flag(image.mco_enabled)}",
        f"Count access:   {_flag(image.count_rom_access)}",
        "",
        "ROMs Summary",
        "------------",
        f"Total sets:     {image.rom_set_count} ({len(image.rom_sets)} decoded)",
        f"Total ROMs:     {sum(len(rs.roms) for rs in image.rom_sets)}",
    ]
    for rs in image.rom_sets:
        lines += [
            "",
            f"ROM Set: {rs.index}",
            f"  Size:         {rs.size} bytes",
            f"  ROM Count:    {rs.rom_count}",
            f"  Algorithm:    {_opt(rs.serve)}",
            f"  Multi-CS:     {_opt(rs.multi_rom_cs1)}",
        ]
        for j, rom in enumerate(rs.roms):
            lines.append(f"  ROM {j}: {rom.rom_type}  CS1 {rom.cs1}"
                         + (f", CS2 {rom.cs2}" if rom.rom_type.supports_cs2 else "")
                         + (f", CS3 {rom.cs3}" if rom.rom_type.supports_cs3 else "")
                         + (f"  [{rom.filename}]" if rom.filename else ""))

    if detail:
        lines += ["", "Pointers", "--------",
                  f"ROM sets:       0x{image.rom_sets_ptr:08X}",
                  f"Pins:           0x{image.pins_ptr:08X}",
                  f"Boot config:    {image.boot_config.hex()}"]
        pins = image.pins
        lines += ["", "Pins", "----"]
        if pins is None:
            lines.append("<unavailable>")
        else:
            lines += [
                f"Ports:          data {_opt(pins.data_port)}, addr {_opt(pins.addr_port)}, "
                f"cs {_opt(pins.cs_port)}, sel {_opt(pins.sel_port)}, status {_opt(pins.status_port)}",
                f"ROM pins:       {pins.rom_pins}",
                f"Data:           {' '.join(_pin(p) for p in pins.data)}",
                f"Address:        {' '.join(_pin(p) for p in pins.addr)}",
                f"2364 CS1:       {_pin(pins.cs1_2364)}",
                f"2332 CS1/CS2:   {_pin(pins.cs1_2332)} {_pin(pins.cs2_2332)}",
                f"2316 CS1/2/3:   {_pin(pins.cs1_2316)} {_pin(pins.cs2_2316)} {_pin(pins.cs3_2316)}",
                f"23128 CE/OE:    {_pin(pins.ce_23128)} {_pin(pins.oe_23128)}",
                f"X1/X2:          {_pin(pins.x1)} {_pin(pins.x2)}",
                f"Select:         {' '.join(_pin(p) for p in pins.sel)}",
                f"Status:         {_pin(pins.status)}",
            ]
    return lines


def _report_errors(image: FirmwareImage) -> None:
    for err in image.parse_errors:
        logger.warning("Parse error: %s", err)


# ═════════════════════════════════════════════════════════════════════════════
# COMMAND IMPLEMENTATIONS
# ═════════════════════════════════════════════════════════════════════════════

def _load(args) -> FirmwareImage:
    loaded = load_firmware(args.firmware, DecoderConfig(base_address=args.base))
    _report_errors(loaded.image)
    return loaded.image


def cmd_info(args) -> int:
    image = _load(args)
    print(f"File:           {args.firmware}")
    print("\n".join(format_info(image, args.detail)))
    return 0


def cmd_lookup(args) -> int:
    image = _load(args)
    lines = dict(cs1=args.cs1, cs2=args.cs2, cs3=args.cs3, x1=args.x1, x2=args.x2)
    kind = "mangled" if args.mangled else "demangled"

    start, end = args.range if args.range else (args.addr, args.addr)
    data = image.lookup_range(args.set, start, end, mangled=args.mangled, **lines)

    if args.binary:
        sys.stdout.buffer.write(data)
        sys.stdout.buffer.flush()
        return 0

    if args.range is None:
        if args.detail:
            physical = image.mangler_for(args.set).mangle(args.addr, **lines)
            print(f"Mangled address 0x{physical:04X}")
        print(f"Address 0x{args.addr:04X}: 0x{data[0]:02X} ({kind} byte)")
        return 0

    print(f"Address range 0x{start:04X} to 0x{end:04X} ({kind}):")
    for row in range(0, len(data), 16):
        chunk = data[row:row + 16]
        print(f"0x{start + row:04X}: " + " ".join(f"{b:02X}" for b in chunk))
    return 0


def cmd_lookup_raw(args) -> int:
    image = _load(args)
    byte = image.lookup_raw(args.set, args.addr, args.mangled)
    kind = "mangled" if args.mangled else "demangled"
    print(f"Mangled address 0x{args.addr:04X}: 0x{byte:02X} ({kind} byte)")
    return 0


def cmd_probe(args) -> int:
    config = DecoderConfig(base_address=args.base)
    with GdbRemoteSource(args.port, baudrate=args.baud, timeout=args.timeout,
                         base=args.base) as source:
        image = decode_firmware(source, config)
        runtime = None
        if args.runtime is not None:
            runtime = decode_runtime_info(source, args.runtime)
    _report_errors(image)
    print(f"Probe:          {args.port}")
    print("\n".join(format_info(image, args.detail)))
    if runtime is not None:
        print("")
        print("Runtime Info")
        print("------------")
        print(f"Image select:   0x{runtime.image_sel:02X}")
        print(f"ROM set index:  {runtime.rom_set_index}")
        print(f"Access count:   {runtime.access_count if runtime.count_rom_access else 'disabled'}")
        print(f"ROM table:      0x{runtime.rom_table_ptr:08X} ({runtime.rom_table_size} bytes)")
    return 0


COMMANDS = {
    "info": cmd_info,
    "lookup": cmd_lookup,
    "lookup-raw": cmd_lookup_raw,
    "probe": cmd_probe,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(console_level=level_for(args.verbose, args.quiet), log_file=args.log_file)

    if not args.command:
        parser.print_help()
        return 0

    try:
        return COMMANDS[args.command](args)
    except (SdrrError, IndexError) as e:
        logger.error("%s", e, exc_info=args.verbose > 1)
        return 1


if __name__ == "__main__":
    sys.exit(main())
