"""
Load an SDRR firmware file from disk, whichever form it takes.

  .bin  read on demand through FileSource
  .elf  flattened in memory, then read through MemorySource
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Union

from .config import DEFAULT_CONFIG, DecoderConfig
from .decoder import decode_firmware
from .elf import ELF_MAGIC, flatten_elf
from .errors import SourceReadError
from .model import FirmwareImage
from .source import FileSource, MemorySource

logger = logging.getLogger(__name__)

__all__ = ['FileType', 'LoadedFirmware', 'detect_file_type', 'load_firmware']


class FileType(Enum):
    ELF = "ELF (.elf)"
    BINARY = "Binary (.bin)"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class LoadedFirmware:
    path: Path
    file_type: FileType
    image: FirmwareImage


def detect_file_type(head: bytes) -> FileType:
    return FileType.ELF if head[:4] == ELF_MAGIC else FileType.BINARY


def load_firmware(path: Union[str, Path],
                  config: DecoderConfig = DEFAULT_CONFIG) -> LoadedFirmware:
    """Decode a firmware .bin or .elf file."""
    path = Path(path)
    try:
        with path.open("rb") as fh:
            head = fh.read(4)
    except OSError as exc:
        raise SourceReadError(f"Cannot read {path}: {exc}") from exc

    file_type = detect_file_type(head)
    logger.info("Loading %s as %s", path, file_type)

    if file_type is FileType.ELF:
        flat = flatten_elf(path.read_bytes(), config.base_address, config.header_offset)
        image = decode_firmware(MemorySource(flat, config.base_address), config)
    else:
        with FileSource(path, config.base_address) as source:
            image = decode_firmware(source, config)

    return LoadedFirmware(path, file_type, image)
