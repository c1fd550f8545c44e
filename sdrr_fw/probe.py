"""
Live Device Source - GDB Remote Serial Protocol
================================================

Reads target memory from a debug probe that exposes a GDB server on a
serial port (e.g. a Black Magic Probe's first CDC interface), so a
running SDRR can be inspected without dumping its flash first.

Packet format:
  $<payload>#<checksum>     checksum = sum(payload) mod 256, 2 hex digits
  +  / -                    ACK / NAK of the last packet

Only memory reads are needed:
  m<addr>,<len>   →  <hex bytes>  |  Exx (error)

Requirements:
  pip install pyserial

The target must already be attached/halted as the probe requires; use
``command()`` to send any attach packets first.
"""

from __future__ import annotations

import logging
from typing import Optional

import serial

from .config import (
    PROBE_BAUD, PROBE_MAX_PACKET, PROBE_RETRIES, PROBE_TIMEOUT, STM32F4_FLASH_BASE,
)
from .errors import SourceReadError
from .source import ByteSource

logger = logging.getLogger(__name__)

__all__ = ['GdbRemoteSource', 'gdb_checksum', 'frame_packet', 'expand_rle']


def gdb_checksum(payload: bytes) -> int:
    return sum(payload) % 256


def frame_packet(payload: str) -> bytes:
    """Wrap a payload as ``$payload#cc``."""
    body = payload.encode("ascii")
    return b"$" + body + b"#" + f"{gdb_checksum(body):02x}".encode("ascii")


def expand_rle(body: bytes) -> bytes:
    """Undo reply run-length encoding: ``X*n`` repeats X (ord(n) - 29) more times."""
    out = bytearray()
    i = 0
    while i < len(body):
        c = body[i]
        if c == ord("*") and out and i + 1 < len(body):
            out += bytes([out[-1]]) * (body[i + 1] - 29)
            i += 2
        else:
            out.append(c)
            i += 1
    return bytes(out)


class GdbRemoteSource(ByteSource):
    """
    ByteSource backed by a debug probe.

    Each read is split into ``max_packet`` byte ``m`` requests. Every serial
    read and write is bounded by ``timeout``; hitting it raises
    SourceReadError, as does an ``Exx`` reply.
    """

    def __init__(self, port: Optional[str] = None, baudrate: int = PROBE_BAUD,
                 timeout: float = PROBE_TIMEOUT, max_packet: int = PROBE_MAX_PACKET,
                 base: int = STM32F4_FLASH_BASE, size: Optional[int] = None,
                 retries: int = PROBE_RETRIES, connection=None):
        if max_packet < 1:
            raise ValueError("max_packet must be positive")
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.max_packet = max_packet
        self.base = base
        self._size = size
        self.retries = retries
        self.serial = connection    # anything with read/write/flush/close/is_open

    def __repr__(self) -> str:
        return f"GdbRemoteSource({self.port!r} @ 0x{self.base:08X})"

    @property
    def size(self) -> Optional[int]:
        return self._size

    # ──────────────────────────────────────────────
    # Connection
    # ──────────────────────────────────────────────

    def connect(self) -> None:
        """Open the serial port (no-op if already open)."""
        if self.serial is not None and self.serial.is_open:
            return
        try:
            self.serial = serial.Serial(
                port=self.port,
                baudrate=self.baudrate,
                timeout=self.timeout,
                write_timeout=self.timeout,
            )
        except serial.SerialException as exc:
            raise SourceReadError(f"Cannot open {self.port}: {exc}") from exc
        logger.info("Connected to probe on %s", self.port)

    def close(self) -> None:
        if self.serial is not None and self.serial.is_open:
            self.serial.close()
            logger.debug("Disconnected from %s", self.port)

    def __enter__(self):
        self.connect()
        return self

    # ──────────────────────────────────────────────
    # Wire
    # ──────────────────────────────────────────────

    def _write(self, data: bytes) -> None:
        try:
            self.serial.write(data)
            self.serial.flush()
        except serial.SerialException as exc:
            raise SourceReadError(f"Write to probe failed: {exc}") from exc

    def _read_byte(self) -> bytes:
        try:
            c = self.serial.read(1)
        except serial.SerialException as exc:
            raise SourceReadError(f"Read from probe failed: {exc}") from exc
        if not c:
            raise SourceReadError(f"Timed out after {self.timeout}s waiting for probe")
        return c

    def _receive(self) -> str:
        for _ in range(self.retries + 1):
            while self._read_byte() != b"$":
                pass
            body = bytearray()
            while True:
                c = self._read_byte()
                if c == b"#":
                    break
                body += c
            sent = self._read_byte() + self._read_byte()
            try:
                ok = int(sent, 16) == gdb_checksum(body)
            except ValueError:
                ok = False
            if ok:
                self._write(b"+")
                return expand_rle(bytes(body)).decode("ascii", errors="replace")
            logger.debug("Bad reply checksum %r, requesting resend", sent)
            self._write(b"-")
        raise SourceReadError(f"Probe reply checksum bad after {self.retries + 1} attempts")

    def command(self, payload: str) -> str:
        """Send one packet and return the reply payload."""
        if self.serial is None:
            raise SourceReadError("Probe not connected")
        packet = frame_packet(payload)
        for attempt in range(self.retries + 1):
            logger.debug("TX %s", packet)
            self._write(packet)
            ack = self._read_byte()
            if ack == b"+":
                break
            if ack != b"-":
                raise SourceReadError(f"Unexpected byte {ack!r} from probe, expected ACK")
            logger.debug("Probe NAK for %r (attempt %d)", payload, attempt + 1)
        else:
            raise SourceReadError(f"Probe rejected {payload!r} {self.retries + 1} times")
        reply = self._receive()
        logger.debug("RX %s", reply)
        return reply

    # ──────────────────────────────────────────────
    # ByteSource
    # ──────────────────────────────────────────────

    def _read_memory(self, address: int, length: int) -> bytes:
        reply = self.command(f"m{address:x},{length:x}")
        if len(reply) == 3 and reply[0] == "E":
            raise SourceReadError(
                f"Probe error {reply} reading {length} bytes at 0x{address:08X}"
            )
        if not reply:
            raise SourceReadError("Probe does not support memory reads")
        try:
            return bytes.fromhex(reply)
        except ValueError:
            raise SourceReadError(f"Malformed memory reply {reply[:16]!r}...") from None

    def _read(self, address: int, length: int) -> bytes:
        out = bytearray()
        while len(out) < length:
            want = min(self.max_packet, length - len(out))
            chunk = self._read_memory(address + len(out), want)
            if not chunk:
                break
            out += chunk[:want]
        return bytes(out)
