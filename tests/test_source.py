"""
ByteSource and PointerResolver tests.

Covers absolute addressing, out-of-bounds handling, and null-terminated
string resolution (chunking, length cap, encoding).
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from sdrr_fw.errors import (
    InvalidEncoding, InvalidPointer, OutOfBounds, SourceReadError, StringTooLong,
)
from sdrr_fw.pointers import PointerResolver
from sdrr_fw.source import FileSource, MemorySource

BASE = 0x08000000


# ═══════════════════════════════════════════════════════════════
# Sources
# ═══════════════════════════════════════════════════════════════

class TestMemorySource:
    """In-memory buffer addressed from base."""

    def test_absolute_read(self):
        src = MemorySource(bytes(range(16)), BASE)
        assert src.read(BASE + 4, 3) == b"\x04\x05\x06"
        assert src.size == 16
        assert src.end == BASE + 16

    def test_read_to_exact_end(self):
        src = MemorySource(bytes(range(16)), BASE)
        assert src.read(BASE + 12, 4) == b"\x0c\x0d\x0e\x0f"
        assert src.read(BASE + 16, 0) == b""

    def test_past_end_is_out_of_bounds(self):
        src = MemorySource(bytes(16), BASE)
        with pytest.raises(OutOfBounds) as exc:
            src.read(BASE + 14, 4)
        assert exc.value.address == BASE + 14
        assert exc.value.limit == BASE + 16

    def test_below_base_is_out_of_bounds(self):
        src = MemorySource(bytes(16), BASE)
        with pytest.raises(OutOfBounds):
            src.read(BASE - 1, 1)

    def test_custom_base(self):
        src = MemorySource(b"sdrr", 0x20000000)
        assert src.read(0x20000000, 4) == b"sdrr"


class TestFileSource:
    """File-backed source reads on demand."""

    def test_reads_file(self, tmp_path):
        path = tmp_path / "fw.bin"
        path.write_bytes(bytes(range(256)))
        with FileSource(path, BASE) as src:
            assert src.size == 256
            assert src.read(BASE + 0x10, 2) == b"\x10\x11"
            with pytest.raises(OutOfBounds):
                src.read(BASE + 0xFF, 2)

    def test_closed_source_fails(self, tmp_path):
        path = tmp_path / "fw.bin"
        path.write_bytes(bytes(64))
        src = FileSource(path, BASE)
        src.close()
        with pytest.raises(SourceReadError):
            src.read(BASE, 1)

    def test_missing_file(self, tmp_path):
        with pytest.raises(SourceReadError):
            FileSource(tmp_path / "absent.bin")

    def test_string_path(self, tmp_path):
        path = tmp_path / "fw.bin"
        path.write_bytes(b"\x5A" * 8)
        with FileSource(str(path), BASE) as src:
            assert src.path == path
            assert src.read(BASE + 7, 1) == b"\x5A"
        assert repr(src) == f"FileSource('{path}' @ 0x08000000)"


# ═══════════════════════════════════════════════════════════════
# Pointer resolution
# ═══════════════════════════════════════════════════════════════

class TestPointerResolver:
    """Pointer to offset, bounded reads, strings."""

    def _resolver(self, data: bytes, **kw) -> PointerResolver:
        return PointerResolver(MemorySource(data, BASE), BASE, **kw)

    def test_offset(self):
        r = self._resolver(bytes(8))
        assert r.offset(BASE + 0x200) == 0x200
        with pytest.raises(InvalidPointer) as exc:
            r.offset(0x1000, "build_date")
        assert "build_date" in str(exc.value)

    def test_null_pointer_is_invalid(self):
        r = self._resolver(bytes(8))
        with pytest.raises(InvalidPointer):
            r.read(0, 4)

    def test_read_labels_out_of_bounds(self):
        r = self._resolver(bytes(8))
        with pytest.raises(OutOfBounds) as exc:
            r.read(BASE + 4, 8, "rom_set[0].data")
        assert exc.value.what == "rom_set[0].data"
        assert "rom_set[0].data" in str(exc.value)

    def test_u32_array(self):
        r = self._resolver(b"\x00\x02\x00\x08\x10\x02\x00\x08")
        assert r.read_u32_array(BASE, 2) == (0x08000200, 0x08000210)

    def test_string(self):
        r = self._resolver(b"\x00" * 4 + b"24-d\x00junk")
        assert r.read_string(BASE + 4) == "24-d"

    def test_string_spanning_chunks(self):
        text = "x" * 150
        r = self._resolver(text.encode() + b"\x00")
        assert r.read_string(BASE) == text

    def test_string_at_end_of_image(self):
        """Fewer than a chunk's worth of bytes remain after the pointer."""
        data = bytes(100) + b"Jul  4 2025\x00"
        r = self._resolver(data)
        assert r.read_string(BASE + 100) == "Jul  4 2025"

    def test_empty_string(self):
        r = self._resolver(b"\x00\x00")
        assert r.read_string(BASE) == ""

    def test_unterminated_at_end(self):
        r = self._resolver(b"abc")
        with pytest.raises(OutOfBounds):
            r.read_string(BASE)

    def test_too_long(self):
        r = self._resolver(b"A" * 2000 + b"\x00")
        with pytest.raises(StringTooLong) as exc:
            r.read_string(BASE)
        assert exc.value.cap == 1024

    def test_custom_cap(self):
        r = self._resolver(b"A" * 40 + b"\x00", string_chunk=8, string_max_len=32)
        with pytest.raises(StringTooLong):
            r.read_string(BASE)

    @pytest.mark.parametrize("limits", [dict(string_chunk=0), dict(string_max_len=0)])
    def test_zero_string_limits_rejected(self, limits):
        """A zero-byte chunk would never reach a terminator."""
        with pytest.raises(ValueError):
            self._resolver(b"abc\x00", **limits)

    def test_invalid_utf8(self):
        r = self._resolver(b"\xff\xfe\x00")
        with pytest.raises(InvalidEncoding) as exc:
            r.read_string(BASE)
        assert exc.value.raw == b"\xff\xfe"
