"""Tests for the strict ZIP reader."""

import struct
import zipfile

import pytest

from chainverify.codes import ReasonCode
from chainverify._internal.io.zip_reader import (
    ContainerError,
    ZipArchive,
    ZipFormatError,
    ZipLimitError,
    ZipUnsupportedError,
)

PAYLOAD = b'{"type": "run", "run_id": "r1"}\n' * 20


def _patch_cen(data: bytes, offset: int, fmt: str, value: int) -> bytes:
    """Overwrite a field of the first central directory header."""
    cen = data.find(b"PK\x01\x02")
    assert cen >= 0
    buf = bytearray(data)
    struct.pack_into(fmt, buf, cen + offset, value)
    return bytes(buf)


class TestOpen:

    def test_lists_entries_in_directory_order(self, make_zip):
        archive = ZipArchive.open(make_zip({"b.ndjson": PAYLOAD, "a.ndjson": b"x", "dir/": b""}))
        entries = archive.entries()
        assert [e.name for e in entries] == ["b.ndjson", "a.ndjson", "dir/"]
        assert entries[0].uncompressed_size == len(PAYLOAD)
        assert entries[0].method == zipfile.ZIP_DEFLATED
        assert entries[2].is_dir

    def test_archive_comment(self, make_zip):
        archive = ZipArchive.open(make_zip({"a.ndjson": PAYLOAD}, comment=b"PK\x05\x06 decoy" * 10))
        assert [e.name for e in archive.entries()] == ["a.ndjson"]

    def test_trailing_bytes_after_eocd_rejected(self, make_zip):
        data = make_zip({"a.ndjson": PAYLOAD}) + b"appended"
        with pytest.raises(ZipFormatError) as exc:
            ZipArchive.open(data)
        assert exc.value.code == ReasonCode.ZIP_OPEN

    def test_comment_must_reach_end_of_file(self, make_zip):
        data = make_zip({"a.ndjson": PAYLOAD}, comment=b"note")
        with pytest.raises(ZipFormatError):
            ZipArchive.open(data[:-1])
        assert [e.name for e in ZipArchive.open(data).entries()] == ["a.ndjson"]

    def test_open_from_path(self, make_zip, tmp_path):
        path = tmp_path / "pack.zip"
        path.write_bytes(make_zip({"a.ndjson": PAYLOAD}))
        assert ZipArchive.open(path).size == path.stat().st_size

    def test_missing_file(self, tmp_path):
        with pytest.raises(ContainerError) as exc:
            ZipArchive.open(tmp_path / "missing.zip")
        assert exc.value.code == ReasonCode.ZIP_OPEN

    def test_not_a_zip(self):
        with pytest.raises(ZipFormatError) as exc:
            ZipArchive.open(b"this is not an archive")
        assert exc.value.code == ReasonCode.ZIP_OPEN

    def test_unsupported_source(self):
        with pytest.raises(TypeError):
            ZipArchive.open(12)

    def test_bad_central_directory_signature(self, make_zip):
        data = bytearray(make_zip({"a.ndjson": PAYLOAD}))
        cen = data.find(b"PK\x01\x02")
        data[cen:cen + 4] = b"XXXX"
        with pytest.raises(ZipFormatError) as exc:
            ZipArchive.open(bytes(data)).entries()
        assert exc.value.code == ReasonCode.ZIP_CORRUPT

    def test_zip64_marker_rejected(self, make_zip):
        data = _patch_cen(make_zip({"a.ndjson": PAYLOAD}), 24, "<I", 0xFFFFFFFF)
        with pytest.raises(ZipUnsupportedError):
            ZipArchive.open(data).entries()

    def test_cp437_name_without_utf8_flag(self, make_zip):
        data = bytearray(make_zip({"ab.ndjson": PAYLOAD}))
        cen = data.find(b"PK\x01\x02")
        data[cen + 46] = 0x82  # 'a' -> cp437 e-acute, invalid as UTF-8
        assert ZipArchive.open(bytes(data)).entries()[0].name == "éb.ndjson"


class TestExtract:

    def _only(self, data: bytes):
        archive = ZipArchive.open(data)
        return archive, archive.entries()[0]

    @pytest.mark.parametrize("compression", [zipfile.ZIP_STORED, zipfile.ZIP_DEFLATED])
    def test_roundtrip(self, make_zip, compression):
        archive, entry = self._only(make_zip({"a.ndjson": PAYLOAD}, compression=compression))
        assert archive.extract(entry, 1_000_000) == PAYLOAD

    def test_entry_too_large(self, make_zip):
        archive, entry = self._only(make_zip({"a.ndjson": PAYLOAD}))
        with pytest.raises(ZipLimitError) as exc:
            archive.extract(entry, len(PAYLOAD) - 1)
        assert exc.value.code == ReasonCode.ZIP_ENTRY_TOO_LARGE

    def test_encrypted_flag(self, make_zip):
        data = _patch_cen(make_zip({"a.ndjson": PAYLOAD}), 8, "<H", 0x0001)
        archive, entry = self._only(data)
        assert entry.encrypted
        with pytest.raises(ZipUnsupportedError) as exc:
            archive.extract(entry, 1_000_000)
        assert exc.value.code == ReasonCode.ZIP_ENCRYPTED

    def test_unsupported_method(self, make_zip):
        archive, entry = self._only(make_zip({"a.ndjson": PAYLOAD}, compression=zipfile.ZIP_BZIP2))
        with pytest.raises(ZipUnsupportedError) as exc:
            archive.extract(entry, 1_000_000)
        assert exc.value.code == ReasonCode.ZIP_UNSUPPORTED_METHOD

    @pytest.mark.parametrize("compression", [zipfile.ZIP_STORED, zipfile.ZIP_DEFLATED])
    def test_declared_size_mismatch(self, make_zip, compression):
        data = _patch_cen(make_zip({"a.ndjson": PAYLOAD}, compression=compression), 24, "<I", len(PAYLOAD) - 5)
        archive, entry = self._only(data)
        with pytest.raises(ZipFormatError) as exc:
            archive.extract(entry, 1_000_000)
        assert exc.value.code == ReasonCode.ZIP_CORRUPT

    def test_crc_mismatch(self, make_zip):
        data = make_zip({"a.ndjson": PAYLOAD})
        entry_crc = ZipArchive.open(data).entries()[0].crc32
        archive, entry = self._only(_patch_cen(data, 16, "<I", entry_crc ^ 0xFFFFFFFF))
        with pytest.raises(ZipFormatError, match="CRC-32"):
            archive.extract(entry, 1_000_000)

    def test_bad_local_header(self, make_zip):
        data = bytearray(make_zip({"a.ndjson": PAYLOAD}))
        data[0:4] = b"XXXX"
        archive, entry = self._only(bytes(data))
        with pytest.raises(ZipFormatError, match="local header"):
            archive.extract(entry, 1_000_000)

    def test_corrupt_deflate_stream(self, make_zip):
        data = bytearray(make_zip({"a.ndjson": PAYLOAD}))
        archive, entry = self._only(bytes(data))
        start = 30 + len("a.ndjson")
        data[start:start + entry.compressed_size] = b"\xff" * entry.compressed_size
        archive, entry = self._only(bytes(data))
        with pytest.raises(ZipFormatError) as exc:
            archive.extract(entry, 1_000_000)
        assert exc.value.code == ReasonCode.ZIP_CORRUPT
