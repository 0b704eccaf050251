"""Minimal, strict ZIP reader for evidence packs.

Reads the whole archive into memory once and parses the End Of Central
Directory record and central directory headers directly. Only the subset
needed for evidence packs is accepted:

- single-disk archives without ZIP64 extensions
- entries stored (method 0) or raw-deflated (method 8)
- no encryption

Anything inconsistent (bad signature, out-of-bounds offsets, size or CRC
mismatch after extraction) is rejected rather than repaired.
"""

import logging
import os
import struct
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from chainverify.codes import ReasonCode

logger = logging.getLogger(__name__)

SIG_EOCD = 0x06054B50
SIG_CEN = 0x02014B50
SIG_LOC = 0x04034B50

EOCD = struct.Struct("<IHHHHIIH")
CEN = struct.Struct("<IHHHHHHIIIHHHHHII")
LOC = struct.Struct("<IHHHHHIIIHH")

MAX_COMMENT = 0xFFFF
FLAG_ENCRYPTED = 0x0001
FLAG_UTF8 = 0x0800
METHOD_STORED = 0
METHOD_DEFLATED = 8

ZipSource = Union[str, os.PathLike, bytes, bytearray, memoryview]


class ContainerError(Exception):
    """Exception raised when a container cannot be read or an entry cannot be extracted."""
    def __init__(self, code: ReasonCode, message: str):
        self.code = code
        self.message = message
        super().__init__(f"[{code.value}] {message}")


class ZipFormatError(ContainerError):
    """The archive or an entry is malformed."""


class ZipUnsupportedError(ContainerError):
    """Well-formed, but uses a feature this reader refuses (encryption, ZIP64, other methods)."""


class ZipLimitError(ContainerError):
    """An entry is larger than the caller allows."""


@dataclass(frozen=True)
class ZipEntry:
    name: str
    compressed_size: int
    uncompressed_size: int
    method: int
    flags: int
    local_header_offset: int
    crc32: int

    @property
    def is_dir(self) -> bool:
        return self.name.endswith("/")

    @property
    def encrypted(self) -> bool:
        return bool(self.flags & FLAG_ENCRYPTED)


def _find_eocd(data: bytes) -> int:
    """Offset of the EOCD record, scanning backwards through the last 64 KiB + 22 bytes."""
    lowest = max(0, len(data) - (MAX_COMMENT + EOCD.size))
    pos = len(data) - EOCD.size
    while pos >= lowest:
        pos = data.rfind(b"PK\x05\x06", lowest, pos + 4)
        if pos < 0:
            break
        comment_len = struct.unpack_from("<H", data, pos + 20)[0]
        if pos + EOCD.size + comment_len == len(data):
            return pos
        pos -= 1
    return -1


class ZipArchive:
    """An opened, immutable ZIP archive."""

    def __init__(self, data: bytes):
        self._data = data
        self._entries: Optional[List[ZipEntry]] = None
        self._eocd = _find_eocd(data)
        if self._eocd < 0:
            raise ZipFormatError(ReasonCode.ZIP_OPEN, "missing end of central directory record")

    @classmethod
    def open(cls, source: ZipSource) -> "ZipArchive":
        """Read ``source`` (a path or a bytes-like buffer) once and parse its EOCD.

        Raises:
            TypeError: If ``source`` is neither a path nor a buffer
            ContainerError: If the file cannot be read or is not a ZIP
        """
        if isinstance(source, (str, os.PathLike)):
            try:
                data = Path(source).read_bytes()
            except OSError as e:
                raise ContainerError(ReasonCode.ZIP_OPEN, f"cannot read {source}: {e}") from e
        elif isinstance(source, (bytes, bytearray, memoryview)):
            data = bytes(source)
        else:
            raise TypeError(
                f"Unsupported container source {type(source).__name__}: expected a path or bytes"
            )
        return cls(data)

    @property
    def size(self) -> int:
        return len(self._data)

    def entries(self) -> List[ZipEntry]:
        """Central directory entries in directory order.

        Raises:
            ZipFormatError: If any header is malformed; no partial listing is returned
            ZipUnsupportedError: For ZIP64 or multi-disk archives
        """
        if self._entries is None:
            self._entries = self._read_central_directory()
        return list(self._entries)

    def _read_central_directory(self) -> List[ZipEntry]:
        data = self._data
        (_sig, disk, cd_disk, count_disk, count, cd_size, cd_offset, _comment_len) = EOCD.unpack_from(data, self._eocd)

        if disk != 0 or cd_disk != 0 or count_disk != count:
            raise ZipUnsupportedError(ReasonCode.ZIP_CORRUPT, "multi-disk archives are not supported")
        if count == 0xFFFF or cd_size == 0xFFFFFFFF or cd_offset == 0xFFFFFFFF:
            raise ZipUnsupportedError(ReasonCode.ZIP_CORRUPT, "ZIP64 archives are not supported")
        cd_end = cd_offset + cd_size
        if cd_end > self._eocd:
            raise ZipFormatError(ReasonCode.ZIP_CORRUPT, "central directory out of bounds")

        entries: List[ZipEntry] = []
        off = cd_offset
        for index in range(count):
            if off + CEN.size > cd_end:
                raise ZipFormatError(ReasonCode.ZIP_CORRUPT, f"central directory truncated at entry {index}")
            fields = CEN.unpack_from(data, off)
            (sig, _made_by, _needed, flags, method, _mtime, _mdate, crc, comp_size, uncomp_size,
             name_len, extra_len, comment_len, _disk_start, _int_attr, _ext_attr, local_off) = fields
            if sig != SIG_CEN:
                raise ZipFormatError(ReasonCode.ZIP_CORRUPT, f"bad central directory signature at entry {index}")
            if comp_size == 0xFFFFFFFF or uncomp_size == 0xFFFFFFFF or local_off == 0xFFFFFFFF:
                raise ZipUnsupportedError(ReasonCode.ZIP_CORRUPT, "ZIP64 entries are not supported")

            name_start = off + CEN.size
            next_off = name_start + name_len + extra_len + comment_len
            if next_off > cd_end:
                raise ZipFormatError(ReasonCode.ZIP_CORRUPT, f"central directory entry {index} out of bounds")
            raw_name = data[name_start:name_start + name_len]
            try:
                name = raw_name.decode("utf-8")
            except UnicodeDecodeError as e:
                if flags & FLAG_UTF8:
                    raise ZipFormatError(ReasonCode.ZIP_CORRUPT, f"entry {index} has an invalid UTF-8 name") from e
                name = raw_name.decode("cp437")

            entries.append(ZipEntry(
                name=name,
                compressed_size=comp_size,
                uncompressed_size=uncomp_size,
                method=method,
                flags=flags,
                local_header_offset=local_off,
                crc32=crc,
            ))
            off = next_off

        logger.debug("zip: %d entries, central directory at %d", len(entries), cd_offset)
        return entries

    def extract(self, entry: ZipEntry, max_bytes: int) -> bytes:
        """Return the uncompressed bytes of ``entry``.

        Raises:
            ZipUnsupportedError: Encrypted entry or compression method other than store/deflate
            ZipLimitError: Declared uncompressed size exceeds ``max_bytes``
            ZipFormatError: Bad local header, out-of-bounds data, size or CRC mismatch
        """
        if entry.encrypted:
            raise ZipUnsupportedError(ReasonCode.ZIP_ENCRYPTED, f"{entry.name}: encrypted entries are not supported")
        if entry.uncompressed_size > max_bytes:
            raise ZipLimitError(
                ReasonCode.ZIP_ENTRY_TOO_LARGE,
                f"{entry.name}: {entry.uncompressed_size} bytes exceeds limit of {max_bytes}",
            )
        if entry.method not in (METHOD_STORED, METHOD_DEFLATED):
            raise ZipUnsupportedError(
                ReasonCode.ZIP_UNSUPPORTED_METHOD,
                f"{entry.name}: unsupported compression method {entry.method}",
            )

        data = self._data
        loc = entry.local_header_offset
        if loc + LOC.size > len(data):
            raise ZipFormatError(ReasonCode.ZIP_CORRUPT, f"{entry.name}: local header out of bounds")
        (sig, _needed, _flags, _method, _mtime, _mdate, _crc, _comp, _uncomp, name_len, extra_len) = LOC.unpack_from(data, loc)
        if sig != SIG_LOC:
            raise ZipFormatError(ReasonCode.ZIP_CORRUPT, f"{entry.name}: bad local header signature")

        start = loc + LOC.size + name_len + extra_len
        end = start + entry.compressed_size
        if end > len(data):
            raise ZipFormatError(ReasonCode.ZIP_CORRUPT, f"{entry.name}: entry data out of bounds")
        payload = data[start:end]

        if entry.method == METHOD_STORED:
            out = payload
        else:
            inflater = zlib.decompressobj(-zlib.MAX_WBITS)
            try:
                # Never inflate more than one byte past the declared size.
                out = inflater.decompress(payload, entry.uncompressed_size + 1)
            except zlib.error as e:
                raise ZipFormatError(ReasonCode.ZIP_CORRUPT, f"{entry.name}: invalid deflate data: {e}") from e
            if not inflater.eof or inflater.unused_data:
                raise ZipFormatError(ReasonCode.ZIP_CORRUPT, f"{entry.name}: deflate stream does not end cleanly")

        if len(out) != entry.uncompressed_size:
            raise ZipFormatError(
                ReasonCode.ZIP_CORRUPT,
                f"{entry.name}: extracted {len(out)} bytes, directory declares {entry.uncompressed_size}",
            )
        if zlib.crc32(out) != entry.crc32:
            raise ZipFormatError(ReasonCode.ZIP_CORRUPT, f"{entry.name}: CRC-32 mismatch")
        return out
