"""
tarlz4: directory snapshots as a single tar stream in LZ4 blocks.

Features:

- Deterministic pre-order packing of a directory tree under one top-level
  folder named after the source directory; symbolic links are skipped.
- Whole-stream LZ4 block compression, framed the same way as lz4-java's
  LZ4BlockOutputStream (per-block xxh32 checks, explicit end mark).
- Whole-stream checksum over the compressed bytes, computed on both ends
  and handed back to the caller (crc32, adler32, crc32c, xxh32/64, sha256,
  sha3_256, blake2s).
- Zip-slip safe extraction: an entry resolving outside the destination
  aborts the whole restore.
"""

__version__ = "0.1"

from .checksum import Checksum, available_checksums, new_checksum
from .container import ContainerEntry
from .errors import (
    Tarlz4Error,
    UnsafeEntryError,
    TraversalError,
    BlockFormatError,
    ContainerFormatError,
    UnsupportedChecksumError,
)
from .reader import ArchiveReader, decompress, list_entries
from .writer import ArchiveWriter, compress

__all__ = [
    "compress",
    "decompress",
    "list_entries",
    "new_checksum",
    "available_checksums",
    "Checksum",
    "ContainerEntry",
    "ArchiveReader",
    "ArchiveWriter",
    "Tarlz4Error",
    "UnsafeEntryError",
    "TraversalError",
    "BlockFormatError",
    "ContainerFormatError",
    "UnsupportedChecksumError",
]
