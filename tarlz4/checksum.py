"""Whole-stream checksum accumulators.

A :class:`Checksum` is fed every byte that crosses the archive file, on
write through :class:`CheckedWriter` and on read through
:class:`CheckedReader`. The archive never stores the value; callers keep the
accumulator they passed in and read the digest once the operation returns.

The 32-bit algorithms report the same ``value`` as ``java.util.zip``'s
``Checksum.getValue()``; the cryptographic ones are backed by PyCryptodomex
and xxhash.
"""

from __future__ import annotations

import io
import zlib
from typing import Callable, Dict, List

import xxhash
from Cryptodome.Hash import BLAKE2s, SHA256, SHA3_256

from .crc32c import crc32c
from .errors import UnsupportedChecksumError


class Checksum:
    """Running digest interface driven by the checked stream wrappers."""

    name = ""
    digest_size = 0

    def update(self, data: bytes) -> None:
        raise NotImplementedError

    def digest(self) -> bytes:
        raise NotImplementedError

    def reset(self) -> None:
        raise NotImplementedError

    def hexdigest(self) -> str:
        return self.digest().hex()

    @property
    def value(self) -> int:
        return int.from_bytes(self.digest(), "big")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}={self.hexdigest()}>"


class _Crc32Family(Checksum):
    # zlib.crc32 / zlib.adler32 / crc32c all share the (data, running) -> int shape
    digest_size = 4

    def __init__(self, name: str, fn: Callable[[bytes, int], int], initial: int):
        self.name = name
        self._fn = fn
        self._initial = initial
        self._value = initial

    def update(self, data: bytes) -> None:
        self._value = self._fn(data, self._value) & 0xFFFFFFFF

    def digest(self) -> bytes:
        return self._value.to_bytes(4, "big")

    def reset(self) -> None:
        self._value = self._initial

    @property
    def value(self) -> int:
        return self._value


class _HasherChecksum(Checksum):
    """Adapter for hashlib-style objects (Cryptodome.Hash, xxhash)."""

    def __init__(self, name: str, factory: Callable[[], object]):
        self.name = name
        self._factory = factory
        self._h = factory()
        self.digest_size = len(self._h.digest())

    def update(self, data: bytes) -> None:
        self._h.update(data)

    def digest(self) -> bytes:
        return self._h.digest()

    def reset(self) -> None:
        self._h = self._factory()


_ALGORITHMS: Dict[str, Callable[[], Checksum]] = {
    "crc32": lambda: _Crc32Family("crc32", zlib.crc32, 0),
    "adler32": lambda: _Crc32Family("adler32", zlib.adler32, 1),
    "crc32c": lambda: _Crc32Family("crc32c", crc32c, 0),
    "xxh32": lambda: _HasherChecksum("xxh32", xxhash.xxh32),
    "xxh64": lambda: _HasherChecksum("xxh64", xxhash.xxh64),
    "sha256": lambda: _HasherChecksum("sha256", SHA256.new),
    # Cryptodome finalizes on digest() unless update_after_digest is set
    "sha3_256": lambda: _HasherChecksum("sha3_256", lambda: SHA3_256.new(update_after_digest=True)),
    "blake2s": lambda: _HasherChecksum("blake2s", lambda: BLAKE2s.new(digest_bits=256, update_after_digest=True)),
}


def available_checksums() -> List[str]:
    return list(_ALGORITHMS)


def new_checksum(name: str) -> Checksum:
    """Create a fresh accumulator for algorithm ``name`` (case-insensitive)."""
    try:
        factory = _ALGORITHMS[name.lower().replace("-", "_")]
    except KeyError:
        raise UnsupportedChecksumError(
            f"unsupported checksum algorithm: {name!r} (choose from {', '.join(_ALGORITHMS)})"
        ) from None
    return factory()


class CheckedWriter(io.RawIOBase):
    """Write-through wrapper that feeds every written byte to a checksum.

    Does not own ``fh``: closing the wrapper leaves the file open.
    """

    def __init__(self, fh, checksum: Checksum):
        super().__init__()
        self._fh = fh
        self.checksum = checksum
        self.bytes_written = 0

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:
        view = memoryview(b).cast("B")
        n = self._fh.write(view)
        if n is None:
            n = len(view)
        self.checksum.update(view[:n])
        self.bytes_written += n
        return n

    def flush(self) -> None:
        if not self.closed:
            self._fh.flush()

    def fileno(self) -> int:
        return self._fh.fileno()


class CheckedReader(io.RawIOBase):
    """Read-through wrapper that feeds every byte read to a checksum."""

    def __init__(self, fh, checksum: Checksum):
        super().__init__()
        self._fh = fh
        self.checksum = checksum
        self.bytes_read = 0

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        view = memoryview(b).cast("B")
        n = self._fh.readinto(view)
        if not n:
            return 0
        self.checksum.update(view[:n])
        self.bytes_read += n
        return n

    def fileno(self) -> int:
        return self._fh.fileno()
