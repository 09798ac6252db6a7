from __future__ import annotations

import io
import struct

import lz4.block
import xxhash

from .constants import (
    LZ4_BLOCK_MAGIC,
    COMPRESSION_LEVEL_BASE,
    METHOD_RAW,
    METHOD_LZ4,
    XXHASH_SEED,
    BLOCK_CHECKSUM_MASK,
    MIN_BLOCK_SIZE,
    MAX_BLOCK_SIZE,
    DEFAULT_BLOCK_SIZE,
    COPY_BUFSIZE,
)
from .errors import BlockFormatError


# Block header (fixed 21 bytes)
# struct: <8s B I I I
#  - magic[8] "LZ4Block"
#  - token u8 (method | level)
#  - compressed_len u32
#  - original_len u32
#  - checksum u32 (xxh32 of the original bytes, masked to 28 bits)
_BLOCK_HDR_STRUCT = struct.Struct("<8sBIII")
HEADER_SIZE = _BLOCK_HDR_STRUCT.size


def compression_level(block_size: int) -> int:
    return max(0, (block_size - 1).bit_length() - COMPRESSION_LEVEL_BASE)


def block_checksum(data: bytes) -> int:
    return xxhash.xxh32(data, seed=XXHASH_SEED).intdigest() & BLOCK_CHECKSUM_MASK


def read_exact(f, n: int) -> bytes:
    buf = bytearray()
    while len(buf) < n:
        chunk = f.read(n - len(buf))
        if not chunk:
            break
        buf += chunk
    return bytes(buf)


class LZ4BlockWriter(io.RawIOBase):
    """Stream transform that cuts written bytes into LZ4-compressed blocks.

    Data accumulates until ``block_size`` bytes are buffered, then one framed
    block is written to ``fh``. :meth:`finish` emits the trailing partial block
    and the end mark; :meth:`close` releases the writer without finishing, so
    an aborted archive never gets a valid-looking end.
    The underlying ``fh`` is never closed here.
    """

    def __init__(self, fh, block_size: int = DEFAULT_BLOCK_SIZE):
        super().__init__()
        if not MIN_BLOCK_SIZE <= block_size <= MAX_BLOCK_SIZE:
            raise ValueError(
                f"block_size must be between {MIN_BLOCK_SIZE} and {MAX_BLOCK_SIZE}, got {block_size}"
            )
        self._fh = fh
        self.block_size = block_size
        self._level = compression_level(block_size)
        self._buf = bytearray()
        self._finished = False
        self.blocks_written = 0

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:
        if self._finished:
            raise ValueError("write to finished LZ4 block stream")
        if self.closed:
            raise ValueError("write to closed LZ4 block stream")
        data = memoryview(b).cast("B")
        n = len(data)
        pos = 0
        while pos < n:
            take = min(self.block_size - len(self._buf), n - pos)
            self._buf += data[pos:pos + take]
            pos += take
            if len(self._buf) == self.block_size:
                self._emit_block()
        return n

    def _emit_block(self) -> None:
        raw = bytes(self._buf)
        self._buf.clear()
        compressed = lz4.block.compress(raw, mode="default", store_size=False)
        if len(compressed) < len(raw):
            method, payload = METHOD_LZ4, compressed
        else:
            method, payload = METHOD_RAW, raw
        hdr = _BLOCK_HDR_STRUCT.pack(
            LZ4_BLOCK_MAGIC, method | self._level, len(payload), len(raw), block_checksum(raw)
        )
        self._fh.write(hdr)
        self._fh.write(payload)
        self.blocks_written += 1

    def flush(self) -> None:
        # Pending bytes become a short block, same as a sync flush
        if self.closed or self._finished:
            return
        if self._buf:
            self._emit_block()
        self._fh.flush()

    def finish(self) -> None:
        if self._finished:
            return
        self.flush()
        self._fh.write(_BLOCK_HDR_STRUCT.pack(LZ4_BLOCK_MAGIC, METHOD_RAW | self._level, 0, 0, 0))
        self._fh.flush()
        self._finished = True

    def close(self) -> None:
        # Skip RawIOBase.close()'s implicit flush; finishing is explicit
        self._finished = True
        super().close()


class LZ4BlockReader(io.RawIOBase):
    """Inverse of :class:`LZ4BlockWriter`: yields the original bytes.

    Reading stops at the end mark. Every block is validated (magic, method,
    lengths, xxh32 checksum) before its bytes are handed out.
    """

    def __init__(self, fh):
        super().__init__()
        self._fh = fh
        self._buf = b""
        self._pos = 0
        self._eof = False
        self.blocks_read = 0

    def readable(self) -> bool:
        return True

    @property
    def at_end(self) -> bool:
        return self._eof

    def readinto(self, b) -> int:
        view = memoryview(b).cast("B")
        while self._pos >= len(self._buf):
            if self._eof or not self._refill():
                return 0
        n = min(len(view), len(self._buf) - self._pos)
        view[:n] = self._buf[self._pos:self._pos + n]
        self._pos += n
        return n

    def _refill(self) -> bool:
        hdr = read_exact(self._fh, HEADER_SIZE)
        if len(hdr) != HEADER_SIZE:
            raise BlockFormatError("Stream ended prematurely: missing LZ4 end mark")
        magic, token, compressed_len, original_len, check = _BLOCK_HDR_STRUCT.unpack(hdr)
        if magic != LZ4_BLOCK_MAGIC:
            raise BlockFormatError("Stream is corrupted: bad LZ4 block magic")
        method = token & 0xF0
        max_len = 1 << (COMPRESSION_LEVEL_BASE + (token & 0x0F))
        if (
            method not in (METHOD_RAW, METHOD_LZ4)
            or original_len > max_len
            or (original_len == 0) != (compressed_len == 0)
            or (method == METHOD_RAW and original_len != compressed_len)
        ):
            raise BlockFormatError(
                f"Stream is corrupted: invalid block header (token=0x{token:02x}, "
                f"compressed={compressed_len}, original={original_len})"
            )
        if original_len == 0:
            if check != 0:
                raise BlockFormatError("Stream is corrupted: end mark carries a checksum")
            self._eof = True
            return False
        payload = read_exact(self._fh, compressed_len)
        if len(payload) != compressed_len:
            raise BlockFormatError("Stream ended prematurely inside an LZ4 block")
        if method == METHOD_LZ4:
            try:
                raw = lz4.block.decompress(payload, uncompressed_size=original_len)
            except lz4.block.LZ4BlockError as exc:
                raise BlockFormatError(f"Stream is corrupted: {exc}") from exc
            if len(raw) != original_len:
                raise BlockFormatError("Stream is corrupted: block length mismatch after decompress")
        else:
            raw = payload
        if block_checksum(raw) != check:
            raise BlockFormatError("Stream is corrupted: LZ4 block checksum mismatch")
        self._buf = raw
        self._pos = 0
        self.blocks_read += 1
        return True

    def drain(self) -> int:
        """Consume the rest of the stream up to the end mark; return bytes skipped."""
        skipped = 0
        while True:
            chunk = self.read(COPY_BUFSIZE)
            if not chunk:
                return skipped
            skipped += len(chunk)

