"""
CRC32C (Castagnoli) implementation with a precomputed table.
Pure Python so the checksum needs no extra dependency; values match
java.util.zip.CRC32C.
"""

_POLY = 0x82F63B78  # reflected form of 0x1EDC6F41


def _make_table():
    tbl = []
    for n in range(256):
        c = n
        for _ in range(8):
            if c & 1:
                c = (c >> 1) ^ _POLY
            else:
                c >>= 1
        tbl.append(c & 0xFFFFFFFF)
    return tuple(tbl)


_TABLE = _make_table()


def crc32c(data: bytes, crc: int = 0) -> int:
    """Return the CRC32C of ``data``, continuing from a previous ``crc`` value."""
    c = (~crc) & 0xFFFFFFFF
    for b in data:
        c = _TABLE[(c ^ b) & 0xFF] ^ (c >> 8)
    return (~c) & 0xFFFFFFFF
