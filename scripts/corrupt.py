from __future__ import annotations

import argparse
import os
import random
import struct
import sys
from typing import Optional

from tarlz4.blockstream import HEADER_SIZE
from tarlz4.constants import LZ4_BLOCK_MAGIC
from tarlz4.errors import Tarlz4Error


def _flip_byte(path: str, offset: int, xor_val: int = 0xFF) -> None:
    if offset < 0:
        raise ValueError("Offset must be non-negative")
    with open(path, "r+b") as f:
        f.seek(offset)
        b = f.read(1)
        if not b:
            raise ValueError("Offset beyond end of file")
        f.seek(offset)
        f.write(bytes([b[0] ^ (xor_val & 0xFF)]))
        f.flush()
        os.fsync(f.fileno())


def cmd_by_offset(args: argparse.Namespace) -> None:
    _flip_byte(args.archive, args.offset, xor_val=args.xor)
    print(f"Flipped 1 byte at offset {args.offset}")


def cmd_first_block(args: argparse.Namespace) -> None:
    with open(args.archive, "rb") as f:
        hdr = f.read(HEADER_SIZE)
    if len(hdr) != HEADER_SIZE or hdr[:8] != LZ4_BLOCK_MAGIC:
        raise ValueError("Archive does not start with an LZ4 block header")
    (compressed_len,) = struct.unpack_from("<I", hdr, 9)
    if compressed_len == 0:
        raise ValueError("First block is the end mark; archive holds no data")
    if args.within < 0 or args.within >= compressed_len:
        raise ValueError(f"--within must be within the block payload (0..{compressed_len - 1})")
    off = HEADER_SIZE + args.within
    _flip_byte(args.archive, off, xor_val=args.xor)
    print(f"Flipped 1 byte in the first block at archive offset {off}")


def cmd_random(args: argparse.Namespace) -> None:
    rng = random.Random(args.seed)
    flips = 0
    size = os.path.getsize(args.archive)
    with open(args.archive, "r+b") as f:
        for _ in range(args.count):
            pos = rng.randrange(0, size)
            f.seek(pos)
            b = f.read(1)
            if not b:
                continue
            f.seek(pos)
            f.write(bytes([b[0] ^ (args.xor & 0xFF)]))
            flips += 1
        f.flush()
        os.fsync(f.fileno())
    print(f"Flipped {flips} byte(s) at random offsets")


def main(argv: Optional[list[str]] = None) -> None:
    ap = argparse.ArgumentParser(prog="tarlz4.corrupt", description="Corrupt tarlz4 archives for testing")
    sub = ap.add_subparsers(dest="cmd", required=True)

    p_off = sub.add_parser("by-offset", help="Flip one byte at an absolute archive offset")
    p_off.add_argument("archive", help="Path to archive")
    p_off.add_argument("--offset", type=int, required=True, help="Absolute byte offset in archive")
    p_off.add_argument("--xor", type=lambda x: int(x, 0), default=0xFF, help="XOR mask to apply (default 0xFF)")
    p_off.set_defaults(func=cmd_by_offset)

    p_first = sub.add_parser("first-block", help="Flip a byte inside the payload of the first LZ4 block")
    p_first.add_argument("archive", help="Path to archive")
    p_first.add_argument("--within", type=int, default=10, help="Byte offset within the block payload (default 10)")
    p_first.add_argument("--xor", type=lambda x: int(x, 0), default=0xFF, help="XOR mask to apply (default 0xFF)")
    p_first.set_defaults(func=cmd_first_block)

    p_rand = sub.add_parser("random", help="Flip N random bytes anywhere in the archive")
    p_rand.add_argument("archive", help="Path to archive")
    p_rand.add_argument("--count", type=int, default=1, help="Number of random byte flips (default 1)")
    p_rand.add_argument("--seed", type=int, default=None, help="PRNG seed for reproducibility")
    p_rand.add_argument("--xor", type=lambda x: int(x, 0), default=0xFF, help="XOR mask to apply (default 0xFF)")
    p_rand.set_defaults(func=cmd_random)

    args = ap.parse_args(argv)
    try:
        args.func(args)
    except (Tarlz4Error, OSError, ValueError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
