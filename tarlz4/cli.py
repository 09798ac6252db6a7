from __future__ import annotations

import argparse
import sys
from contextlib import closing
from typing import List, Optional

from tarlz4.checksum import available_checksums, new_checksum
from tarlz4.constants import DEFAULT_BLOCK_SIZE, DEFAULT_CHECKSUM
from tarlz4.container import ContainerEntry
from tarlz4.errors import Tarlz4Error, UnsafeEntryError
from tarlz4.logutil import configure_logging
from tarlz4.reader import decompress, list_entries
from tarlz4.writer import compress


EXIT_OK = 0
EXIT_CHECKSUM_MISMATCH = 1
EXIT_ERROR = 2


def _mib(n: int) -> float:
    return n / (1024.0 * 1024.0)


def _describe(entry: ContainerEntry) -> str:
    return f"{entry.name}/" if entry.is_dir else entry.name


def cmd_compress(
    root: str,
    source: str,
    output: str,
    *,
    checksum: str = DEFAULT_CHECKSUM,
    block_size: int = DEFAULT_BLOCK_SIZE,
    overwrite: bool = True,
    quiet: bool = False,
) -> bool:
    """Pack ROOT/SOURCE into OUTPUT and print the archive checksum.

    Args:
        root: Base directory.
        source: Directory below ``root`` to archive.
        output: Archive path to write.
        checksum: Checksum algorithm name.
        block_size: LZ4 block size in bytes.
        overwrite: Replace an existing OUTPUT (otherwise fail).
    """
    acc = new_checksum(checksum)

    def _progress(entry: ContainerEntry) -> None:
        if not quiet:
            print(f"     adding: {_describe(entry)}")

    stats = compress(
        root, source, output, acc, block_size=block_size, overwrite=overwrite, on_entry=_progress
    )
    dt = max(0.000001, stats.elapsed)
    ratio = (stats.archive_bytes / stats.payload_bytes * 100.0) if stats.payload_bytes else 0.0
    print(
        f"Done: {stats.files} files, {stats.directories} dirs, {stats.skipped_symlinks} links skipped; "
        f"{_mib(stats.payload_bytes):.2f} MiB -> {_mib(stats.archive_bytes):.2f} MiB ({ratio:.1f}%) "
        f"in {dt:.1f}s"
    )
    print(f"checksum {stats.checksum_name}:{stats.checksum_hex}")
    return True


def cmd_decompress(
    archive: str,
    outdir: str,
    *,
    checksum: str = DEFAULT_CHECKSUM,
    expect: Optional[str] = None,
    preserve_metadata: bool = False,
    quiet: bool = False,
) -> bool:
    """Restore ARCHIVE under OUTDIR. Returns False on a checksum mismatch."""
    acc = new_checksum(checksum)

    def _progress(entry: ContainerEntry) -> None:
        if not quiet:
            print(f"  restoring: {_describe(entry)}")

    stats = decompress(archive, outdir, acc, preserve_metadata=preserve_metadata, on_entry=_progress)
    dt = max(0.000001, stats.elapsed)
    print(
        f"Done: extracted {stats.files} files ({_mib(stats.payload_bytes):.2f} MiB), "
        f"{stats.directories} dirs in {dt:.1f}s; skipped={stats.skipped_entries}"
    )
    print(f"checksum {stats.checksum_name}:{stats.checksum_hex}")
    if expect is not None:
        if expect.strip().lower() != stats.checksum_hex:
            print(
                f"Checksum mismatch: expected {expect.strip().lower()}, got {stats.checksum_hex}",
                file=sys.stderr,
            )
            return False
        print("Checksum OK")
    return True


def cmd_list(archive: str, *, checksum: str = DEFAULT_CHECKSUM) -> bool:
    """List archive entries."""
    acc = new_checksum(checksum)
    count = 0
    with closing(list_entries(archive, acc)) as entries:
        for e in entries:
            kind = "d" if e.is_dir else ("f" if e.is_file else "?")
            print(f"{kind} {e.mode:04o} {e.size:>12} {_describe(e)}")
            count += 1
    print(f"{count} entries; checksum {acc.name}:{acc.hexdigest()}")
    return True


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="tarlz4",
        description="Pack a directory into a tar + LZ4 block archive and restore it",
        epilog="The checksum covers the compressed archive bytes and is never stored in the archive.",
    )
    ap.add_argument("--log-level", help="Logging level (default: $TARLZ4_LOG_LEVEL or WARNING)")
    sub = ap.add_subparsers(dest="cmd", required=True)
    algos = available_checksums()

    ap_compress = sub.add_parser("compress", help="Pack ROOT/SOURCE into OUTPUT")
    ap_compress.add_argument("root", help="Base directory")
    ap_compress.add_argument("source", help="Directory below ROOT to archive")
    ap_compress.add_argument("output", help="Output archive path")
    ap_compress.add_argument("--checksum", choices=algos, default=DEFAULT_CHECKSUM, help="Checksum algorithm")
    ap_compress.add_argument(
        "--block-size", type=int, default=DEFAULT_BLOCK_SIZE, help=f"LZ4 block size (default {DEFAULT_BLOCK_SIZE})"
    )
    ap_compress.add_argument("--no-clobber", action="store_true", help="Fail if OUTPUT already exists")
    ap_compress.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_decompress = sub.add_parser("decompress", help="Restore ARCHIVE under OUTDIR")
    ap_decompress.add_argument("archive", help="Archive path")
    ap_decompress.add_argument("outdir", help="Output directory")
    ap_decompress.add_argument("--checksum", choices=algos, default=DEFAULT_CHECKSUM, help="Checksum algorithm")
    ap_decompress.add_argument("--expect", help="Expected checksum (hex); exit 1 on mismatch")
    ap_decompress.add_argument(
        "--preserve-metadata", action="store_true", help="Apply stored file modes and mtimes"
    )
    ap_decompress.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_list = sub.add_parser("list", help="List archive contents")
    ap_list.add_argument("archive", help="Archive path")
    ap_list.add_argument("--checksum", choices=algos, default=DEFAULT_CHECKSUM, help="Checksum algorithm")

    args = ap.parse_args(argv)
    configure_logging(args.log_level)
    try:
        if args.cmd == "compress":
            cmd_compress(
                args.root,
                args.source,
                args.output,
                checksum=args.checksum,
                block_size=args.block_size,
                overwrite=not args.no_clobber,
                quiet=args.quiet,
            )
        elif args.cmd == "decompress":
            ok = cmd_decompress(
                args.archive,
                args.outdir,
                checksum=args.checksum,
                expect=args.expect,
                preserve_metadata=args.preserve_metadata,
                quiet=args.quiet,
            )
            if not ok:
                sys.exit(EXIT_CHECKSUM_MISMATCH)
        elif args.cmd == "list":
            cmd_list(args.archive, checksum=args.checksum)
        else:
            raise RuntimeError("Unknown command")
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_ERROR)
    except UnsafeEntryError as e:
        print(f"Error: refusing to extract outside the output directory: {e}", file=sys.stderr)
        sys.exit(EXIT_ERROR)
    except (Tarlz4Error, OSError, ValueError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_ERROR)


if __name__ == "__main__":
    main()
