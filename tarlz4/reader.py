from __future__ import annotations

import errno
import os
import shutil
import tarfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable, Iterator, Optional, Tuple, Union

from .blockstream import LZ4BlockReader
from .checksum import Checksum, CheckedReader, new_checksum
from .constants import COPY_BUFSIZE
from .container import ContainerEntry, ContainerReader
from .errors import BlockFormatError, ContainerFormatError
from .logutil import get_logger
from .pathutil import resolve_entry_path

_log = get_logger(__name__)


@dataclass
class UnpackStats:
    source: str
    directories: int = 0
    files: int = 0
    skipped_entries: int = 0
    payload_bytes: int = 0
    archive_bytes: int = 0
    checksum_name: str = ""
    checksum_hex: str = ""
    elapsed: float = 0.0


def _safe_chmod(path: str, mode: Optional[int]) -> None:
    """Best-effort chmod that never raises."""
    if mode is None:
        return
    try:
        os.chmod(path, mode & 0o777)
    except OSError as exc:
        _log.warning("failed to set mode on %s: %s", path, exc)


def _safe_utime(path: str, mtime: Optional[int]) -> None:
    """Best-effort utime that never raises; atime is set to mtime."""
    if mtime is None:
        return
    try:
        os.utime(path, (mtime, mtime), follow_symlinks=False)
    except OSError as exc:
        _log.warning("failed to set timestamps on %s: %s", path, exc)


class ArchiveReader:
    """Streaming reader: file -> checksum -> LZ4 blocks -> container entries.

    Entries are produced one at a time by :meth:`entries`. Once the container
    is exhausted the rest of the file is drained, so ``checksum`` ends up
    covering every byte of the archive.
    """

    def __init__(self, path: str, checksum: Checksum):
        self.path = path
        self.checksum = checksum
        self.f: Optional[BinaryIO] = None
        self._checked: Optional[CheckedReader] = None
        self._blocks: Optional[LZ4BlockReader] = None
        self._container: Optional[ContainerReader] = None
        self.exhausted = False

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        if self.f is not None:
            return
        if not os.path.exists(self.path):
            raise FileNotFoundError(errno.ENOENT, "Archive doesn't exist", self.path)
        self.f = open(self.path, "rb")
        try:
            self._checked = CheckedReader(self.f, self.checksum)
            self._blocks = LZ4BlockReader(self._checked)
            self._container = ContainerReader(self._blocks)
        except BaseException:
            # Ensure file handle is closed on failure to avoid leaks
            self.close()
            raise

    def close(self):
        for layer in (self._blocks, self._checked):
            if layer is not None:
                layer.close()
        self._container = None
        self._blocks = None
        self._checked = None
        if self.f is not None:
            self.f.close()
            self.f = None

    def entries(self) -> Iterator[Tuple[ContainerEntry, Optional[BinaryIO]]]:
        if self._container is None:
            raise RuntimeError("Archive not open")
        yield from self._container
        self._drain()

    def _drain(self) -> None:
        # The container has read its zero padding through the LZ4 end mark
        if not self._blocks.at_end:
            raise BlockFormatError("Stream ended before the LZ4 end mark")
        trailing = self._checked.read(1)
        if trailing:
            raise BlockFormatError("Unexpected data after LZ4 end mark")
        self.exhausted = True

    @property
    def archive_bytes(self) -> int:
        return self._checked.bytes_read if self._checked is not None else 0


def _copy_payload(entry: ContainerEntry, payload: BinaryIO, dst: Path) -> None:
    # Replace, never write through, an existing symlink at the destination
    if dst.is_symlink():
        dst.unlink()
    with open(dst, "wb") as out:
        try:
            shutil.copyfileobj(payload, out, COPY_BUFSIZE)
        except tarfile.TarError as exc:
            raise ContainerFormatError(f"Malformed payload for {entry.name}: {exc}") from exc


def decompress(
    source_file: Union[str, Path],
    output_dir: Union[str, Path],
    checksum: Union[Checksum, str],
    *,
    preserve_metadata: bool = False,
    on_entry: Optional[Callable[[ContainerEntry], None]] = None,
) -> UnpackStats:
    """Restore the tree stored in ``source_file`` under ``output_dir``.

    Every entry path is validated before anything is written; an entry that
    escapes ``output_dir`` aborts the whole extraction with
    :class:`~tarlz4.errors.UnsafeEntryError`. Files written before a failure
    are left in place. The checksum is computed, never compared.
    """
    if isinstance(checksum, str):
        checksum = new_checksum(checksum)
    source_file = str(source_file)
    target = Path(os.path.abspath(str(output_dir)))

    stats = UnpackStats(source=source_file, checksum_name=checksum.name)
    t0 = time.time()
    with ArchiveReader(source_file, checksum) as r:
        for entry, payload in r.entries():
            dst = resolve_entry_path(entry.name, target)
            if entry.is_dir:
                dst.mkdir(parents=True, exist_ok=True)
                stats.directories += 1
                _log.debug("dir  %s", entry.name)
            elif entry.is_file:
                dst.parent.mkdir(parents=True, exist_ok=True)
                _copy_payload(entry, payload, dst)
                if preserve_metadata:
                    _safe_chmod(str(dst), entry.mode)
                    _safe_utime(str(dst), entry.mtime)
                stats.files += 1
                stats.payload_bytes += entry.size
                _log.debug("file %s (%d bytes)", entry.name, entry.size)
            else:
                stats.skipped_entries += 1
                _log.warning("skipping unsupported entry type: %s", entry.name)
                continue
            if on_entry is not None:
                on_entry(entry)
        stats.archive_bytes = r.archive_bytes

    stats.checksum_hex = checksum.hexdigest()
    stats.elapsed = time.time() - t0
    _log.info(
        "unpacked %s: %d dirs, %d files, %d bytes (%s=%s)",
        source_file,
        stats.directories,
        stats.files,
        stats.payload_bytes,
        stats.checksum_name,
        stats.checksum_hex,
    )
    return stats


def list_entries(source_file: Union[str, Path], checksum: Union[Checksum, str] = "crc32") -> Iterator[ContainerEntry]:
    """Yield the entries of an archive without extracting anything.

    The archive stays open until the generator is exhausted or closed; wrap it
    in :func:`contextlib.closing` when iteration may stop early.
    """
    if isinstance(checksum, str):
        checksum = new_checksum(checksum)
    with ArchiveReader(str(source_file), checksum) as r:
        for entry, _payload in r.entries():
            yield entry
