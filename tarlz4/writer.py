from __future__ import annotations

import os
import stat
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable, Optional, Union

from .blockstream import LZ4BlockWriter
from .checksum import Checksum, CheckedWriter, new_checksum
from .constants import DEFAULT_BLOCK_SIZE, KIND_DIR
from .container import ContainerEntry, ContainerWriter
from .errors import TraversalError
from .logutil import get_logger
from .pathutil import entry_name
from .walker import walk_tree

_log = get_logger(__name__)


@dataclass
class PackStats:
    output: str
    directories: int = 0
    files: int = 0
    skipped_symlinks: int = 0
    skipped_special: int = 0
    payload_bytes: int = 0
    archive_bytes: int = 0
    checksum_name: str = ""
    checksum_hex: str = ""
    elapsed: float = 0.0


class ArchiveWriter:
    """Streaming writer: container entries -> LZ4 blocks -> checksum -> file.

    The layers are stacked on a single file handle owned by the writer.
    :meth:`finalize` closes the container, finishes the block stream and
    forces the file to stable storage. Leaving the ``with`` block without an
    exception finalizes implicitly; an exception only releases the file.
    """

    def __init__(
        self,
        out_path: str,
        checksum: Checksum,
        block_size: int = DEFAULT_BLOCK_SIZE,
        overwrite: bool = True,
    ):
        self.out_path = out_path
        self.checksum = checksum
        self.block_size = block_size
        self.overwrite = overwrite
        self.f: Optional[BinaryIO] = None
        self._checked: Optional[CheckedWriter] = None
        self._blocks: Optional[LZ4BlockWriter] = None
        self._container: Optional[ContainerWriter] = None
        self.finalized = False
        self.payload_bytes = 0

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        try:
            if exc_type is None and not self.finalized:
                self.finalize()
        finally:
            self.close()

    def open(self):
        if self.f is not None:
            return
        self.f = open(self.out_path, "wb" if self.overwrite else "xb")
        try:
            self._checked = CheckedWriter(self.f, self.checksum)
            self._blocks = LZ4BlockWriter(self._checked, block_size=self.block_size)
            self._container = ContainerWriter(self._blocks)
        except BaseException:
            self.close()
            raise

    def close(self):
        if self._container is not None and not self.finalized:
            self._container.abort()
        # inner to outer; only the file holds an OS resource
        for layer in (self._blocks, self._checked):
            if layer is not None:
                layer.close()
        self._container = None
        self._blocks = None
        self._checked = None
        if self.f is not None:
            self.f.close()
            self.f = None

    def _require_open(self) -> ContainerWriter:
        if self._container is None or self.finalized:
            raise RuntimeError("Archive not open for writing")
        return self._container

    def add_dir(self, name: str, fs_path: Optional[str] = None, *, mode: int = 0o755, mtime: int = 0) -> ContainerEntry:
        container = self._require_open()
        if fs_path is not None:
            entry = ContainerEntry.from_stat(name, os.stat(fs_path))
        else:
            entry = ContainerEntry(name=name, kind=KIND_DIR, mode=mode, mtime=mtime)
        container.add(entry)
        _log.debug("dir  %s", name)
        return entry

    def add_file(self, name: str, fs_path: str) -> ContainerEntry:
        """Append a regular file, streaming its bytes into the payload slot.

        A source that cannot be opened is a visit failure and raises
        :class:`TraversalError`.
        """
        container = self._require_open()
        try:
            src = open(fs_path, "rb")
        except OSError as exc:
            raise TraversalError(fs_path, exc.strerror or str(exc)) from exc
        with src:
            st = os.fstat(src.fileno())
            if not stat.S_ISREG(st.st_mode):
                raise ValueError(f"not a regular file: {fs_path}")
            entry = ContainerEntry.from_stat(name, st)
            container.add(entry, src)
        self.payload_bytes += entry.size
        _log.debug("file %s (%d bytes)", name, entry.size)
        return entry

    def finalize(self):
        container = self._require_open()
        container.close()
        self._blocks.finish()
        self._checked.flush()
        os.fsync(self._checked.fileno())
        self.finalized = True

    @property
    def archive_bytes(self) -> int:
        return self._checked.bytes_written if self._checked is not None else 0


def compress(
    root_dir: Union[str, Path],
    source_dir: Union[str, Path],
    output_file: Union[str, Path],
    checksum: Union[Checksum, str],
    *,
    block_size: int = DEFAULT_BLOCK_SIZE,
    overwrite: bool = True,
    on_entry: Optional[Callable[[ContainerEntry], None]] = None,
) -> PackStats:
    """Pack ``root_dir/source_dir`` into ``output_file``.

    Args:
        root_dir: Directory that ``source_dir`` is relative to.
        source_dir: The directory actually archived; its own name becomes the
            top-level folder of every entry.
        output_file: Archive path. Truncated unless ``overwrite`` is False, in
            which case an existing file raises ``FileExistsError``.
        checksum: Accumulator fed with every archive byte, or an algorithm
            name. The value is not stored in the archive.
        block_size: LZ4 block size in bytes.
        on_entry: Called with each entry after it has been written.

    The archive is fsynced before returning. On failure a partial output file
    may remain; removing it is up to the caller.
    """
    if isinstance(checksum, str):
        checksum = new_checksum(checksum)
    source = Path(os.path.abspath(os.path.join(str(root_dir), str(source_dir))))
    base = source.name
    if not base:
        raise ValueError(f"cannot archive a directory without a name: {source}")

    stats = PackStats(output=str(output_file), checksum_name=checksum.name)
    t0 = time.time()
    with ArchiveWriter(str(output_file), checksum, block_size=block_size, overwrite=overwrite) as w:
        for node in walk_tree(source):
            if node.is_symlink:
                stats.skipped_symlinks += 1
                _log.debug("skipping symlink %s", node.path)
                continue
            name = entry_name(source, node.path) or base
            if node.is_dir:
                entry = w.add_dir(name, str(node.path))
                stats.directories += 1
            else:
                try:
                    mode = os.lstat(node.path).st_mode
                except OSError as exc:
                    raise TraversalError(str(node.path), exc.strerror or str(exc)) from exc
                if not stat.S_ISREG(mode):
                    stats.skipped_special += 1
                    _log.warning("skipping special file %s", node.path)
                    continue
                entry = w.add_file(name, str(node.path))
                stats.files += 1
            if on_entry is not None:
                on_entry(entry)
        w.finalize()
        stats.payload_bytes = w.payload_bytes
        stats.archive_bytes = w.archive_bytes

    stats.checksum_hex = checksum.hexdigest()
    stats.elapsed = time.time() - t0
    _log.info(
        "packed %s: %d dirs, %d files, %d bytes -> %d archive bytes (%s=%s)",
        source,
        stats.directories,
        stats.files,
        stats.payload_bytes,
        stats.archive_bytes,
        stats.checksum_name,
        stats.checksum_hex,
    )
    return stats
