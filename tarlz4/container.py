"""Tar container codec over a sequential byte stream.

Both directions use ``tarfile`` in stream mode (``w|`` / ``r|``), so the
underlying stream is never seeked and payloads are copied in bounded chunks.
"""

from __future__ import annotations

import io
import os
import stat
import tarfile
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Optional, Tuple

from .constants import COPY_BUFSIZE, KIND_DIR, KIND_FILE, KIND_OTHER, TAR_FORMAT
from .errors import ContainerFormatError
from .pathutil import norm_path


@dataclass(frozen=True)
class ContainerEntry:
    name: str
    kind: int  # 0=file, 1=dir, 2=other (read side only)
    size: int = 0
    mode: int = 0o644
    mtime: int = 0

    @property
    def is_dir(self) -> bool:
        return self.kind == KIND_DIR

    @property
    def is_file(self) -> bool:
        return self.kind == KIND_FILE

    @classmethod
    def from_stat(cls, name: str, st: os.stat_result) -> "ContainerEntry":
        is_dir = stat.S_ISDIR(st.st_mode)
        return cls(
            name=name,
            kind=KIND_DIR if is_dir else KIND_FILE,
            size=0 if is_dir else st.st_size,
            mode=stat.S_IMODE(st.st_mode),
            mtime=int(st.st_mtime),
        )

    @classmethod
    def from_tarinfo(cls, info: tarfile.TarInfo) -> "ContainerEntry":
        if info.isdir():
            kind = KIND_DIR
        elif info.isreg():
            kind = KIND_FILE
        else:
            kind = KIND_OTHER
        return cls(
            name=info.name,
            kind=kind,
            size=info.size if kind == KIND_FILE else 0,
            mode=info.mode & 0o7777,
            mtime=int(info.mtime),
        )

    def to_tarinfo(self) -> tarfile.TarInfo:
        info = tarfile.TarInfo(self.name)
        info.mode = self.mode
        info.mtime = self.mtime
        if self.is_dir:
            info.type = tarfile.DIRTYPE
            info.size = 0
        elif self.is_file:
            info.type = tarfile.REGTYPE
            info.size = self.size
        else:
            raise ValueError(f"cannot write entry of kind {self.kind}: {self.name}")
        return info


class _WriteGate(io.RawIOBase):
    """Forwards writes to ``fh`` until :meth:`shut`, then drops them."""

    def __init__(self, fh: BinaryIO):
        super().__init__()
        self._fh: Optional[BinaryIO] = fh

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:
        n = len(memoryview(b))
        if self._fh is not None:
            self._fh.write(b)
        return n

    def shut(self) -> None:
        self._fh = None


class _TailTap(io.RawIOBase):
    """Read-through wrapper remembering the last ``keep`` bytes handed out,
    addressed by absolute stream offset."""

    def __init__(self, fh: BinaryIO, keep: int):
        super().__init__()
        self._fh = fh
        self._keep = keep
        self._tail = bytearray()
        self._tail_start = 0

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        view = memoryview(b).cast("B")
        n = self._fh.readinto(view)
        if not n:
            return 0
        self._tail += view[:n]
        excess = len(self._tail) - self._keep
        if excess > 0:
            del self._tail[:excess]
            self._tail_start += excess
        return n

    def since(self, offset: int) -> bytes:
        if offset < self._tail_start:
            raise ContainerFormatError(f"Cannot verify end of container at offset {offset}")
        return bytes(self._tail[offset - self._tail_start:])


class ContainerWriter:
    """Frames entries onto ``fh``; :meth:`close` writes the end-of-archive
    blocks and record padding but leaves ``fh`` open."""

    def __init__(self, fh: BinaryIO, tar_format: int = TAR_FORMAT):
        self._gate = _WriteGate(fh)
        self._tar = tarfile.open(fileobj=self._gate, mode="w|", format=tar_format)
        self.entries_written = 0

    def add(self, entry: ContainerEntry, payload: Optional[BinaryIO] = None) -> None:
        if norm_path(entry.name) != entry.name:
            raise ValueError(f"entry name is not a canonical relative path: {entry.name!r}")
        info = entry.to_tarinfo()
        if entry.is_dir:
            self._tar.addfile(info)
        else:
            if payload is None and entry.size:
                raise ValueError(f"file entry without payload: {entry.name}")
            # copies exactly entry.size bytes; a short source raises OSError
            self._tar.addfile(info, payload)
        self.entries_written += 1

    def abort(self) -> None:
        """Close the tar stream with nothing more reaching ``fh``: buffered
        bytes and the end-of-archive blocks are dropped."""
        self._gate.shut()
        self._tar.close()

    def close(self) -> None:
        self._tar.close()


class ContainerReader:
    """Iterates ``(entry, payload)`` pairs from a tar stream.

    ``payload`` is a file object for regular files and ``None`` otherwise; it
    is only valid until the next entry is requested.

    ``tarfile`` reports an unparsable header after the first member as a plain
    end of archive. The end is therefore accepted only when the block where
    parsing stopped, and every byte after it up to the end of ``fh``, is NUL.
    """

    def __init__(self, fh: BinaryIO):
        # tarfile keeps less than one record of read-ahead
        self._tap = _TailTap(fh, keep=2 * tarfile.RECORDSIZE + tarfile.BLOCKSIZE)
        try:
            self._tar = tarfile.open(fileobj=self._tap, mode="r|", bufsize=tarfile.RECORDSIZE)
        except tarfile.TarError as exc:
            raise ContainerFormatError(f"Malformed container stream: {exc}") from exc
        self.entries_read = 0

    def __iter__(self) -> Iterator[Tuple[ContainerEntry, Optional[BinaryIO]]]:
        while True:
            try:
                info = self._tar.next()
            except tarfile.TarError as exc:
                raise ContainerFormatError(f"Malformed container stream: {exc}") from exc
            if info is None:
                self._check_end()
                return
            entry = ContainerEntry.from_tarinfo(info)
            payload = self._tar.extractfile(info) if entry.is_file else None
            self.entries_read += 1
            yield entry, payload

    def _check_end(self) -> None:
        offset = self._tar.offset
        rest = self._tap.since(offset)
        if len(rest) < tarfile.BLOCKSIZE or rest.count(0) != len(rest):
            raise ContainerFormatError(f"Malformed container stream: bad header at offset {offset}")
        while True:
            chunk = self._tap.read(COPY_BUFSIZE)
            if not chunk:
                return
            if chunk.count(0) != len(chunk):
                raise ContainerFormatError("Unexpected data after end of container")

    def close(self) -> None:
        self._tar.close()
