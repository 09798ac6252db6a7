from __future__ import annotations

from typing import Optional


class Tarlz4Error(Exception):
    """Base class for tarlz4-specific errors."""


class UnsafeEntryError(Tarlz4Error):
    """An archive entry would be extracted outside the destination root."""

    def __init__(self, name: str, destination: Optional[str] = None):
        self.name = name
        self.destination = destination
        msg = f"Bad entry: {name!r}"
        if destination is not None:
            msg += f" escapes {destination}"
        super().__init__(msg)


class TraversalError(Tarlz4Error):
    """Visiting a node of the source tree failed; the walk was aborted."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot visit {path}: {reason}")


# Stream framing
class BlockFormatError(Tarlz4Error):
    pass


class ContainerFormatError(Tarlz4Error):
    pass


class UnsupportedChecksumError(Tarlz4Error, ValueError):
    pass
