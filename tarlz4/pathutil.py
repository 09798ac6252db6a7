from __future__ import annotations

import os
from pathlib import Path
from typing import Union

from .errors import UnsafeEntryError


def norm_path(p: str) -> str:
    """Normalize archive paths to a canonical forward-slash form.

    Rules:
    - Convert backslashes to slashes
    - Strip leading/trailing slashes
    - Remove empty and '.' segments
    - Reject '..' segments and empty results
    """
    p = p.replace("\\", "/").strip("/")
    parts = [q for q in p.split("/") if q not in ("", ".")]
    for q in parts:
        if q == "..":
            raise ValueError("Path may not contain '..'")
    if not parts:
        raise ValueError("Path may not be empty")
    return "/".join(parts)


def entry_name(source_root: Union[str, Path], current: Union[str, Path]) -> str:
    """Archive name of ``current``: its path below ``source_root``, prefixed
    with the root's own final segment and joined with '/'.

    Returns "" for the root itself; the caller names the root entry after the
    bare final segment.
    """
    source_root = Path(source_root)
    rel = Path(current).relative_to(source_root)
    if not rel.parts:
        return ""
    return "/".join((source_root.name,) + rel.parts)


def resolve_entry_path(name: str, destination_root: Union[str, Path]) -> Path:
    """Resolve an untrusted entry name against the extraction root.

    Lexical normalization only (no symlink resolution). The result must be
    the root itself or nested under it, compared component-wise.
    """
    root = Path(os.path.normpath(os.path.abspath(destination_root)))
    candidate = Path(os.path.normpath(os.path.join(str(root), name)))
    if candidate != root and root not in candidate.parents:
        raise UnsafeEntryError(name, str(root))
    return candidate
