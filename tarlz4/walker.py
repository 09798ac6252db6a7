from __future__ import annotations

import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Union

from .errors import TraversalError


@dataclass(frozen=True)
class Node:
    path: Path
    is_dir: bool
    is_symlink: bool


def _children(directory: Path) -> List[Node]:
    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name)
        nodes = []
        for e in entries:
            is_link = e.is_symlink()
            nodes.append(Node(Path(e.path), (not is_link) and e.is_dir(follow_symlinks=False), is_link))
        return nodes
    except OSError as exc:
        raise TraversalError(str(getattr(exc, "filename", None) or directory), exc.strerror or str(exc)) from exc


def walk_tree(source: Union[str, Path]) -> Iterator[Node]:
    """Yield every node below ``source`` (inclusive) in pre-order.

    Siblings come in sorted name order. Symbolic links are reported but never
    followed. The first visit failure raises :class:`TraversalError` and ends
    the walk.
    """
    source = Path(source)
    try:
        st = os.lstat(source)
    except OSError as exc:
        raise TraversalError(str(source), exc.strerror or str(exc)) from exc
    root = Node(source, stat.S_ISDIR(st.st_mode), stat.S_ISLNK(st.st_mode))

    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        if node.is_dir:
            # reversed so the first child is popped next
            stack.extend(reversed(_children(node.path)))
