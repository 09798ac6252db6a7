from __future__ import annotations

import os
import tempfile
import unittest
from pathlib import Path

from tarlz4.errors import TraversalError, UnsafeEntryError
from tarlz4.pathutil import entry_name, norm_path, resolve_entry_path
from tarlz4.walker import walk_tree


def _symlinks_supported(base: Path) -> bool:
    probe = base / ".probe_link"
    try:
        os.symlink("nowhere", probe)
    except (OSError, NotImplementedError, AttributeError):
        return False
    probe.unlink()
    return True


class EntryNameTests(unittest.TestCase):
    def test_root_is_empty(self):
        self.assertEqual(entry_name(Path("/data/src"), Path("/data/src")), "")

    def test_prefixed_with_root_name(self):
        self.assertEqual(entry_name(Path("/data/src"), Path("/data/src/a")), "src/a")
        self.assertEqual(entry_name("/data/src", "/data/src/a/b/c.txt"), "src/a/b/c.txt")

    def test_outside_root_is_rejected(self):
        with self.assertRaises(ValueError):
            entry_name(Path("/data/src"), Path("/data/other/x"))

    def test_norm_path(self):
        self.assertEqual(norm_path("a\\b/./c/"), "a/b/c")
        self.assertEqual(norm_path("/lead/trail/"), "lead/trail")
        with self.assertRaises(ValueError):
            norm_path("a/../b")
        with self.assertRaises(ValueError):
            norm_path("./")


class ResolveEntryPathTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.root = Path(os.path.abspath(self.tmp.name)) / "out"

    def test_nested_names(self):
        self.assertEqual(resolve_entry_path("src/a.txt", self.root), self.root / "src" / "a.txt")
        self.assertEqual(resolve_entry_path("src/x/../b", self.root), self.root / "src" / "b")
        self.assertEqual(resolve_entry_path(".", self.root), self.root)

    def test_parent_escape(self):
        with self.assertRaises(UnsafeEntryError) as ctx:
            resolve_entry_path("../../etc/passwd", self.root)
        self.assertEqual(ctx.exception.name, "../../etc/passwd")
        self.assertIn("../../etc/passwd", str(ctx.exception))

    def test_absolute_name(self):
        with self.assertRaises(UnsafeEntryError):
            resolve_entry_path("/etc/passwd", self.root)
        with self.assertRaises(UnsafeEntryError):
            resolve_entry_path("//etc/passwd", self.root)

    def test_sibling_with_common_prefix(self):
        # /out must not accept /output
        with self.assertRaises(UnsafeEntryError):
            resolve_entry_path("../output/file.txt", self.root)

    def test_escape_and_return_is_allowed(self):
        # lexically normalizes back under the root
        self.assertEqual(resolve_entry_path("a/../../out/f", self.root), self.root / "f")

    def test_relative_destination(self):
        cwd = os.getcwd()
        os.chdir(self.tmp.name)
        self.addCleanup(os.chdir, cwd)
        self.assertEqual(resolve_entry_path("x/y", "out"), Path(os.getcwd()) / "out" / "x" / "y")
        with self.assertRaises(UnsafeEntryError):
            resolve_entry_path("../y", "out")


class WalkTreeTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.base = Path(self.tmp.name)
        self.src = self.base / "src"
        (self.src / "a" / "sub").mkdir(parents=True)
        (self.src / "a" / "z.txt").write_text("z")
        (self.src / "b.txt").write_text("b")
        (self.src / "c.txt").write_text("c")

    def _rel(self, nodes):
        return [os.path.relpath(n.path, self.base).replace(os.sep, "/") for n in nodes]

    def test_preorder_sorted(self):
        nodes = list(walk_tree(self.src))
        self.assertEqual(
            self._rel(nodes),
            ["src", "src/a", "src/a/sub", "src/a/z.txt", "src/b.txt", "src/c.txt"],
        )
        self.assertTrue(nodes[0].is_dir)
        self.assertTrue(nodes[2].is_dir)
        self.assertFalse(nodes[3].is_dir)
        self.assertFalse(any(n.is_symlink for n in nodes))

    def test_symlinks_reported_not_followed(self):
        if not _symlinks_supported(self.base):
            self.skipTest("symlinks not supported")
        os.symlink("a", self.src / "link_dir")
        os.symlink("b.txt", self.src / "link_file")
        nodes = list(walk_tree(self.src))
        rel = self._rel(nodes)
        self.assertIn("src/link_dir", rel)
        self.assertIn("src/link_file", rel)
        self.assertFalse(any(r.startswith("src/link_dir/") for r in rel))
        links = [n for n in nodes if n.is_symlink]
        self.assertEqual(len(links), 2)
        self.assertFalse(any(n.is_dir for n in links))

    def test_missing_root_fails_on_first_step(self):
        it = walk_tree(self.base / "missing")
        with self.assertRaises(TraversalError) as ctx:
            next(it)
        self.assertIn("missing", ctx.exception.path)

    def test_unreadable_directory_aborts(self):
        if not hasattr(os, "geteuid") or os.geteuid() == 0:
            self.skipTest("permission checks are bypassed for root")
        locked = self.src / "a" / "sub"
        os.chmod(locked, 0)
        self.addCleanup(os.chmod, locked, 0o755)
        seen = []
        with self.assertRaises(TraversalError) as ctx:
            for node in walk_tree(self.src):
                seen.append(node)
        self.assertIn("sub", ctx.exception.path)
        # nothing after the failing directory is produced
        self.assertEqual(self._rel(seen), ["src", "src/a", "src/a/sub"])

    def test_generator_is_single_pass(self):
        it = walk_tree(self.src)
        first = list(it)
        self.assertEqual(list(it), [])
        self.assertEqual(len(first), 6)


if __name__ == "__main__":
    unittest.main()
