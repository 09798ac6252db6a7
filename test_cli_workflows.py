from __future__ import annotations

import io
import os
import re
import subprocess
import sys
import tarfile
import tempfile
import unittest
from pathlib import Path
from typing import Dict

from tarlz4.blockstream import LZ4BlockWriter


REPO_ROOT = Path(__file__).resolve().parent


def _build_fixture_tree(root: Path) -> Dict[str, bytes]:
    files: Dict[str, bytes] = {}
    (root / "docs" / "notes").mkdir(parents=True)
    content = b"hello world\n" * 20
    (root / "docs" / "readme.txt").write_bytes(content)
    files["docs/readme.txt"] = content

    bin_data = os.urandom(20000)
    (root / "docs" / "notes" / "binary.bin").write_bytes(bin_data)
    files["docs/notes/binary.bin"] = bin_data

    (root / "docs" / "notes" / "empty.txt").write_text("")
    files["docs/notes/empty.txt"] = b""

    if hasattr(os, "symlink"):
        try:
            os.symlink("notes", root / "docs" / "ln_notes")
        except (OSError, NotImplementedError):
            pass
    return files


def _parse_checksum(stdout: str) -> str:
    m = re.search(r"^checksum (\w+):([0-9a-f]+)$", stdout, re.MULTILINE)
    if m is None:
        raise AssertionError(f"no checksum line in output:\n{stdout}")
    return m.group(2)


class CLIIntegrationTests(unittest.TestCase):
    def _env(self):
        env = os.environ.copy()
        existing = env.get("PYTHONPATH", "")
        env["PYTHONPATH"] = str(REPO_ROOT) if not existing else f"{REPO_ROOT}{os.pathsep}{existing}"
        return env

    def run_cmd(self, cmd, *, expect: int | None = 0):
        proc = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=self._env(),
        )
        if expect is not None and proc.returncode != expect:
            raise AssertionError(
                f"exited {proc.returncode}, expected {expect}\nCommand: {' '.join(cmd)}\nSTDOUT:\n{proc.stdout}\nSTDERR:\n{proc.stderr}"
            )
        return proc

    def run_cli(self, args, *, expect: int | None = 0):
        return self.run_cmd([sys.executable, "-m", "tarlz4.cli"] + list(args), expect=expect)

    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.workspace = Path(tmp.name)
        self.base = self.workspace / "base"
        self.base.mkdir()
        self.files = _build_fixture_tree(self.base)
        self.archive = self.workspace / "docs.tar.lz4"

    def test_roundtrip_with_expected_checksum(self):
        packed = self.run_cli(["compress", str(self.base), "docs", str(self.archive)])
        self.assertIn("adding: docs/", packed.stdout)
        self.assertNotIn("ln_notes", packed.stdout)
        digest = _parse_checksum(packed.stdout)

        listing = self.run_cli(["list", str(self.archive)])
        self.assertIn("docs/notes/binary.bin", listing.stdout)
        self.assertEqual(_parse_checksum(listing.stdout.replace("entries; ", "\n")), digest)

        out = self.workspace / "restore"
        restored = self.run_cli(["decompress", str(self.archive), str(out), "--expect", digest.upper()])
        self.assertIn("Checksum OK", restored.stdout)
        self.assertEqual(_parse_checksum(restored.stdout), digest)
        for rel, data in self.files.items():
            self.assertEqual((out / rel).read_bytes(), data)
        self.assertFalse(os.path.lexists(out / "docs" / "ln_notes"))

    def test_other_checksum_algorithm(self):
        packed = self.run_cli(
            ["compress", str(self.base), "docs", str(self.archive), "--checksum", "sha256", "--block-size", "1024", "--quiet"]
        )
        self.assertNotIn("adding:", packed.stdout)
        digest = _parse_checksum(packed.stdout)
        self.assertEqual(len(digest), 64)
        out = self.workspace / "restore"
        self.run_cli(["decompress", str(self.archive), str(out), "--checksum", "sha256", "--expect", digest, "--quiet"])

    def test_checksum_mismatch_exits_one(self):
        self.run_cli(["compress", str(self.base), "docs", str(self.archive)])
        proc = self.run_cli(
            ["decompress", str(self.archive), str(self.workspace / "restore"), "--expect", "00000000"], expect=1
        )
        self.assertIn("Checksum mismatch", proc.stderr)

    def test_missing_archive_exits_two(self):
        out = self.workspace / "restore"
        proc = self.run_cli(["decompress", str(self.workspace / "nope.tar.lz4"), str(out)], expect=2)
        self.assertIn("Archive doesn't exist", proc.stderr)
        self.assertFalse(out.exists())

    def test_no_clobber(self):
        self.archive.write_bytes(b"keep")
        proc = self.run_cli(["compress", str(self.base), "docs", str(self.archive), "--no-clobber"], expect=2)
        self.assertIn("Error:", proc.stderr)
        self.assertEqual(self.archive.read_bytes(), b"keep")

    def test_corrupted_archive_is_rejected(self):
        self.run_cli(["compress", str(self.base), "docs", str(self.archive)])
        self.run_cmd([sys.executable, str(REPO_ROOT / "scripts" / "corrupt.py"), "first-block", str(self.archive)])
        proc = self.run_cli(["decompress", str(self.archive), str(self.workspace / "restore")], expect=2)
        self.assertIn("corrupted", proc.stderr)

    def test_unsafe_archive_is_refused(self):
        with open(self.archive, "wb") as f:
            blocks = LZ4BlockWriter(f)
            with tarfile.open(fileobj=blocks, mode="w|", format=tarfile.PAX_FORMAT) as tar:
                data = b"owned"
                info = tarfile.TarInfo("../../escape.txt")
                info.size = len(data)
                tar.addfile(info, io.BytesIO(data))
            blocks.finish()
        out = self.workspace / "sub" / "restore"
        proc = self.run_cli(["decompress", str(self.archive), str(out)], expect=2)
        self.assertIn("refusing to extract outside the output directory", proc.stderr)
        self.assertFalse((self.workspace / "escape.txt").exists())

    def test_log_level_from_environment(self):
        env = self._env()
        env["TARLZ4_LOG_LEVEL"] = "INFO"
        proc = subprocess.run(
            [sys.executable, "-m", "tarlz4.cli", "compress", str(self.base), "docs", str(self.archive), "--quiet"],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=env,
        )
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertIn("| INFO     | tarlz4.writer | packed", proc.stderr)


if __name__ == "__main__":
    unittest.main()
