import os
import tempfile
import unittest
from pathlib import Path

from assist_gateway.errors import InvalidPath, SandboxEscape
from assist_gateway.sandbox.paths import PathResolver


class TestPathResolver(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name).resolve() / "ws"
        self.root.mkdir()
        self.resolver = PathResolver(self.root)

    def tearDown(self):
        self.tmp.cleanup()

    def test_relative_path_is_joined_to_root(self):
        self.assertEqual(self.resolver.resolve("src/a.py"), self.root / "src" / "a.py")

    def test_dot_segments_are_collapsed(self):
        self.assertEqual(self.resolver.resolve("src/../b.txt"), self.root / "b.txt")

    def test_empty_and_whitespace_paths_are_invalid(self):
        for raw in ("", "   ", None):
            with self.assertRaises(InvalidPath):
                self.resolver.resolve(raw)

    def test_nul_byte_is_invalid(self):
        with self.assertRaises(InvalidPath):
            self.resolver.resolve("a\x00b")

    def test_root_itself_is_confined(self):
        self.assertEqual(self.resolver.resolve_confined("."), self.root)

    def test_parent_traversal_escapes(self):
        with self.assertRaises(SandboxEscape):
            self.resolver.resolve_confined("../outside.txt")

    def test_absolute_path_outside_escapes(self):
        with self.assertRaises(SandboxEscape):
            self.resolver.resolve_confined("/etc/passwd")

    def test_sibling_with_common_prefix_escapes(self):
        evil = self.root.parent / "ws-evil"
        evil.mkdir()
        with self.assertRaises(SandboxEscape):
            self.resolver.resolve_confined(str(evil / "x.txt"))

    def test_symlink_to_outside_escapes(self):
        outside = self.root.parent / "outside"
        outside.mkdir()
        os.symlink(outside, self.root / "link")
        with self.assertRaises(SandboxEscape):
            self.resolver.resolve_confined("link/secret.txt")

    def test_absolute_path_inside_root_is_allowed(self):
        target = self.root / "inner" / "f.txt"
        self.assertEqual(self.resolver.resolve_confined(str(target)), target)

    def test_relative_renders_posix_path(self):
        self.assertEqual(self.resolver.relative("src/a.py"), "src/a.py")
        self.assertEqual(self.resolver.relative(str(self.root)), ".")

    def test_confine_requires_absolute_path(self):
        with self.assertRaises(InvalidPath):
            self.resolver.confine("relative/path")

    def test_resolution_does_not_touch_filesystem(self):
        self.resolver.resolve_confined("new/dir/file.txt")
        self.assertFalse((self.root / "new").exists())


if __name__ == "__main__":
    unittest.main()
