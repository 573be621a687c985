import shutil
import tempfile
import unittest
from pathlib import Path

from assist_gateway.errors import PatchFailed, SandboxEscape
from assist_gateway.execution.diff_engine import DiffEngine, PatchMode, parse_unified_diff, split_lines
from assist_gateway.sandbox.paths import PathResolver


OFFSET_PATCH = "--- f.txt\n+++ f.txt\n@@ -1,3 +1,3 @@\n a\n-b\n+B\n c\n"


class _EngineCase(unittest.TestCase):
    patch_command = None

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name).resolve()
        self.engine = DiffEngine(PathResolver(self.root), patch_command=self.patch_command)

    def tearDown(self):
        self.tmp.cleanup()

    def write(self, rel, content):
        path = self.root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content.encode("utf-8"))
        return path

    def read(self, rel):
        return (self.root / rel).read_bytes().decode("utf-8")


class TestGenerateDiff(_EngineCase):
    def test_changed_file_produces_unified_diff(self):
        self.write("f.txt", "a\nb\nc\n")
        diff = self.engine.generate_diff("f.txt", "a\nB\nc\n")
        self.assertEqual(
            diff,
            "--- f.txt\n+++ f.txt\n@@ -1,3 +1,3 @@\n a\n-b\n+B\n c\n",
        )

    def test_identical_content_is_empty(self):
        self.write("f.txt", "same\n")
        self.assertEqual(self.engine.generate_diff("f.txt", "same\n"), "")

    def test_missing_file_with_empty_content_is_empty(self):
        self.assertEqual(self.engine.generate_diff("nope.txt", ""), "")

    def test_missing_file_diffs_from_dev_null(self):
        diff = self.engine.generate_diff("new.txt", "hi\n")
        self.assertEqual(diff, "--- /dev/null\n+++ new.txt\n@@ -0,0 +1 @@\n+hi\n")

    def test_missing_final_newline_is_marked(self):
        self.write("f.txt", "a")
        diff = self.engine.generate_diff("f.txt", "b")
        self.assertIn("-a\n\\ No newline at end of file\n", diff)
        self.assertIn("+b\n\\ No newline at end of file\n", diff)

    def test_generate_diff_does_not_modify_file(self):
        self.write("f.txt", "a\n")
        self.engine.generate_diff("f.txt", "b\n")
        self.assertEqual(self.read("f.txt"), "a\n")

    def test_escape_is_rejected(self):
        with self.assertRaises(SandboxEscape):
            self.engine.generate_diff("../x.txt", "x")


class TestApplyPatch(_EngineCase):
    def assert_round_trip(self, rel, before, after):
        if before is not None:
            self.write(rel, before)
        patch = self.engine.generate_diff(rel, after)
        outcome = self.engine.apply_patch(rel, patch)
        self.assertTrue(outcome.ok)
        self.assertEqual(self.read(rel), after)
        self.assertEqual(self.engine.generate_diff(rel, after), "")

    def test_round_trip_single_change(self):
        self.assert_round_trip("f.txt", "a\nb\nc\n", "a\nB\nc\n")

    def test_round_trip_multiple_hunks(self):
        before = "".join(f"line {i}\n" for i in range(1, 31))
        after = before.replace("line 2\n", "line two\n").replace("line 27\n", "")
        after = "header\n" + after + "footer\n"
        self.assert_round_trip("big.txt", before, after)

    def test_round_trip_creates_new_file(self):
        self.assert_round_trip("pkg/new.py", None, "print('hi')\n")

    def test_round_trip_newline_edge_cases(self):
        self.assert_round_trip("a.txt", "x\ny", "x\ny\n")
        self.assert_round_trip("b.txt", "x\ny\n", "x\ny")
        self.assert_round_trip("c.txt", "only", "changed")

    def test_round_trip_preserves_crlf(self):
        self.assert_round_trip("win.txt", "a\r\nb\r\n", "a\r\nB\r\n")

    def test_empty_patch_is_noop_success(self):
        self.write("f.txt", "keep\n")
        outcome = self.engine.apply_patch("f.txt", "")
        self.assertTrue(outcome.ok)
        self.assertEqual(self.read("f.txt"), "keep\n")

    def test_overwrite_mode_writes_verbatim(self):
        self.write("f.txt", "old\n")
        outcome = self.engine.apply_patch("f.txt", "not a diff", mode="overwrite")
        self.assertTrue(outcome.ok)
        self.assertEqual(self.read("f.txt"), "not a diff")

    def test_overwrite_mode_accepts_enum(self):
        self.engine.apply_patch("g.txt", "x", mode=PatchMode.OVERWRITE)
        self.assertEqual(self.read("g.txt"), "x")

    def test_unknown_mode_fails(self):
        with self.assertRaises(PatchFailed):
            self.engine.apply_patch("f.txt", "x", mode="merge")

    def test_stale_patch_fails_and_leaves_file_untouched(self):
        self.write("f.txt", "a\nb\nc\n")
        patch = self.engine.generate_diff("f.txt", "a\nB\nc\n")
        self.write("f.txt", "a\nX\nc\n")
        with self.assertRaises(PatchFailed):
            self.engine.apply_patch("f.txt", patch)
        self.assertEqual(self.read("f.txt"), "a\nX\nc\n")

    def test_garbage_patch_fails(self):
        self.write("f.txt", "a\n")
        with self.assertRaises(PatchFailed):
            self.engine.apply_patch("f.txt", "this is not a patch\n")

    def test_multi_file_patch_is_rejected(self):
        self.write("a.txt", "a\n")
        patch = (
            "--- a.txt\n+++ a.txt\n@@ -1 +1 @@\n-a\n+A\n"
            "--- b.txt\n+++ b.txt\n@@ -1 +1 @@\n-b\n+B\n"
        )
        with self.assertRaises(PatchFailed):
            self.engine.apply_patch("a.txt", patch)
        self.assertEqual(self.read("a.txt"), "a\n")

    def test_patch_for_other_file_is_rejected(self):
        self.write("a.txt", "a\n")
        with self.assertRaises(PatchFailed):
            self.engine.apply_patch("a.txt", "--- other.txt\n+++ other.txt\n@@ -1 +1 @@\n-a\n+A\n")

    def test_git_style_prefixes_are_accepted(self):
        self.write("a.txt", "a\n")
        outcome = self.engine.apply_patch("a.txt", "--- a/a.txt\n+++ b/a.txt\n@@ -1 +1 @@\n-a\n+A\n")
        self.assertTrue(outcome.ok)
        self.assertEqual(self.read("a.txt"), "A\n")

    def test_hunk_with_line_offset_applies_at_nearest_match(self):
        self.write("f.txt", "x\na\nb\nc\n")
        outcome = self.engine.apply_patch("f.txt", OFFSET_PATCH)
        self.assertTrue(outcome.ok)
        self.assertEqual(self.read("f.txt"), "x\na\nB\nc\n")

    def test_escape_is_rejected(self):
        with self.assertRaises(SandboxEscape):
            self.engine.apply_patch("../x.txt", "anything", mode="overwrite")


class TestParsing(unittest.TestCase):
    def test_split_lines_keeps_partial_last_line(self):
        self.assertEqual(split_lines("a\nb"), ["a\n", "b"])
        self.assertEqual(split_lines("a\n"), ["a\n"])
        self.assertEqual(split_lines(""), [])

    def test_truncated_hunk_fails(self):
        with self.assertRaises(PatchFailed):
            parse_unified_diff("--- f\n+++ f\n@@ -1,3 +1,3 @@\n a\n")

    def test_removed_line_starting_with_dashes_is_body(self):
        hunks = parse_unified_diff("--- f\n+++ f\n@@ -1,2 +1,1 @@\n--- x\n keep\n")
        self.assertEqual(hunks[0].old_lines, ["-- x\n", "keep\n"])
        self.assertEqual(hunks[0].new_lines, ["keep\n"])


@unittest.skipUnless(shutil.which("true"), "true(1) unavailable")
class TestExternalPatchVerification(_EngineCase):
    # "true" exits 0 without touching anything, so only verification can catch it.
    patch_command = "true"

    def test_silent_noop_patch_utility_is_detected(self):
        self.write("f.txt", "a\n")
        patch = self.engine.generate_diff("f.txt", "b\n")
        with self.assertRaises(PatchFailed) as ctx:
            self.engine.apply_patch("f.txt", patch)
        self.assertIn("cleanly", ctx.exception.message)
        self.assertEqual(self.read("f.txt"), "a\n")


@unittest.skipUnless(shutil.which("patch"), "patch(1) unavailable")
class TestExternalPatchUtility(_EngineCase):
    patch_command = "patch"

    def test_round_trip_through_patch_binary(self):
        self.write("f.txt", "a\nb\nc\n")
        patch = self.engine.generate_diff("f.txt", "a\nB\nc\n")
        outcome = self.engine.apply_patch("f.txt", patch)
        self.assertTrue(outcome.ok)
        self.assertEqual(self.read("f.txt"), "a\nB\nc\n")

    def test_offset_hunk_is_left_to_patch_binary(self):
        self.write("f.txt", "x\na\nb\nc\n")
        outcome = self.engine.apply_patch("f.txt", OFFSET_PATCH)
        self.assertTrue(outcome.ok)
        self.assertIn("offset", outcome.output)
        self.assertEqual(self.read("f.txt"), "x\na\nB\nc\n")
        self.assertEqual(sorted(p.name for p in self.root.iterdir()), ["f.txt"])

    def test_rejected_patch_leaves_file_untouched(self):
        self.write("f.txt", "a\nX\nc\n")
        with self.assertRaises(PatchFailed):
            self.engine.apply_patch("f.txt", OFFSET_PATCH)
        self.assertEqual(self.read("f.txt"), "a\nX\nc\n")
        self.assertEqual(sorted(p.name for p in self.root.iterdir()), ["f.txt"])


if __name__ == "__main__":
    unittest.main()
