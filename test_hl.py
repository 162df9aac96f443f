#!/usr/bin/env python3
"""Tests for hl.py: file-level read/edit/write/grep and the CLI."""

import json
import os
import shutil
import subprocess
import sys
import tempfile
import unittest

from hl import (
    EXIT_CODES,
    ReadResult,
    edit_file,
    format_grep_output,
    grep_files,
    main,
    read_file,
    result_to_dict,
    write_file,
)

HERE = os.path.dirname(os.path.abspath(__file__))


class _TempDirCase(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    def _write(self, name, content):
        path = os.path.join(self.tmpdir, name)
        with open(path, 'w', newline='') as f:
            f.write(content)
        return path

    def _read(self, path):
        with open(path, newline='') as f:
            return f.read()


class TestReadFile(_TempDirCase):
    def test_hash_prefixed_lines(self):
        path = self._write("a.txt", "aaa\nbbb")
        result = read_file(path)
        self.assertEqual(result.status, "ok")
        self.assertEqual(result.text, f"File: {path} (2 lines)\n\n1:2d|aaa\n2:0d|bbb")
        self.assertEqual((result.start_line, result.end_line, result.total_lines), (1, 2, 2))

    def test_page(self):
        path = self._write("a.txt", "aaa\nbbb\nccc\nddd\neee")
        result = read_file(path, offset=2, limit=2)
        header, body = result.text.split("\n\n")
        self.assertEqual(header, f"File: {path} (5 lines) [showing lines 2-3] (2 more lines below)")
        self.assertEqual(body, "2:0d|bbb\n3:ed|ccc")

    def test_last_page_has_no_more_below(self):
        path = self._write("a.txt", "aaa\nbbb\nccc")
        result = read_file(path, offset=2)
        self.assertTrue(result.text.startswith(f"File: {path} (3 lines) [showing lines 2-3]\n\n"))

    def test_plain(self):
        path = self._write("a.txt", "aaa\nbbb")
        result = read_file(path, plain=True)
        self.assertTrue(result.text.endswith("\n\n1|aaa\n2|bbb"))

    def test_crlf_hidden(self):
        path = self._write("a.txt", "aaa\r\nbbb")
        result = read_file(path)
        self.assertNotIn("\r", result.text)
        self.assertIn("1:2d|aaa", result.text)

    def test_missing(self):
        result = read_file(os.path.join(self.tmpdir, "nope.txt"))
        self.assertEqual(result.status, "error")
        self.assertIn("File not found", result.error)

    def test_offset_past_end(self):
        path = self._write("a.txt", "aaa")
        result = read_file(path, offset=5)
        self.assertEqual(result.status, "error")
        self.assertIn("past the end", result.error)

    def test_directory_listing(self):
        os.mkdir(os.path.join(self.tmpdir, "sub"))
        self._write("x.txt", "x")
        result = read_file(self.tmpdir)
        self.assertEqual(result.text, f"Directory: {self.tmpdir}\n\nd sub\nf x.txt")


class TestEditFile(_TempDirCase):
    def test_applied(self):
        path = self._write("a.txt", "aaa\nbbb\nccc\n")
        result = edit_file(path, [{"set_line": {"anchor": "2:0d", "new_text": "BBB"}}])
        self.assertEqual(result.status, "applied")
        self.assertEqual(result.first_changed_line, 2)
        self.assertEqual(self._read(path), "aaa\nBBB\nccc\n")
        self.assertIn("+2|BBB", result.diff)

    def test_mismatch_leaves_file_untouched(self):
        path = self._write("a.txt", "aaa\nbbb\nccc\n")
        result = edit_file(path, [
            {"set_line": {"anchor": "1:2d", "new_text": "AAA"}},
            {"set_line": {"anchor": "2:zz", "new_text": "BBB"}},
        ])
        self.assertEqual(result.status, "mismatch")
        self.assertEqual(result.remaps, {"2:zz": "2:0d"})
        self.assertEqual(self._read(path), "aaa\nbbb\nccc\n")

    def test_crlf_preserved(self):
        path = self._write("a.txt", "aaa\r\nbbb\r\n")
        result = edit_file(path, [{"insert_after": {"anchor": "1:2d", "text": "new"}}])
        self.assertEqual(result.status, "applied")
        self.assertEqual(self._read(path), "aaa\r\nnew\r\nbbb\r\n")

    def test_noop(self):
        path = self._write("a.txt", "aaa\nbbb\n")
        result = edit_file(path, [{"set_line": {"anchor": "2:0d", "new_text": "bbb"}}])
        self.assertEqual(result.status, "noop")
        self.assertEqual(result.noop_edits, [{"edit_index": 0, "loc": "2:0d", "current_content": "bbb"}])

    def test_ambiguous(self):
        path = self._write("a.txt", "foo\nbar\nfoo\n")
        result = edit_file(path, [{"replace": {"old_text": "foo", "new_text": "baz"}}])
        self.assertEqual(result.status, "ambiguous")

    def test_no_match(self):
        path = self._write("a.txt", "hello world\n")
        result = edit_file(path, [{"replace": {"old_text": "completely unrelated long string", "new_text": "x"}}])
        self.assertEqual(result.status, "no_match")

    def test_parse_error(self):
        path = self._write("a.txt", "aaa\n")
        result = edit_file(path, [{"set_line": {"anchor": "bad", "new_text": "x"}}])
        self.assertEqual(result.status, "error")
        self.assertIn("edits[0]", result.error)

    def test_missing_file(self):
        result = edit_file("/nonexistent/file.py", [])
        self.assertEqual(result.status, "error")
        self.assertIn("File not found", result.error)

    def test_dry_run(self):
        path = self._write("a.txt", "aaa\nbbb\n")
        result = edit_file(path, [{"set_line": {"anchor": "1:2d", "new_text": "AAA"}}], dry_run=True)
        self.assertEqual(result.status, "applied")
        self.assertTrue(result.dry_run)
        self.assertIn("-1|aaa", result.diff)
        self.assertEqual(self._read(path), "aaa\nbbb\n")


class TestWriteFile(_TempDirCase):
    def test_create_then_overwrite(self):
        path = os.path.join(self.tmpdir, "new.txt")
        result = write_file(path, "a\nb\n")
        self.assertEqual(result.status, "created")
        self.assertEqual(result.lines, 3)
        result = write_file(path, "c")
        self.assertEqual(result.status, "overwritten")
        self.assertEqual(self._read(path), "c")

    def test_creates_parent_dirs(self):
        path = os.path.join(self.tmpdir, "deep", "er", "x.txt")
        result = write_file(path, "x")
        self.assertEqual(result.status, "created")
        self.assertTrue(os.path.exists(path))


class TestGrep(_TempDirCase):
    def test_format_output(self):
        raw = "a.py:3:ccc\na.py-4-ddd\n--\nb.py:1:aaa\n"
        self.assertEqual(
            format_grep_output(raw),
            "a.py:>>3:ed|ccc\na.py:  4:0c|ddd\n--\nb.py:>>1:2d|aaa",
        )

    @unittest.skipUnless(shutil.which("rg"), "ripgrep not installed")
    def test_grep_files(self):
        path = self._write("a.txt", "aaa\nbbb\nccc\n")
        result = grep_files("bbb", self.tmpdir)
        self.assertEqual(result.status, "ok")
        self.assertEqual(result.text, f"{path}:>>2:0d|bbb")

    @unittest.skipUnless(shutil.which("rg"), "ripgrep not installed")
    def test_grep_no_match(self):
        self._write("a.txt", "aaa\n")
        result = grep_files("zzz", self.tmpdir)
        self.assertEqual(result.status, "no_match")
        self.assertEqual(result.text, "No matches found.")


class TestResultToDict(unittest.TestCase):
    def test_skips_none(self):
        result = ReadResult(status="error", file="x", error="boom")
        self.assertEqual(result_to_dict(result), {"status": "error", "file": "x", "error": "boom"})


class TestCLI(_TempDirCase):
    def _edits(self, edits):
        return self._write("edits.json", json.dumps({"edits": edits}))

    def test_read(self):
        path = self._write("a.txt", "aaa\n")
        self.assertEqual(main(["read", path]), 0)

    def test_read_missing(self):
        self.assertEqual(main(["read", os.path.join(self.tmpdir, "nope")]), 1)

    def test_edit_applied(self):
        path = self._write("a.txt", "aaa\nbbb\n")
        code = main(["edit", "--file", path, "--edits", self._edits([
            {"set_line": {"anchor": "1:2d", "new_text": "AAA"}},
        ])])
        self.assertEqual(code, EXIT_CODES["applied"])
        self.assertEqual(self._read(path), "AAA\nbbb\n")

    def test_edit_bare_array(self):
        path = self._write("a.txt", "aaa\nbbb\n")
        edits_path = self._write("edits.json", json.dumps([{"replace": {"old_text": "bbb", "new_text": "BBB"}}]))
        self.assertEqual(main(["edit", "--file", path, "--edits", edits_path]), 0)
        self.assertEqual(self._read(path), "aaa\nBBB\n")

    def test_exit_code_mismatch(self):
        path = self._write("a.txt", "aaa\nbbb\n")
        code = main(["edit", "--file", path, "--edits", self._edits([
            {"set_line": {"anchor": "1:zz", "new_text": "AAA"}},
        ])])
        self.assertEqual(code, 3)

    def test_exit_code_ambiguous(self):
        path = self._write("a.txt", "foo bar\nfoo bar\n")
        code = main(["edit", "--file", path, "--edits", self._edits([
            {"replace": {"old_text": "foo bar", "new_text": "baz"}},
        ])])
        self.assertEqual(code, 2)

    def test_exit_code_noop(self):
        path = self._write("a.txt", "aaa\n")
        code = main(["edit", "--file", path, "--edits", self._edits([
            {"set_line": {"anchor": "1:2d", "new_text": "aaa"}},
        ])])
        self.assertEqual(code, 1)

    def test_edit_requires_input(self):
        path = self._write("a.txt", "aaa\n")
        self.assertEqual(main(["edit", "--file", path]), 1)

    def test_write(self):
        path = os.path.join(self.tmpdir, "w.txt")
        self.assertEqual(main(["write", "--file", path, "--content", "hi\n"]), 0)
        self.assertEqual(self._read(path), "hi\n")

    def test_bad_log_level(self):
        path = self._write("a.txt", "aaa\n")
        self.assertEqual(main(["--log-level", "LOUD", "read", path]), 1)

    def test_no_command(self):
        self.assertEqual(main([]), 1)


class TestStdin(_TempDirCase):
    """--stdin mode via subprocess."""

    def test_stdin_edit(self):
        target = self._write("a.txt", "aaa\nbbb\n")
        result = subprocess.run(
            [sys.executable, "hl.py", "edit", "--file", target, "--stdin"],
            input=json.dumps([{"set_line": {"anchor": "2:0d", "new_text": "BBB"}}]),
            capture_output=True,
            text=True,
            cwd=HERE,
        )
        self.assertEqual(result.returncode, 0)
        output = json.loads(result.stdout)
        self.assertEqual(output["status"], "applied")
        self.assertEqual(output["first_changed_line"], 2)
        self.assertEqual(self._read(target), "aaa\nBBB\n")

    def test_stdin_mismatch_output(self):
        target = self._write("a.txt", "aaa\nbbb\n")
        result = subprocess.run(
            [sys.executable, "hl.py", "edit", "--file", target, "--stdin"],
            input=json.dumps({"edits": [{"set_line": {"anchor": "2:zz", "new_text": "BBB"}}]}),
            capture_output=True,
            text=True,
            cwd=HERE,
        )
        self.assertEqual(result.returncode, 3)
        output = json.loads(result.stdout)
        self.assertEqual(output["status"], "mismatch")
        self.assertEqual(output["remaps"], {"2:zz": "2:0d"})
        self.assertNotIn("diff", output)


if __name__ == "__main__":
    unittest.main()
