"""Tests for hl_hash.py: fingerprints, anchors and mismatch reports."""

import unittest

from hl_errors import ParseError
from hl_hash import (
    HashMismatch,
    LineRef,
    build_fingerprint_index,
    fingerprint,
    format_hash_lines,
    format_mismatch_report,
    parse_anchor,
)


class TestFingerprint(unittest.TestCase):
    def test_known_values(self):
        self.assertEqual(fingerprint("aaa"), "2d")
        self.assertEqual(fingerprint("hello"), "86")
        self.assertEqual(fingerprint("import os"), "f4")

    def test_two_lowercase_hex_chars(self):
        for line in ["", "x", "def f():", "    return {'a': 1}"]:
            h = fingerprint(line)
            self.assertEqual(len(h), 2)
            self.assertRegex(h, r"^[0-9a-f]{2}$")

    def test_whitespace_insensitive(self):
        self.assertEqual(fingerprint("  a a\ta  "), fingerprint("aaa"))
        self.assertEqual(fingerprint("def  f( ):"), fingerprint("def f():"))

    def test_trailing_carriage_return_ignored(self):
        self.assertEqual(fingerprint("aaa\r"), "2d")

    def test_case_sensitive(self):
        self.assertNotEqual(fingerprint("AAA"), fingerprint("aaa"))

    def test_empty_line(self):
        self.assertEqual(fingerprint(""), "00")
        self.assertEqual(fingerprint("   "), "00")


class TestParseAnchor(unittest.TestCase):
    def test_basic(self):
        self.assertEqual(parse_anchor("5:aa"), LineRef(5, "aa"))

    def test_str_roundtrip(self):
        self.assertEqual(str(parse_anchor("12:3f")), "12:3f")

    def test_strips_echoed_content_after_pipe(self):
        self.assertEqual(parse_anchor("5:aa|    return x"), LineRef(5, "aa"))

    def test_strips_echoed_content_after_two_spaces(self):
        self.assertEqual(parse_anchor("5:aa  return x"), LineRef(5, "aa"))

    def test_spaces_around_colon(self):
        self.assertEqual(parse_anchor(" 5 : aa "), LineRef(5, "aa"))

    def test_uppercase_hash_kept(self):
        self.assertEqual(parse_anchor("5:AB").hash, "AB")

    def test_longer_alnum_hash_accepted(self):
        self.assertEqual(parse_anchor("5:abcdef").hash, "abcdef")

    def test_prefix_fallback(self):
        self.assertEqual(parse_anchor("5:aa-x"), LineRef(5, "aa"))

    def test_missing_hash(self):
        with self.assertRaises(ParseError) as ctx:
            parse_anchor("5:")
        self.assertIn('Expected format "LINE:HASH"', str(ctx.exception))

    def test_not_an_anchor(self):
        with self.assertRaises(ParseError):
            parse_anchor("hello")

    def test_line_zero(self):
        with self.assertRaises(ParseError) as ctx:
            parse_anchor("0:aa")
        self.assertIn("Line number must be >= 1, got 0", str(ctx.exception))

    def test_non_string(self):
        with self.assertRaises(ParseError):
            parse_anchor(5)


class TestFormatHashLines(unittest.TestCase):
    def test_numbers_from_start_line(self):
        self.assertEqual(format_hash_lines("aaa\nbbb", 3), "3:2d|aaa\n4:0d|bbb")

    def test_empty_content_is_one_line(self):
        self.assertEqual(format_hash_lines(""), "1:00|")


class TestFingerprintIndex(unittest.TestCase):
    def test_unique_lines(self):
        unique, ambiguous = build_fingerprint_index(["aaa", "bbb", "ccc"])
        self.assertEqual(unique, {"2d": 1, "0d": 2, "ed": 3})
        self.assertEqual(ambiguous, set())

    def test_duplicates_become_ambiguous(self):
        unique, ambiguous = build_fingerprint_index(["aaa", "bbb", "aaa", "aaa"])
        self.assertEqual(unique, {"0d": 2})
        self.assertEqual(ambiguous, {"2d"})

    def test_colliding_fingerprints_are_ambiguous(self):
        # "a" and "world" share a fingerprint
        unique, ambiguous = build_fingerprint_index(["a", "world"])
        self.assertEqual(unique, {})
        self.assertEqual(ambiguous, {"43"})


class TestMismatchReport(unittest.TestCase):
    LINES = ["aaa", "bbb", "ccc", "ddd", "eee", "x", "hello", "world", "foo"]

    def test_refs(self):
        m = HashMismatch(line=2, expected="zz", actual="0d")
        self.assertEqual(m.stale_ref, "2:zz")
        self.assertEqual(m.current_ref, "2:0d")

    def test_full_report(self):
        report = format_mismatch_report(
            [HashMismatch(2, "zz", "0d"), HashMismatch(8, "zz", "43")], self.LINES,
        )
        expected = "\n".join([
            "2 lines have changed since last read. Use the updated LINE:HASH references "
            "shown below (>>> marks changed lines).",
            "",
            "    1:2d|aaa",
            ">>> 2:0d|bbb",
            "    3:ed|ccc",
            "    4:0c|ddd",
            "    ...",
            "    6:83|x",
            "    7:86|hello",
            ">>> 8:43|world",
            "    9:21|foo",
            "",
            "Quick fix \u2014 replace stale refs:",
            "\t2:zz \u2192 2:0d",
            "\t8:zz \u2192 8:43",
        ])
        self.assertEqual(report, expected)

    def test_single_mismatch_header(self):
        report = format_mismatch_report([HashMismatch(1, "zz", "2d")], self.LINES)
        self.assertTrue(report.startswith("1 line has changed since last read."))
        self.assertIn(">>> 1:2d|aaa", report)
        self.assertIn("    3:ed|ccc", report)
        self.assertNotIn("4:0c|ddd", report)

    def test_adjacent_windows_merge_without_gap(self):
        report = format_mismatch_report(
            [HashMismatch(2, "zz", "0d"), HashMismatch(5, "zz", "ec")], self.LINES,
        )
        self.assertNotIn("...", report)
        self.assertIn("    7:86|hello", report)


if __name__ == "__main__":
    unittest.main()
