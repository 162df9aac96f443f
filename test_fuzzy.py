"""Tests for hl_fuzzy.py: exact and fuzzy substring search."""

import unittest

from hl_errors import AmbiguousMatchError, NoMatchError, ParseError
from hl_fuzzy import (
    MAX_OCCURRENCE_PREVIEWS,
    find_match,
    levenshtein_distance,
    replace_text,
    similarity,
)


class TestLevenshtein(unittest.TestCase):
    def test_classic(self):
        self.assertEqual(levenshtein_distance("kitten", "sitting"), 3)

    def test_empty(self):
        self.assertEqual(levenshtein_distance("", "abc"), 3)
        self.assertEqual(levenshtein_distance("abc", ""), 3)

    def test_identical(self):
        self.assertEqual(levenshtein_distance("abc", "abc"), 0)

    def test_similarity(self):
        self.assertEqual(similarity("abc", "abc"), 1.0)
        self.assertEqual(similarity("", ""), 1.0)
        self.assertAlmostEqual(similarity("abcd", "abcf"), 0.75)
        self.assertEqual(similarity("abc", "xyz"), 0.0)


class TestExactSearch(unittest.TestCase):
    def test_single_exact(self):
        outcome = find_match("a\nhello\nb", "hello")
        self.assertIsNotNone(outcome.match)
        self.assertEqual(outcome.match.match_type, "exact")
        self.assertEqual(outcome.match.start_index, 2)
        self.assertEqual(outcome.match.start_line, 2)
        self.assertEqual(outcome.match.confidence, 1.0)
        self.assertEqual(outcome.match.end_index, 7)

    def test_empty_target(self):
        outcome = find_match("abc", "")
        self.assertIsNone(outcome.match)
        self.assertIsNone(outcome.closest)

    def test_multiple_exact_is_ambiguous(self):
        outcome = find_match("x\nfoo\ny\nfoo\n", "foo")
        self.assertIsNone(outcome.match)
        self.assertEqual(outcome.occurrences, 2)
        self.assertEqual(outcome.occurrence_lines, [2, 4])
        self.assertEqual(len(outcome.occurrence_previews), 2)
        self.assertTrue(outcome.occurrence_previews[0].startswith("  1 | x\n  2 | foo"))

    def test_preview_count_is_capped(self):
        content = "\n".join(["dup"] * 8)
        outcome = find_match(content, "dup")
        self.assertEqual(outcome.occurrences, 8)
        self.assertEqual(len(outcome.occurrence_lines), MAX_OCCURRENCE_PREVIEWS)
        self.assertEqual(outcome.occurrence_lines, [1, 2, 3, 4, 5])

    def test_preview_truncates_long_lines(self):
        long_line = "x" * 100
        outcome = find_match(f"key\n{long_line}\nkey", "key")
        preview_line = outcome.occurrence_previews[0].split("\n")[1]
        self.assertEqual(preview_line, "  2 | " + "x" * 79 + "\u2026")


class TestFuzzySearch(unittest.TestCase):
    def test_close_match_accepted(self):
        content = "def f():\n    return compute_value(a, b)\n"
        outcome = find_match(content, "def f():\n    return compute_valu(a, b)")
        self.assertIsNotNone(outcome.match)
        self.assertEqual(outcome.match.match_type, "fuzzy")
        self.assertEqual(outcome.match.start_line, 1)
        self.assertEqual(outcome.match.actual_text, "def f():\n    return compute_value(a, b)")
        self.assertGreaterEqual(outcome.match.confidence, 0.95)
        self.assertEqual(outcome.fuzzy_matches, 1)

    def test_distant_text_rejected_with_closest(self):
        content = "def f():\n    return compute_value(a, b)\n"
        outcome = find_match(content, "class Other:\n    pass")
        self.assertIsNone(outcome.match)
        self.assertIsNotNone(outcome.closest)
        self.assertLess(outcome.closest.confidence, 0.95)

    def test_fuzzy_disabled(self):
        content = "def f():\n    return compute_value(a, b)\n"
        outcome = find_match(content, "def f():\n    return compute_valu(a, b)", allow_fuzzy=False)
        self.assertIsNone(outcome.match)
        self.assertIsNotNone(outcome.closest)

    def test_target_longer_than_content(self):
        outcome = find_match("one line", "two\nlines\nhere")
        self.assertIsNone(outcome.match)
        self.assertIsNone(outcome.closest)

    def test_two_candidates_is_ambiguous(self):
        content = "alpha_value = compute_total(1)\nbeta\nalpha_value = compute_total(2)\n"
        outcome = find_match(content, "alpha_value = compute_total(3)")
        self.assertIsNone(outcome.match)
        self.assertEqual(outcome.fuzzy_matches, 2)
        self.assertFalse(outcome.dominant_fuzzy)

    def test_dominant_candidate_accepted(self):
        content = (
            "result_value = compute_the_total(1, 2)\n"
            "rQsult_vQlue = cQmpute_thQ_totQl(1, Q)\n"
            "z"
        )
        outcome = find_match(content, "result_value = compute_the_total(1, 3)", threshold=0.80)
        self.assertIsNotNone(outcome.match)
        self.assertTrue(outcome.dominant_fuzzy)
        self.assertEqual(outcome.match.start_line, 1)
        self.assertEqual(outcome.fuzzy_matches, 2)

    def test_indent_insensitive_second_pass(self):
        content = "if x:\ny = 1\nz = 2\n"
        outcome = find_match(content, "if x:\n    y = 1\n    z = 2")
        self.assertIsNotNone(outcome.match)
        self.assertEqual(outcome.match.confidence, 1.0)
        self.assertEqual(outcome.match.actual_text, "if x:\ny = 1\nz = 2")

    def test_typographic_quotes_ignored(self):
        content = "msg = \u201chello\u201d\n"
        outcome = find_match(content, 'msg = "hello"')
        self.assertIsNotNone(outcome.match)
        self.assertEqual(outcome.match.confidence, 1.0)


class TestReplaceText(unittest.TestCase):
    def test_empty_old_text(self):
        with self.assertRaises(ParseError):
            replace_text("abc", "", "x")

    def test_exact(self):
        result = replace_text("a\nfoo\nb", "foo", "bar")
        self.assertEqual(result.content, "a\nbar\nb")
        self.assertEqual(result.count, 1)
        self.assertTrue(result.matched)

    def test_ambiguous_raises(self):
        with self.assertRaises(AmbiguousMatchError) as ctx:
            replace_text("foo\nbar\nfoo", "foo", "baz")
        self.assertEqual(ctx.exception.occurrences, 2)
        self.assertEqual(ctx.exception.occurrence_lines, [1, 3])
        self.assertIn("Found 2 occurrences", str(ctx.exception))
        self.assertIn("Add more context lines to disambiguate.", str(ctx.exception))

    def test_replace_all_exact(self):
        result = replace_text("foo foo\nfoo", "foo", "bar", replace_all=True)
        self.assertEqual(result.content, "bar bar\nbar")
        self.assertEqual(result.count, 3)

    def test_line_endings_normalized(self):
        result = replace_text("a\r\nfoo\r\n", "foo\r\n", "bar\r\n")
        self.assertEqual(result.content, "a\nbar\n")

    def test_fuzzy_reindents_replacement(self):
        content = "class A:\n    def run(self):\n        return compute_value(a, b)\n"
        result = replace_text(
            content,
            "def run(self):\n    return compute_valu(a, b)",
            "def run(self):\n    return compute_value(a, c)",
        )
        self.assertEqual(result.count, 1)
        self.assertEqual(
            result.content,
            "class A:\n    def run(self):\n        return compute_value(a, c)\n",
        )

    def test_no_match(self):
        result = replace_text("alpha\nbeta\n", "something else entirely", "x")
        self.assertFalse(result.matched)
        self.assertEqual(result.count, 0)
        self.assertEqual(result.content, "alpha\nbeta\n")

    def test_ambiguous_fuzzy_reports_candidates(self):
        content = "alpha_value = compute_total(1)\nbeta\nalpha_value = compute_total(2)\n"
        result = replace_text(content, "alpha_value = compute_total(3)", "x")
        self.assertFalse(result.matched)
        self.assertEqual(result.fuzzy_matches, 2)
        err = NoMatchError("alpha_value = compute_total(3)", result.closest, result.fuzzy_matches)
        self.assertIn("2 candidates scored above threshold", str(err))
        self.assertIn("Closest candidate at line", str(err))

    def test_replace_all_fuzzy_single_window(self):
        result = replace_text("a\nx = compute_total_value(1)\nb", "x = compute_total_valu(1)", "x = 2",
                              replace_all=True)
        self.assertTrue(result.matched)
        self.assertEqual(result.count, 1)
        self.assertEqual(result.content, "a\nx = 2\nb")


if __name__ == "__main__":
    unittest.main()
