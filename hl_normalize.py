"""Text normalization utilities.

Line endings, BOM, whitespace, Unicode canonicalization and indentation
profiles. Everything here is pure and stateless; the edit engine, the fuzzy
matcher and the diff renderer all build on it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from math import gcd
from typing import List, Optional, Tuple

BOM = "\ufeff"

# Visually similar to ASCII '-'; used for the no-op fallback in hl_edit.
CONFUSABLE_HYPHENS_RE = re.compile("[\u2010\u2011\u2012\u2013\u2014\u2212\ufe63\uff0d]")

_UNICODE_SPACES = (
    "\u00a0\u2002\u2003\u2004\u2005\u2006\u2007\u2008\u2009\u200a\u202f\u205f\u3000"
)

_FUZZY_DOUBLE_RE = re.compile("[\u201c\u201d\u201e\u201f\u00ab\u00bb]")
_FUZZY_SINGLE_RE = re.compile("[\u2018\u2019\u201a\u201b`\u00b4]")
_FUZZY_DASH_RE = re.compile("[\u2010\u2011\u2012\u2013\u2014\u2212]")
_FUZZY_SPACE_RE = re.compile("[ \t" + _UNICODE_SPACES + "]+")
_ALL_WHITESPACE_RE = re.compile(r"\s+")


def detect_line_ending(content: str) -> str:
    """Return the line ending used by the first line break in content."""
    lf = content.find("\n")
    if lf == -1:
        return "\r" if "\r" in content else "\n"
    crlf = content.find("\r\n")
    if crlf == -1:
        return "\n"
    return "\r\n" if crlf < lf else "\n"


def normalize_to_lf(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def restore_line_endings(text: str, ending: str) -> str:
    if ending == "\n":
        return text
    return text.replace("\n", ending)


def strip_bom(content: str) -> Tuple[str, str]:
    """Split content into (bom, text). bom is '' when there was none."""
    if content.startswith(BOM):
        return BOM, content[1:]
    return "", content


@dataclass
class SourceText:
    """A file's text as an LF-split line array plus the conventions to restore.

    Rendering an unmodified SourceText reproduces the input exactly as long as
    the input used a single line-ending style.
    """
    lines: List[str] = field(default_factory=list)
    line_ending: str = "\n"
    bom: str = ""

    @classmethod
    def parse(cls, raw: str) -> "SourceText":
        bom, text = strip_bom(raw)
        ending = detect_line_ending(text)
        return cls(lines=normalize_to_lf(text).split("\n"), line_ending=ending, bom=bom)

    @property
    def text(self) -> str:
        """The LF-normalized text without BOM."""
        return "\n".join(self.lines)

    def with_text(self, text: str) -> "SourceText":
        return SourceText(lines=text.split("\n"), line_ending=self.line_ending, bom=self.bom)

    def render(self) -> str:
        return self.bom + restore_line_endings(self.text, self.line_ending)


def count_leading_whitespace(line: str) -> int:
    """Count leading spaces and tabs (other whitespace ends the indent)."""
    count = 0
    for ch in line:
        if ch == " " or ch == "\t":
            count += 1
        else:
            break
    return count


def get_leading_whitespace(line: str) -> str:
    return line[:count_leading_whitespace(line)]


def detect_indent_char(text: str) -> str:
    """Return the first indentation character used in text, ' ' by default."""
    for line in text.split("\n"):
        ws = get_leading_whitespace(line)
        if ws:
            return ws[0]
    return " "


def strip_all_whitespace(s: str) -> str:
    return _ALL_WHITESPACE_RE.sub("", s)


def equals_ignoring_whitespace(a: str, b: str) -> bool:
    if a == b:
        return True
    return strip_all_whitespace(a) == strip_all_whitespace(b)


def is_blank(line: str) -> bool:
    return not line.strip()


def normalize_for_fuzzy(line: str) -> str:
    """Canonical form of a line for similarity scoring.

    Case is preserved; quotes, dashes and runs of horizontal whitespace are
    folded so that typographic noise does not cost similarity.
    """
    trimmed = line.strip()
    if not trimmed:
        return ""
    out = _FUZZY_DOUBLE_RE.sub('"', trimmed)
    out = _FUZZY_SINGLE_RE.sub("'", out)
    out = _FUZZY_DASH_RE.sub("-", out)
    return _FUZZY_SPACE_RE.sub(" ", out)


def has_confusable_hyphens(s: str) -> bool:
    return CONFUSABLE_HYPHENS_RE.search(s) is not None


def normalize_confusable_hyphens(s: str) -> str:
    return CONFUSABLE_HYPHENS_RE.sub("-", s)


@dataclass
class IndentProfile:
    lines: List[str]
    indent_counts: List[int]
    min: int
    char: Optional[str]
    space_only: bool
    tab_only: bool
    mixed: bool
    unit: int
    non_empty_count: int


def build_indent_profile(text: str) -> IndentProfile:
    """Infer the indentation style of a block of text.

    `unit` is the gcd of all positive space indents for space-only blocks,
    1 for tab-only blocks and 0 otherwise. Blank lines are ignored.
    """
    lines = text.split("\n")
    counts: List[int] = []
    char: Optional[str] = None
    space_only = True
    tab_only = True
    mixed = False

    for line in lines:
        if is_blank(line):
            continue
        indent = get_leading_whitespace(line)
        counts.append(len(indent))
        if " " in indent:
            tab_only = False
        if "\t" in indent:
            space_only = False
        if " " in indent and "\t" in indent:
            mixed = True
        if indent:
            if char is None:
                char = indent[0]
            elif char != indent[0]:
                mixed = True

    unit = 0
    if counts and space_only:
        for count in counts:
            if count:
                unit = count if unit == 0 else gcd(unit, count)
    if counts and tab_only:
        unit = 1

    return IndentProfile(
        lines=lines,
        indent_counts=counts,
        min=min(counts) if counts else 0,
        char=char,
        space_only=space_only,
        tab_only=tab_only,
        mixed=mixed,
        unit=unit,
        non_empty_count=len(counts),
    )


def convert_leading_tabs_to_spaces(text: str, spaces_per_tab: int) -> str:
    """Expand tab-only indentation; lines with any leading space are left alone."""
    if spaces_per_tab <= 0:
        return text
    out = []
    for line in text.split("\n"):
        leading = get_leading_whitespace(line)
        if is_blank(line) or "\t" not in leading or " " in leading:
            out.append(line)
            continue
        out.append(" " * (len(leading) * spaces_per_tab) + line[len(leading):])
    return "\n".join(out)


def _uniform_tab_to_space(old: IndentProfile, actual: IndentProfile) -> bool:
    for old_line, actual_line in zip(old.lines, actual.lines):
        if is_blank(old_line) or is_blank(actual_line):
            continue
        old_indent = get_leading_whitespace(old_line)
        if not old_indent:
            continue
        if len(get_leading_whitespace(actual_line)) != len(old_indent) * actual.unit:
            return False
    return True


def adjust_indentation(old_text: str, actual_text: str, new_text: str) -> str:
    """Re-indent new_text to sit where actual_text sits in the file.

    old_text is what the caller searched for, actual_text the window that
    matched. When the two differ only by a constant indentation delta (or a
    consistent tab-to-space conversion) the same shift is applied to every
    non-blank line of new_text. Anything less regular returns new_text as-is.
    """
    if old_text == actual_text:
        return new_text

    old_lines = old_text.split("\n")
    new_lines = new_text.split("\n")
    if len(old_lines) == len(new_lines) and all(
        o.strip() == n.strip() for o, n in zip(old_lines, new_lines)
    ):
        # Pure re-indent: the caller's indentation is the edit.
        return new_text

    old = build_indent_profile(old_text)
    actual = build_indent_profile(actual_text)
    new = build_indent_profile(new_text)

    if not new.non_empty_count or not old.non_empty_count or not actual.non_empty_count:
        return new_text
    if old.mixed or actual.mixed or new.mixed:
        return new_text

    if old.char and actual.char and old.char != actual.char:
        if actual.space_only and old.tab_only and new.tab_only and actual.unit > 0:
            if _uniform_tab_to_space(old, actual):
                return convert_leading_tabs_to_spaces(new_text, actual.unit)
        return new_text

    deltas = [
        count_leading_whitespace(actual_line) - count_leading_whitespace(old_line)
        for old_line, actual_line in zip(old.lines, actual.lines)
        if not is_blank(old_line) and not is_blank(actual_line)
    ]
    if not deltas:
        return new_text
    delta = deltas[0]
    if delta == 0 or any(d != delta for d in deltas):
        return new_text
    if new.char and actual.char and new.char != actual.char:
        return new_text

    indent_char = actual.char or old.char or detect_indent_char(actual_text)
    adjusted = []
    for line in new_lines:
        if is_blank(line):
            adjusted.append(line)
        elif delta > 0:
            adjusted.append(indent_char * delta + line)
        else:
            adjusted.append(line[min(-delta, count_leading_whitespace(line)):])
    return "\n".join(adjusted)
