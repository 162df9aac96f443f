"""Line fingerprints and LINE:HASH anchors.

Each line is identified by a 2-character hex fingerprint of its content with
all whitespace removed. The combined ``LINE:HASH`` reference acts as a
staleness check: if the line at that position no longer has that fingerprint,
the caller's view of the file is out of date.

Displayed format: ``LINE:HASH|CONTENT``
Reference format: ``"LINE:HASH"`` (e.g. ``"5:a3"``)
"""

from __future__ import annotations

import re
import zlib
from dataclasses import dataclass
from typing import Dict, List, Set, Tuple

from hl_errors import ParseError

HASH_LEN = 2
HASH_MOD = 16 ** HASH_LEN
MISMATCH_CONTEXT = 2

_WHITESPACE_RE = re.compile(r"\s+")
_ANCHOR_STRICT_RE = re.compile(r"^(\d+):([0-9a-zA-Z]{1,16})$")
_ANCHOR_PREFIX_RE = re.compile(r"^(\d+):([0-9a-zA-Z]{%d})" % HASH_LEN)
_ECHO_PIPE_RE = re.compile(r"\|.*$", re.DOTALL)
_ECHO_SPACES_RE = re.compile(r" {2}.*$", re.DOTALL)
_COLON_SPACES_RE = re.compile(r"\s*:\s*")


def fingerprint(line: str) -> str:
    """Return the 2-char lowercase hex fingerprint of a line.

    A trailing carriage return and every whitespace character are removed
    before hashing, so re-indenting or re-spacing a line keeps its
    fingerprint. CRC-32 reduced mod 256; collisions are expected.
    """
    if line.endswith("\r"):
        line = line[:-1]
    canon = _WHITESPACE_RE.sub("", line)
    crc = zlib.crc32(canon.encode("utf-8")) & 0xFFFFFFFF
    return f"{crc % HASH_MOD:0{HASH_LEN}x}"


@dataclass
class LineRef:
    """An anchor: the line last seen at ``line`` had fingerprint ``hash``."""
    line: int
    hash: str

    def __str__(self) -> str:
        return f"{self.line}:{self.hash}"


def parse_anchor(text: str) -> LineRef:
    """Parse ``"N:HH"`` into a LineRef.

    Content a caller may have copied along with the reference (anything after
    a ``|`` or two consecutive spaces) is dropped, and spaces around the colon
    are tolerated. If the cleaned text is not a strict ``N:HASH`` the first
    HASH_LEN characters after the colon are used.
    """
    if not isinstance(text, str):
        raise ParseError(f'Invalid line reference {text!r}. Expected format "LINE:HASH" (e.g. "5:aa").')
    cleaned = _ECHO_SPACES_RE.sub("", _ECHO_PIPE_RE.sub("", text)).strip()
    normalized = _COLON_SPACES_RE.sub(":", cleaned, count=1)
    match = _ANCHOR_STRICT_RE.match(normalized) or _ANCHOR_PREFIX_RE.match(normalized)
    if not match:
        raise ParseError(f'Invalid line reference "{text}". Expected format "LINE:HASH" (e.g. "5:aa").')
    line = int(match.group(1))
    if line < 1:
        raise ParseError(f'Line number must be >= 1, got {line} in "{text}".')
    return LineRef(line=line, hash=match.group(2))


def format_hash_lines(content: str, start_line: int = 1) -> str:
    """Prefix every line of content with ``LINE:HASH|``, numbering from start_line."""
    return "\n".join(
        f"{num}:{fingerprint(line)}|{line}"
        for num, line in enumerate(content.split("\n"), start=start_line)
    )


def build_fingerprint_index(lines: List[str]) -> Tuple[Dict[str, int], Set[str]]:
    """Map each fingerprint to the single line that owns it.

    Returns ``(unique, ambiguous)``: fingerprints seen on exactly one line map
    to that 1-based line number; fingerprints seen on two or more lines are
    left out of ``unique`` and listed in ``ambiguous`` instead.
    """
    unique: Dict[str, int] = {}
    ambiguous: Set[str] = set()
    for lineno, line in enumerate(lines, start=1):
        h = fingerprint(line)
        if h in ambiguous:
            continue
        if h in unique:
            del unique[h]
            ambiguous.add(h)
            continue
        unique[h] = lineno
    return unique, ambiguous


@dataclass
class HashMismatch:
    line: int
    expected: str
    actual: str

    @property
    def stale_ref(self) -> str:
        return f"{self.line}:{self.expected}"

    @property
    def current_ref(self) -> str:
        return f"{self.line}:{self.actual}"


def format_mismatch_report(mismatches: List[HashMismatch], file_lines: List[str]) -> str:
    """Render the text a caller needs to retry after a rejected batch.

    Shows every mismatched line with MISMATCH_CONTEXT lines either side in
    display format, ``>>>`` marking the mismatched ones, followed by the
    stale-to-current remap for each.
    """
    marked = {m.line for m in mismatches}
    shown: Set[int] = set()
    for m in mismatches:
        lo = max(1, m.line - MISMATCH_CONTEXT)
        hi = min(len(file_lines), m.line + MISMATCH_CONTEXT)
        shown.update(range(lo, hi + 1))

    count = len(mismatches)
    out = [
        f"{count} line{'s have' if count > 1 else ' has'} changed since last read. "
        "Use the updated LINE:HASH references shown below (>>> marks changed lines).",
        "",
    ]
    prev = None
    for num in sorted(shown):
        if prev is not None and num > prev + 1:
            out.append("    ...")
        prev = num
        content = file_lines[num - 1]
        marker = ">>> " if num in marked else "    "
        out.append(f"{marker}{num}:{fingerprint(content)}|{content}")

    if mismatches:
        out.append("")
        out.append("Quick fix \u2014 replace stale refs:")
        for m in mismatches:
            out.append(f"\t{m.stale_ref} \u2192 {m.current_ref}")
    return "\n".join(out)
