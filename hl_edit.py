"""Hashline edit batches: parse, validate, relocate, apply.

A batch is validated in full against one snapshot of the file before any
line changes. Anchors whose line moved are relocated to the unique line that
still carries their fingerprint; anything else that fails to match rejects
the whole batch with a HashMismatchError. Surviving edits are de-duplicated
and applied bottom-up so earlier splices never shift later targets.

Replacement text goes through a few narrow heuristics that undo common
caller mistakes (echoed display prefixes, echoed neighbour lines, re-wrapped
long lines, dropped indentation). Every heuristic compares against the
original snapshot, never against a line an earlier edit already changed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union

from hl_diff import DEFAULT_CONTEXT_LINES, generate_diff
from hl_errors import HashMismatchError, NoMatchError, NoOpError, OutOfRangeError, ParseError, RangeOrderError
from hl_fuzzy import DEFAULT_FUZZY_THRESHOLD, replace_text
from hl_hash import (
    HASH_LEN,
    HashMismatch,
    LineRef,
    build_fingerprint_index,
    fingerprint,
    format_mismatch_report,
    parse_anchor,
)
from hl_log import get_logger
from hl_normalize import (
    SourceText,
    equals_ignoring_whitespace,
    get_leading_whitespace,
    has_confusable_hyphens,
    is_blank,
    normalize_confusable_hyphens,
    normalize_to_lf,
    strip_all_whitespace,
)

logger = get_logger(__name__)

REFORMAT_WARNING_RATIO = 4
MERGE_LENGTH_SLACK = 32
WRAP_MIN_CANON_LEN = 6
WRAP_MAX_SPAN = 10

EDIT_KINDS = ("set_line", "replace_lines", "insert_after", "replace")

_HASHLINE_PREFIX_RE = re.compile(r"^\d+:[0-9a-zA-Z]{1,16}\|")
_DIFF_PLUS_RE = re.compile(r"^\+(?!\+)")
_CONTINUATION_RE = re.compile(r"(?:&&|\|\||\?\?|\?|:|=|,|\+|-|\*|/|\.|\()\s*$")
_MERGE_OPERATOR_RE = re.compile(r"[|&?]")


# --- Edit operations ---

@dataclass
class SetLine:
    anchor: LineRef
    new_text: str


@dataclass
class ReplaceRange:
    start: LineRef
    end: LineRef
    new_text: str


@dataclass
class InsertAfter:
    anchor: LineRef
    text: str


@dataclass
class SubstringReplace:
    old_text: str
    new_text: str
    replace_all: bool = False


AnchorEdit = Union[SetLine, ReplaceRange, InsertAfter]
Edit = Union[SetLine, ReplaceRange, InsertAfter, SubstringReplace]
_EDIT_TYPES = (SetLine, ReplaceRange, InsertAfter, SubstringReplace)


@dataclass
class NoopEdit:
    edit_index: int
    loc: str
    current_content: str


@dataclass
class ApplyResult:
    content: str
    first_changed_line: Optional[int] = None
    warnings: List[str] = field(default_factory=list)
    noop_edits: List[NoopEdit] = field(default_factory=list)


@dataclass
class EditOutcome:
    """Result of a whole edit request against one file's text."""
    content: str
    diff: str
    first_changed_line: Optional[int] = None
    warnings: List[str] = field(default_factory=list)
    noop_edits: List[NoopEdit] = field(default_factory=list)
    replacements: int = 0


# --- Parsing ---

def _text_field(body: Dict[str, Any], kind: str, name: str, index: Optional[int],
                default: Optional[str] = None) -> str:
    if name not in body or body[name] is None:
        if default is None:
            raise ParseError(f"'{kind}.{name}' is required", index)
        return default
    value = body[name]
    if not isinstance(value, str):
        raise ParseError(f"'{kind}.{name}' must be a string, got {type(value).__name__}", index)
    return value


def _anchor_field(body: Dict[str, Any], kind: str, name: str, index: Optional[int]) -> LineRef:
    raw = _text_field(body, kind, name, index)
    try:
        return parse_anchor(raw)
    except ParseError as e:
        raise ParseError(str(e), index) from e


def parse_edit(raw: Any, index: Optional[int] = None) -> Edit:
    """Turn one wire-format edit (a single-key dict) into an edit dataclass.

    Edit dataclasses are returned unchanged. ``replace_lines`` without an
    end anchor, or whose end anchor is on the start line, becomes a SetLine.
    """
    if isinstance(raw, _EDIT_TYPES):
        return raw
    if not isinstance(raw, dict):
        raise ParseError(f"expected an object, got {type(raw).__name__}", index)

    kinds = [k for k in EDIT_KINDS if k in raw]
    if not kinds:
        if "old_text" in raw or "new_text" in raw:
            raise ParseError(
                "contains 'old_text'/'new_text' at top level. Use {replace: {old_text, new_text}} "
                "or {set_line}, {replace_lines}, {insert_after}.",
                index,
            )
        raise ParseError(
            "must contain one of: 'set_line', 'replace_lines', 'insert_after', or 'replace'. "
            f"Got keys: [{', '.join(map(str, raw))}].",
            index,
        )
    if len(kinds) > 1:
        raise ParseError(f"must contain exactly one edit kind, got: [{', '.join(kinds)}].", index)

    kind = kinds[0]
    body = raw[kind]
    if not isinstance(body, dict):
        raise ParseError(f"'{kind}' must be an object", index)

    if kind == "set_line":
        return SetLine(
            anchor=_anchor_field(body, kind, "anchor", index),
            new_text=_text_field(body, kind, "new_text", index),
        )
    if kind == "replace_lines":
        start = _anchor_field(body, kind, "start_anchor", index)
        new_text = _text_field(body, kind, "new_text", index, default="")
        if not body.get("end_anchor"):
            return SetLine(anchor=start, new_text=new_text)
        end = _anchor_field(body, kind, "end_anchor", index)
        if end.line == start.line:
            return SetLine(anchor=start, new_text=new_text)
        return ReplaceRange(start=start, end=end, new_text=new_text)
    if kind == "insert_after":
        text_key = "text" if "text" in body else "content"
        return InsertAfter(
            anchor=_anchor_field(body, kind, "anchor", index),
            text=_text_field(body, kind, text_key, index, default=""),
        )

    replace_all = body.get("all", False)
    if replace_all is None:
        replace_all = False
    if not isinstance(replace_all, bool):
        raise ParseError(f"'replace.all' must be a boolean, got {type(replace_all).__name__}", index)
    return SubstringReplace(
        old_text=_text_field(body, kind, "old_text", index),
        new_text=_text_field(body, kind, "new_text", index),
        replace_all=replace_all,
    )


def parse_edits(raw_edits: Sequence[Any]) -> List[Edit]:
    if not isinstance(raw_edits, (list, tuple)):
        raise ParseError(f"edits must be an array, got {type(raw_edits).__name__}")
    return [parse_edit(raw, i) for i, raw in enumerate(raw_edits)]


# --- Replacement-text heuristics ---

def split_replacement(text: str) -> List[str]:
    """Split replacement text into lines; the empty string means no lines."""
    return [] if text == "" else normalize_to_lf(text).split("\n")


def strip_echoed_prefixes(lines: List[str]) -> List[str]:
    """Drop ``N:HH|`` or leading ``+`` prefixes copied from read or diff output.

    Only applies when at least half of the non-empty lines carry the prefix.
    The hashline prefix is checked first.
    """
    non_empty = [line for line in lines if line]
    if not non_empty:
        return lines
    hash_count = sum(1 for line in non_empty if _HASHLINE_PREFIX_RE.match(line))
    if hash_count and hash_count >= len(non_empty) * 0.5:
        return [_HASHLINE_PREFIX_RE.sub("", line, count=1) for line in lines]
    plus_count = sum(1 for line in non_empty if _DIFF_PLUS_RE.match(line))
    if plus_count and plus_count >= len(non_empty) * 0.5:
        return [_DIFF_PLUS_RE.sub("", line, count=1) for line in lines]
    return lines


def strip_continuation_token(canon: str) -> str:
    return _CONTINUATION_RE.sub("", canon, count=1)


def strip_merge_operators(canon: str) -> str:
    return _MERGE_OPERATOR_RE.sub("", canon)


def restore_leading_indent(template: str, line: str) -> str:
    if not line:
        return line
    indent = get_leading_whitespace(template)
    if not indent or get_leading_whitespace(line):
        return line
    return indent + line


def restore_paired_indent(old_lines: List[str], new_lines: List[str]) -> List[str]:
    """Give unindented new lines the indentation of the old line they replace.

    Only applies when the counts match one-to-one.
    """
    if len(old_lines) != len(new_lines):
        return new_lines
    return [restore_leading_indent(old, new) for old, new in zip(old_lines, new_lines)]


def restore_wrapped_lines(old_lines: List[str], new_lines: List[str]) -> List[str]:
    """Re-join an original line the caller split across several lines.

    A run of 2..WRAP_MAX_SPAN new lines is replaced by an old line verbatim
    when their whitespace-free concatenation equals that old line's
    whitespace-free form, that form is at least WRAP_MIN_CANON_LEN long, it
    occurs once among the old lines, and only one run produces it.
    """
    if not old_lines or len(new_lines) < 2 or len(old_lines) == len(new_lines):
        return new_lines

    canon_to_old: Dict[str, Tuple[str, int]] = {}
    for line in old_lines:
        canon = strip_all_whitespace(line)
        seen = canon_to_old.get(canon)
        canon_to_old[canon] = (seen[0], seen[1] + 1) if seen else (line, 1)

    candidates = []
    for start in range(len(new_lines)):
        for length in range(2, WRAP_MAX_SPAN + 1):
            if start + length > len(new_lines):
                break
            canon = strip_all_whitespace("".join(new_lines[start:start + length]))
            old = canon_to_old.get(canon)
            if old and old[1] == 1 and len(canon) >= WRAP_MIN_CANON_LEN:
                candidates.append((start, length, old[0], canon))
    if not candidates:
        return new_lines

    per_canon: Dict[str, int] = {}
    for candidate in candidates:
        per_canon[candidate[3]] = per_canon.get(candidate[3], 0) + 1
    unique = [c for c in candidates if per_canon[c[3]] == 1]

    out = list(new_lines)
    for start, length, original, _ in sorted(unique, key=lambda c: c[0], reverse=True):
        out[start:start + length] = [original]
    return out


def strip_boundary_echo(file_lines: List[str], start_line: int, end_line: int,
                        new_lines: List[str]) -> List[str]:
    """Drop a first/last new line that repeats the line just outside the span.

    Skipped unless the replacement is longer than the span it replaces.
    Blank lines never count as an echo.
    """
    count = end_line - start_line + 1
    if len(new_lines) <= 1 or len(new_lines) <= count:
        return new_lines
    out = new_lines
    before = start_line - 2
    if (before >= 0 and not is_blank(out[0]) and not is_blank(file_lines[before])
            and equals_ignoring_whitespace(out[0], file_lines[before])):
        out = out[1:]
    after = end_line
    if (after < len(file_lines) and out and not is_blank(out[-1]) and not is_blank(file_lines[after])
            and equals_ignoring_whitespace(out[-1], file_lines[after])):
        out = out[:-1]
    return out


def strip_insert_echo(anchor_line: str, new_lines: List[str]) -> List[str]:
    """Drop a leading insert line that repeats the anchor line itself."""
    if len(new_lines) <= 1:
        return new_lines
    if is_blank(anchor_line) or is_blank(new_lines[0]):
        return new_lines
    if equals_ignoring_whitespace(new_lines[0], anchor_line):
        return new_lines[1:]
    return new_lines


def find_merge_expansion(file_lines: List[str], line: int, new_lines: List[str],
                         touched: Set[int]) -> Optional[Tuple[int, int]]:
    """Detect a single-line replacement that joins a line with its neighbour.

    When the target line (or the line above it) ends in a continuation token
    such as ``&&``, ``,`` or ``(`` and the one new line contains both
    fragments in order, the edit should consume both lines. Returns
    ``(start_line, 2)`` for the span to replace, or None. Neighbours anchored
    by another edit in the batch are never absorbed.
    """
    if len(new_lines) != 1 or not 1 <= line <= len(file_lines):
        return None
    new_canon = strip_all_whitespace(new_lines[0])
    if not new_canon:
        return None
    orig_canon = strip_all_whitespace(file_lines[line - 1])
    if not orig_canon:
        return None
    orig_match = strip_continuation_token(orig_canon)

    if len(orig_match) < len(orig_canon) and line < len(file_lines) and (line + 1) not in touched:
        next_canon = strip_all_whitespace(file_lines[line])
        a = new_canon.find(orig_match)
        b = new_canon.find(next_canon)
        if (a != -1 and b != -1 and a < b
                and len(new_canon) <= len(orig_canon) + len(next_canon) + MERGE_LENGTH_SLACK):
            return line, 2

    if line >= 2 and (line - 1) not in touched:
        prev_canon = strip_all_whitespace(file_lines[line - 2])
        prev_match = strip_continuation_token(prev_canon)
        if len(prev_match) >= len(prev_canon):
            return None
        new_ops = strip_merge_operators(new_canon)
        a = new_ops.find(strip_merge_operators(prev_match))
        b = new_ops.find(strip_merge_operators(orig_canon))
        if (a != -1 and b != -1 and a < b
                and len(new_canon) <= len(prev_canon) + len(orig_canon) + MERGE_LENGTH_SLACK):
            return line - 1, 2
    return None


def resolve_confusables(old_lines: List[str], new_lines: List[str]) -> List[str]:
    """Normalize Unicode hyphen look-alikes in new_lines when nothing else differs."""
    if old_lines == new_lines and any(has_confusable_hyphens(line) for line in old_lines):
        return [normalize_confusable_hyphens(line) for line in new_lines]
    return new_lines


# --- Batch engine ---

@dataclass
class _Planned:
    index: int
    kind: str  # "single", "range" or "insert"
    start: LineRef
    end: LineRef
    dst_lines: List[str]

    @property
    def loc(self) -> str:
        return f"{self.start.line}:{self.start.hash}"

    def touched(self) -> range:
        if self.kind == "range":
            return range(self.start.line, self.end.line + 1)
        return range(self.start.line, self.start.line + 1)

    def dedupe_key(self) -> Tuple[str, int, int, str]:
        return self.kind, self.start.line, self.end.line, "\n".join(self.dst_lines)

    def sort_key(self) -> Tuple[int, int, int]:
        return -self.end.line, 1 if self.kind == "insert" else 0, self.index


def _plan(edit: AnchorEdit, index: int) -> _Planned:
    # Anchors are copied so relocation never mutates the caller's edits.
    if isinstance(edit, SetLine):
        ref = replace(edit.anchor)
        return _Planned(index, "single", ref, ref, strip_echoed_prefixes(split_replacement(edit.new_text)))
    if isinstance(edit, ReplaceRange):
        return _Planned(index, "range", replace(edit.start), replace(edit.end),
                        strip_echoed_prefixes(split_replacement(edit.new_text)))
    if isinstance(edit, InsertAfter):
        ref = replace(edit.anchor)
        return _Planned(index, "insert", ref, ref, strip_echoed_prefixes(split_replacement(edit.text)))
    raise ParseError("replace edits are applied separately; use apply_edits", index)


class _Validator:
    """Checks every anchor against one snapshot, relocating where safe."""

    def __init__(self, file_lines: List[str]):
        self.file_lines = file_lines
        self.unique, self.ambiguous = build_fingerprint_index(file_lines)
        self.mismatches: List[HashMismatch] = []

    def _actual(self, line: int) -> str:
        return fingerprint(self.file_lines[line - 1])

    def check(self, ref: LineRef, index: int) -> Tuple[bool, bool]:
        """Return (ok, relocated); relocation updates ref.line in place."""
        if ref.line < 1 or ref.line > len(self.file_lines):
            raise OutOfRangeError(ref.line, len(self.file_lines))
        # Longer hashes match on their fingerprint-length prefix.
        expected = ref.hash.lower()[:HASH_LEN]
        actual = self._actual(ref.line)
        if actual == expected:
            return True, False
        target = self.unique.get(expected)
        if target is None:
            self.mismatches.append(HashMismatch(ref.line, ref.hash, actual))
            return False, False
        logger.debug("Relocated anchor %s to line %d", ref, target, extra={"edit_index": index})
        ref.line = target
        return True, True

    def validate(self, p: _Planned) -> None:
        if p.kind == "single":
            self.check(p.start, p.index)
            return
        if p.kind == "insert":
            if not p.dst_lines:
                raise ParseError("insert_after requires non-empty text", p.index)
            self.check(p.start, p.index)
            return

        if p.start.line > p.end.line:
            raise RangeOrderError(p.start.line, p.end.line)
        orig_start, orig_end = p.start.line, p.end.line
        start_ok, start_moved = self.check(p.start, p.index)
        end_ok, end_moved = self.check(p.end, p.index)
        if not (start_ok and end_ok) or not (start_moved or end_moved):
            return
        if p.start.line > p.end.line or p.end.line - p.start.line != orig_end - orig_start:
            logger.debug(
                "Discarded relocation of range %d-%d (would become %d-%d)",
                orig_start, orig_end, p.start.line, p.end.line, extra={"edit_index": p.index},
            )
            p.start.line, p.end.line = orig_start, orig_end
            self.mismatches.append(HashMismatch(orig_start, p.start.hash, self._actual(orig_start)))
            self.mismatches.append(HashMismatch(orig_end, p.end.hash, self._actual(orig_end)))

    def raise_if_mismatched(self) -> None:
        if self.mismatches:
            report = format_mismatch_report(self.mismatches, self.file_lines)
            raise HashMismatchError(self.mismatches, report)


def _dedupe(planned: List[_Planned]) -> List[_Planned]:
    seen: Set[Tuple[str, int, int, str]] = set()
    kept = []
    for p in planned:
        key = p.dedupe_key()
        if key in seen:
            logger.debug("Dropped duplicate edit", extra={"edit_index": p.index})
            continue
        seen.add(key)
        kept.append(p)
    return kept


def _count_changed_lines(before: List[str], after: List[str]) -> int:
    changed = abs(len(after) - len(before))
    changed += sum(1 for a, b in zip(before, after) if a != b)
    return changed


def apply_hashline_edits(content: str, edits: Sequence[Any]) -> ApplyResult:
    """Apply anchor-based edits to LF-normalized content as one batch.

    Raises ParseError, OutOfRangeError, RangeOrderError or HashMismatchError
    before touching anything. Edits whose replacement equals the current
    content are recorded in ``noop_edits`` and skipped.
    """
    return _apply_batch(content, [(i, parse_edit(raw, i)) for i, raw in enumerate(edits)])


def _apply_batch(content: str, indexed: List[Tuple[int, Edit]]) -> ApplyResult:
    if not indexed:
        return ApplyResult(content=content)

    planned = [_plan(edit, i) for i, edit in indexed]
    original = content.split("\n")

    validator = _Validator(original)
    for p in planned:
        validator.validate(p)
    validator.raise_if_mismatched()

    touched: Set[int] = set()
    for p in planned:
        touched.update(p.touched())

    file_lines = list(original)
    result = ApplyResult(content=content)

    def record_noop(p: _Planned, current: str) -> None:
        logger.debug("Edit %d at %s is a no-op", p.index, p.loc, extra={"edit_index": p.index})
        result.noop_edits.append(NoopEdit(edit_index=p.index, loc=p.loc, current_content=current))

    def mark_changed(line: int) -> None:
        if result.first_changed_line is None or line < result.first_changed_line:
            result.first_changed_line = line

    for p in sorted(_dedupe(planned), key=_Planned.sort_key):
        if p.kind == "insert":
            anchor_line = original[p.start.line - 1]
            inserted = strip_insert_echo(anchor_line, p.dst_lines)
            if not inserted:
                record_noop(p, anchor_line)
                continue
            file_lines[p.start.line:p.start.line] = inserted
            mark_changed(p.start.line + 1)
            continue

        merged = find_merge_expansion(original, p.start.line, p.dst_lines, touched) if p.kind == "single" else None
        if merged:
            start, count = merged
            old_lines = original[start - 1:start - 1 + count]
            new_lines = restore_paired_indent(old_lines[:1], p.dst_lines)
        else:
            start, count = p.start.line, p.end.line - p.start.line + 1
            old_lines = original[start - 1:start - 1 + count]
            new_lines = strip_boundary_echo(original, p.start.line, p.end.line, p.dst_lines)
            new_lines = restore_wrapped_lines(old_lines, new_lines)
            new_lines = restore_paired_indent(old_lines, new_lines)

        new_lines = resolve_confusables(old_lines, new_lines)
        if new_lines == old_lines:
            record_noop(p, "\n".join(old_lines))
            continue
        file_lines[start - 1:start - 1 + count] = new_lines
        mark_changed(start)

    changed = _count_changed_lines(original, file_lines)
    if changed > len(indexed) * REFORMAT_WARNING_RATIO:
        warning = (
            f"Edit changed {changed} lines across {len(indexed)} operations; "
            "verify no unintended reformatting."
        )
        logger.warning(warning)
        result.warnings.append(warning)

    result.content = "\n".join(file_lines)
    return result


def _noop_message(path: Optional[str], noop_edits: List[NoopEdit]) -> str:
    message = f"No changes made to {path or 'file'}. The edits produced identical content."
    if noop_edits:
        details = "\n".join(
            f"Edit {e.edit_index}: replacement for {e.loc} is identical to current content:\n"
            f"  {e.loc}| {e.current_content}"
            for e in noop_edits
        )
        message += (
            f"\n{details}\nYour content must differ from what the file already contains. "
            "Re-read the file to see the current state."
        )
    return message


def apply_edits(
    text: str,
    raw_edits: Sequence[Any],
    threshold: float = DEFAULT_FUZZY_THRESHOLD,
    context_lines: int = DEFAULT_CONTEXT_LINES,
    path: Optional[str] = None,
) -> EditOutcome:
    """Run a whole edit request against a file's raw text.

    Anchor edits are applied first as one validated batch, then ``replace``
    edits in submission order. The returned content keeps the input's line
    endings and BOM. Raises NoOpError when the request leaves the text
    unchanged and NoMatchError when a ``replace`` finds nothing to replace.
    """
    source = SourceText.parse(text)
    original = source.text
    edits = parse_edits(raw_edits)

    anchor_edits = [(i, e) for i, e in enumerate(edits) if not isinstance(e, SubstringReplace)]
    applied = _apply_batch(original, anchor_edits)
    current = applied.content

    replacements = 0
    for index, edit in enumerate(edits):
        if not isinstance(edit, SubstringReplace):
            continue
        if not edit.old_text:
            raise ParseError("replace.old_text must not be empty.", index)
        result = replace_text(current, edit.old_text, edit.new_text, fuzzy=True,
                              replace_all=edit.replace_all, threshold=threshold)
        if not result.matched:
            raise NoMatchError(edit.old_text, result.closest, result.fuzzy_matches)
        current = result.content
        replacements += result.count

    if current == original:
        raise NoOpError(_noop_message(path, applied.noop_edits), applied.noop_edits)

    diff = generate_diff(original, current, context_lines)
    return EditOutcome(
        content=source.with_text(current).render(),
        diff=diff.diff,
        first_changed_line=diff.first_changed_line,
        warnings=applied.warnings,
        noop_edits=applied.noop_edits,
        replacements=replacements,
    )
