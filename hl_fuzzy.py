"""Exact and fuzzy substring search for anchor-free edits.

Algorithm:
  1. Try exact match (several occurrences is ambiguous unless replacing all)
  2. Fall back to a line-window scan scored by normalized Levenshtein
     similarity, first with relative indentation depth folded into each
     line, then (only for near misses) without it
  3. Auto-accept a fuzzy window only when it is the single window at or
     above threshold, or clearly dominates the runner-up
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from hl_errors import AmbiguousMatchError, ParseError
from hl_log import get_logger
from hl_normalize import adjust_indentation, count_leading_whitespace, normalize_for_fuzzy, normalize_to_lf

logger = get_logger(__name__)

DEFAULT_FUZZY_THRESHOLD = 0.95
FALLBACK_THRESHOLD = 0.80
DOMINANT_MIN = 0.97
DOMINANT_DELTA = 0.08
MAX_OCCURRENCE_PREVIEWS = 5
OCCURRENCE_PREVIEW_CONTEXT = 5
OCCURRENCE_PREVIEW_MAX_LEN = 80


@dataclass
class FuzzyMatch:
    actual_text: str
    start_index: int
    start_line: int
    confidence: float
    match_type: str = "fuzzy"  # "exact" or "fuzzy"

    @property
    def end_index(self) -> int:
        return self.start_index + len(self.actual_text)


@dataclass
class MatchOutcome:
    """What find_match learned about a target.

    ``match`` is set only when the caller may apply it. ``closest`` is the best
    window even when it was rejected. ``occurrences`` > 1 means the exact
    search was ambiguous.
    """
    match: Optional[FuzzyMatch] = None
    closest: Optional[FuzzyMatch] = None
    occurrences: int = 0
    occurrence_lines: List[int] = field(default_factory=list)
    occurrence_previews: List[str] = field(default_factory=list)
    fuzzy_matches: int = 0
    dominant_fuzzy: bool = False


@dataclass
class ReplaceResult:
    content: str
    count: int
    matched: bool = True
    closest: Optional[FuzzyMatch] = None
    fuzzy_matches: int = 0


# --- Scoring ---

def levenshtein_distance(a: str, b: str) -> int:
    """Minimum number of single-character insertions, deletions and substitutions."""
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous_row = list(range(len(b) + 1))
    for i, ca in enumerate(a):
        current_row = [i + 1]
        for j, cb in enumerate(b):
            insertions = previous_row[j + 1] + 1
            deletions = current_row[j] + 1
            substitutions = previous_row[j] + (ca != cb)
            current_row.append(min(insertions, deletions, substitutions))
        previous_row = current_row
    return previous_row[-1]


def similarity(a: str, b: str) -> float:
    """1.0 for identical strings, 0.0 for completely different ones."""
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    return 1 - levenshtein_distance(a, b) / max_len


def _relative_indent_depths(lines: List[str]) -> List[int]:
    indents = [count_leading_whitespace(line) for line in lines]
    non_empty = [indent for line, indent in zip(lines, indents) if line.strip()]
    min_indent = min(non_empty) if non_empty else 0
    steps = [indent - min_indent for indent in non_empty if indent > min_indent]
    unit = min(steps) if steps else 1

    depths = []
    for line, indent in zip(lines, indents):
        if not line.strip():
            depths.append(0)
        else:
            depths.append(round((indent - min_indent) / unit))
    return depths


def _normalize_lines(lines: List[str], include_depth: bool = True) -> List[str]:
    depths = _relative_indent_depths(lines) if include_depth else None
    out = []
    for i, line in enumerate(lines):
        prefix = f"{depths[i]}|" if depths is not None else "|"
        out.append(prefix + normalize_for_fuzzy(line))
    return out


def _line_offsets(lines: List[str]) -> List[int]:
    offsets = []
    offset = 0
    for line in lines:
        offsets.append(offset)
        offset += len(line) + 1
    return offsets


@dataclass
class _WindowScan:
    best: Optional[FuzzyMatch] = None
    above_threshold: int = 0
    second_best: float = -1.0


def _scan_windows(
    content_lines: List[str],
    target_lines: List[str],
    offsets: List[int],
    threshold: float,
    include_depth: bool,
) -> _WindowScan:
    target_norm = _normalize_lines(target_lines, include_depth)
    height = len(target_lines)
    scan = _WindowScan()
    best_score = -1.0

    for start in range(len(content_lines) - height + 1):
        window = content_lines[start:start + height]
        window_norm = _normalize_lines(window, include_depth)
        score = sum(similarity(t, w) for t, w in zip(target_norm, window_norm)) / height

        if score >= threshold:
            scan.above_threshold += 1
        if score > best_score:
            scan.second_best = best_score
            best_score = score
            scan.best = FuzzyMatch(
                actual_text="\n".join(window),
                start_index=offsets[start],
                start_line=start + 1,
                confidence=score,
            )
        elif score > scan.second_best:
            scan.second_best = score
    return scan


def _best_fuzzy_window(content: str, target: str, threshold: float) -> _WindowScan:
    content_lines = content.split("\n")
    target_lines = target.split("\n")
    if not target or len(target_lines) > len(content_lines):
        return _WindowScan()

    offsets = _line_offsets(content_lines)
    scan = _scan_windows(content_lines, target_lines, offsets, threshold, include_depth=True)

    best = scan.best
    if best is not None and FALLBACK_THRESHOLD <= best.confidence < threshold:
        flat = _scan_windows(content_lines, target_lines, offsets, threshold, include_depth=False)
        if flat.best is not None and flat.best.confidence > best.confidence:
            logger.debug(
                "Indent-insensitive pass improved best window at line %d: %.3f -> %.3f",
                flat.best.start_line, best.confidence, flat.best.confidence,
            )
            scan = flat
    return scan


# --- Search ---

def _occurrence_preview(content_lines: List[str], line_number: int) -> str:
    start = max(0, line_number - 1 - OCCURRENCE_PREVIEW_CONTEXT)
    end = min(len(content_lines), line_number + OCCURRENCE_PREVIEW_CONTEXT)
    preview = []
    for num, line in enumerate(content_lines[start:end], start=start + 1):
        if len(line) > OCCURRENCE_PREVIEW_MAX_LEN:
            line = line[:OCCURRENCE_PREVIEW_MAX_LEN - 1] + "\u2026"
        preview.append(f"  {num} | {line}")
    return "\n".join(preview)


def find_match(
    content: str,
    target: str,
    allow_fuzzy: bool = True,
    threshold: Optional[float] = None,
) -> MatchOutcome:
    """Locate target in content.

    Returns an empty outcome for an empty target. Exact hits win outright;
    several exact hits come back as ``occurrences`` with line numbers and
    previews for the first MAX_OCCURRENCE_PREVIEWS, and no ``match``.
    """
    if not target:
        return MatchOutcome()

    exact_index = content.find(target)
    if exact_index != -1:
        occurrences = content.count(target)
        if occurrences > 1:
            content_lines = content.split("\n")
            outcome = MatchOutcome(occurrences=occurrences)
            search_start = 0
            for _ in range(MAX_OCCURRENCE_PREVIEWS):
                idx = content.find(target, search_start)
                if idx == -1:
                    break
                line_number = content.count("\n", 0, idx) + 1
                outcome.occurrence_lines.append(line_number)
                outcome.occurrence_previews.append(_occurrence_preview(content_lines, line_number))
                search_start = idx + 1
            return outcome
        return MatchOutcome(match=FuzzyMatch(
            actual_text=target,
            start_index=exact_index,
            start_line=content.count("\n", 0, exact_index) + 1,
            confidence=1.0,
            match_type="exact",
        ))

    if threshold is None:
        threshold = DEFAULT_FUZZY_THRESHOLD
    scan = _best_fuzzy_window(content, target, threshold)
    best = scan.best
    if best is None:
        return MatchOutcome()

    if allow_fuzzy and best.confidence >= threshold:
        if scan.above_threshold == 1:
            return MatchOutcome(match=best, closest=best, fuzzy_matches=1)
        if best.confidence >= DOMINANT_MIN and best.confidence - scan.second_best >= DOMINANT_DELTA:
            return MatchOutcome(
                match=best, closest=best, fuzzy_matches=scan.above_threshold, dominant_fuzzy=True,
            )
    return MatchOutcome(closest=best, fuzzy_matches=scan.above_threshold)


def _splice(content: str, match: FuzzyMatch, replacement: str) -> str:
    return content[:match.start_index] + replacement + content[match.end_index:]


def replace_text(
    content: str,
    old_text: str,
    new_text: str,
    fuzzy: bool = True,
    replace_all: bool = False,
    threshold: Optional[float] = None,
) -> ReplaceResult:
    """Replace old_text with new_text in content.

    Line endings of all three inputs are normalized to LF. A single replace
    raises AmbiguousMatchError when old_text occurs more than once; a replace
    that finds nothing acceptable returns ``count == 0`` with the closest
    rejected candidate for diagnostics.
    """
    if not old_text:
        raise ParseError("old_text must not be empty.")
    if threshold is None:
        threshold = DEFAULT_FUZZY_THRESHOLD
    content = normalize_to_lf(content)
    old_text = normalize_to_lf(old_text)
    new_text = normalize_to_lf(new_text)

    if replace_all:
        exact_count = content.count(old_text)
        if exact_count:
            return ReplaceResult(content=content.replace(old_text, new_text), count=exact_count)

        count = 0
        matched = False
        closest = None
        fuzzy_matches = 0
        search_from = 0
        while search_from <= len(content):
            outcome = find_match(content[search_from:], old_text, allow_fuzzy=fuzzy, threshold=threshold)
            if outcome.match is None:
                if not matched:
                    closest, fuzzy_matches = outcome.closest, outcome.fuzzy_matches
                break
            matched = True
            match = outcome.match
            match.start_index += search_from
            adjusted = adjust_indentation(old_text, match.actual_text, new_text)
            if adjusted == match.actual_text:
                break
            content = _splice(content, match, adjusted)
            count += 1
            # Windows are whole lines; resume on the line after the replacement.
            search_from = match.start_index + len(adjusted) + 1
        return ReplaceResult(
            content=content, count=count, matched=matched, closest=closest, fuzzy_matches=fuzzy_matches,
        )

    outcome = find_match(content, old_text, allow_fuzzy=fuzzy, threshold=threshold)
    if outcome.occurrences > 1:
        raise AmbiguousMatchError(outcome.occurrences, outcome.occurrence_lines, outcome.occurrence_previews)
    if outcome.match is None:
        return ReplaceResult(
            content=content, count=0, matched=False,
            closest=outcome.closest, fuzzy_matches=outcome.fuzzy_matches,
        )

    match = outcome.match
    adjusted = adjust_indentation(old_text, match.actual_text, new_text)
    return ReplaceResult(content=_splice(content, match, adjusted), count=1)
