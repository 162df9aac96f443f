"""Error types raised by the hashline edit engine.

Every engine error derives from HashlineError so the file-level boundary
(hl.edit_file, the MCP server) can catch one type and report a status.
"""

from typing import Any, Dict, List, Optional


class HashlineError(Exception):
    """Base class for all edit engine errors."""


class ParseError(HashlineError):
    """Malformed anchor, malformed edit shape, or a required field left empty."""

    def __init__(self, message: str, index: Optional[int] = None):
        self.index = index
        if index is not None:
            message = f"edits[{index}]: {message}"
        super().__init__(message)


class OutOfRangeError(HashlineError):
    """Anchor line number outside the current file."""

    def __init__(self, line: int, total: int):
        self.line = line
        self.total = total
        super().__init__(f"Line {line} does not exist (file has {total} lines)")


class RangeOrderError(HashlineError):
    """Range start line comes after its end line."""

    def __init__(self, start: int, end: int):
        self.start = start
        self.end = end
        super().__init__(f"Range start line {start} must be <= end line {end}")


class HashMismatchError(HashlineError):
    """One or more anchors no longer match the file; the batch was rejected.

    `mismatches` holds the hl_hash.HashMismatch records, `remaps` maps each
    stale ref to the ref the caller should use now, and the message is the
    full rendered report.
    """

    def __init__(self, mismatches: List[Any], report: str):
        self.mismatches = list(mismatches)
        self.remaps: Dict[str, str] = {
            f"{m.line}:{m.expected}": f"{m.line}:{m.actual}" for m in self.mismatches
        }
        super().__init__(report)


class AmbiguousMatchError(HashlineError):
    """Substring search found several exact occurrences without `all`."""

    def __init__(self, occurrences: int, occurrence_lines: List[int], previews: List[str]):
        self.occurrences = occurrences
        self.occurrence_lines = list(occurrence_lines)
        self.previews = list(previews)
        more = f" (showing first {len(previews)} of {occurrences})" if occurrences > len(previews) else ""
        body = "\n\n".join(previews)
        super().__init__(
            f"Found {occurrences} occurrences{more}:\n\n{body}\n\n"
            "Add more context lines to disambiguate."
        )


class NoMatchError(HashlineError):
    """Substring search found nothing it was willing to replace.

    `closest` is the best rejected hl_fuzzy.FuzzyMatch (or None) and
    `fuzzy_matches` the number of windows that scored above threshold.
    """

    def __init__(self, old_text: str, closest: Any = None, fuzzy_matches: int = 0):
        self.old_text = old_text
        self.closest = closest
        self.fuzzy_matches = fuzzy_matches
        message = "Could not find a unique match for old_text."
        if closest is not None:
            message += (
                f" Closest candidate at line {closest.start_line} "
                f"({closest.confidence:.0%} similar):\n{closest.actual_text}"
            )
        if fuzzy_matches > 1:
            message += f"\n{fuzzy_matches} candidates scored above threshold; add more context."
        super().__init__(message)


class NoOpError(HashlineError):
    """The batch left the file byte-identical."""

    def __init__(self, message: str, noop_edits: Optional[List[Any]] = None):
        self.noop_edits = list(noop_edits or [])
        super().__init__(message)
