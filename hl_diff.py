"""Line-numbered diff rendering for edit feedback.

Output lines look like ``+ 12|text``, ``- 12|text`` and `` 12|text``: a
marker, the line number right-aligned to the widest number in either text,
a pipe, then the content. Removed and context lines carry old-text numbers,
added lines carry new-text numbers. Unchanged runs beyond DEFAULT_CONTEXT_LINES
of a change are collapsed into a single ``...`` line.
"""

from __future__ import annotations

import difflib
from dataclasses import dataclass
from typing import List, Optional, Tuple

DEFAULT_CONTEXT_LINES = 4


@dataclass
class DiffResult:
    diff: str
    first_changed_line: Optional[int] = None  # in new-text coordinates


def _split_lines(text: str) -> List[str]:
    # Keep terminators so a missing final newline still counts as a change.
    if not text:
        return []
    parts = text.split("\n")
    lines = [p + "\n" for p in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


def _count_content_lines(text: str) -> int:
    lines = text.split("\n")
    if len(lines) > 1 and lines[-1] == "":
        lines.pop()
    return max(1, len(lines))


def _diff_parts(old_lines: List[str], new_lines: List[str]) -> List[Tuple[str, List[str]]]:
    matcher = difflib.SequenceMatcher(None, old_lines, new_lines, autojunk=False)
    parts: List[Tuple[str, List[str]]] = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            parts.append(("equal", old_lines[i1:i2]))
            continue
        if i2 > i1:
            parts.append(("removed", old_lines[i1:i2]))
        if j2 > j1:
            parts.append(("added", new_lines[j1:j2]))
    return parts


def generate_diff(old_content: str, new_content: str, context_lines: int = DEFAULT_CONTEXT_LINES) -> DiffResult:
    """Render the changes from old_content to new_content.

    Both texts are expected LF-normalized. Returns an empty diff and no first
    changed line when the texts are equal.
    """
    parts = _diff_parts(_split_lines(old_content), _split_lines(new_content))
    width = len(str(max(_count_content_lines(old_content), _count_content_lines(new_content))))

    def fmt(prefix: str, num: int, text: str) -> str:
        if text.endswith("\n"):
            text = text[:-1]
        return f"{prefix}{num:>{width}}|{text}"

    output: List[str] = []
    old_num = 1
    new_num = 1
    first_changed: Optional[int] = None
    last_was_change = False

    for i, (tag, lines) in enumerate(parts):
        if tag != "equal":
            if first_changed is None:
                first_changed = new_num
            for line in lines:
                if tag == "added":
                    output.append(fmt("+", new_num, line))
                    new_num += 1
                else:
                    output.append(fmt("-", old_num, line))
                    old_num += 1
            last_was_change = True
            continue

        next_is_change = i + 1 < len(parts)
        total = len(lines)
        if not last_was_change and not next_is_change:
            old_num += total
            new_num += total
            continue

        head = min(total, context_lines) if last_was_change else 0
        tail = min(total, context_lines) if next_is_change else 0
        if head + tail >= total:
            head, tail = total, 0
        skipped = total - head - tail

        for line in lines[:head]:
            output.append(fmt(" ", old_num, line))
            old_num += 1
            new_num += 1
        if skipped:
            output.append(fmt(" ", old_num, "..."))
            old_num += skipped
            new_num += skipped
        for line in lines[total - tail:] if tail else []:
            output.append(fmt(" ", old_num, line))
            old_num += 1
            new_num += 1
        last_was_change = False

    return DiffResult(diff="\n".join(output), first_changed_line=first_changed)
