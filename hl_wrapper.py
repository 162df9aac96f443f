"""
HashlineKit Python Wrapper: importable API for hash-anchored file editing.

    from hl_wrapper import HashlineKit

    kit = HashlineKit()
    view = kit.read("app.py")                      # "1:3f|import os" ...
    result = kit.edit("app.py", [{"set_line": {"anchor": "1:3f", "new_text": "import sys"}}])
    print(result.success, result.first_changed_line)
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from hl import DEFAULT_GREP_LIMIT, DEFAULT_MAX_LINES, EDIT_ITEM_SCHEMA, edit_file, grep_files, read_file, write_file
from hl_fuzzy import DEFAULT_FUZZY_THRESHOLD


@dataclass
class EditResponse:
    """Result of an edit, write or preview."""
    success: bool
    file: str
    status: str
    first_changed_line: Optional[int] = None
    error: Optional[str] = None
    diff: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    remaps: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        d = {"success": self.success, "file": self.file, "status": self.status}
        if self.first_changed_line is not None:
            d["first_changed_line"] = self.first_changed_line
        if self.error:
            d["error"] = self.error
        if self.diff:
            d["diff"] = self.diff
        if self.warnings:
            d["warnings"] = self.warnings
        if self.remaps:
            d["remaps"] = self.remaps
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


_EDIT_DESCRIPTION = (
    "Edit a file using LINE:HASH anchors from read output. All anchors are "
    "verified first; if the file changed, nothing is written and the current "
    "anchors are returned."
)


class HashlineKit:
    """
    Hash-anchored file editing toolkit.

    Usage:
        kit = HashlineKit(threshold=0.95)
        text = kit.read("file.py")
        result = kit.edit("file.py", edits)
        result = kit.write("new_file.py", content)
        diff_str = kit.preview("file.py", edits)
    """

    def __init__(self, threshold: float = DEFAULT_FUZZY_THRESHOLD, show_diff: bool = False,
                 max_lines: int = DEFAULT_MAX_LINES):
        self.threshold = threshold
        self.show_diff = show_diff
        self.max_lines = max_lines

    def read(self, file: str, offset: int = 1, limit: Optional[int] = None) -> str:
        """
        Read a file in LINE:HASH|CONTENT format.

        Raises:
            OSError: if the file cannot be read.
        """
        result = read_file(file, offset=offset, limit=limit or self.max_lines)
        if result.status != "ok":
            raise OSError(result.error)
        return result.text

    def edit(
        self,
        file: str,
        edits: List[Any],
        threshold: Optional[float] = None,
        show_diff: Optional[bool] = None,
    ) -> EditResponse:
        """
        Apply an edit batch to a file.

        Args:
            file: Path to the file to edit.
            edits: Wire-format edit dicts (or edit dataclasses).
            threshold: Fuzzy threshold for replace edits. Default from constructor.
            show_diff: Include the line-numbered diff in the response.

        Returns:
            EditResponse; on a hash mismatch ``remaps`` maps stale to current anchors.
        """
        t = threshold if threshold is not None else self.threshold
        do_diff = show_diff if show_diff is not None else self.show_diff
        result = edit_file(file, edits, threshold=t)
        return self._response(result, include_diff=do_diff)

    def preview(self, file: str, edits: List[Any], threshold: Optional[float] = None) -> Optional[str]:
        """
        Diff an edit batch would produce, without writing.

        Returns:
            Diff string, or None if the batch would fail.
        """
        t = threshold if threshold is not None else self.threshold
        result = edit_file(file, edits, threshold=t, dry_run=True)
        if result.status != "applied":
            return None
        return result.diff

    def write(self, file: str, content: str) -> EditResponse:
        """Create or overwrite a file with content."""
        result = write_file(file, content)
        ok = result.status in ("created", "overwritten")
        return EditResponse(success=ok, file=file, status=result.status, error=result.error)

    def grep(self, pattern: str, path: str = ".", ignore_case: bool = False,
             glob: Optional[str] = None, limit: int = DEFAULT_GREP_LIMIT) -> str:
        """Search with ripgrep; returns hits as FILE:>>LINE:HASH|CONTENT lines."""
        result = grep_files(pattern, path, ignore_case=ignore_case, glob=glob, limit=limit)
        if result.status == "error":
            raise RuntimeError(result.error)
        return result.text

    @staticmethod
    def _response(result, include_diff: bool) -> EditResponse:
        ok = result.status == "applied"
        return EditResponse(
            success=ok,
            file=result.file,
            status=result.status,
            first_changed_line=result.first_changed_line,
            error=result.error,
            diff=result.diff if include_diff and ok else None,
            warnings=result.warnings or [],
            remaps=result.remaps or {},
        )

    # --- Tool definition for LLM APIs ---

    @staticmethod
    def anthropic_tool_schema() -> dict:
        """Return the Anthropic tool_use schema for the edit tool."""
        return {
            "name": "edit_file",
            "description": _EDIT_DESCRIPTION,
            "input_schema": {
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "Path to the file to edit"},
                    "edits": {"type": "array", "items": EDIT_ITEM_SCHEMA},
                },
                "required": ["path", "edits"],
            },
        }

    @staticmethod
    def openai_function_schema() -> dict:
        """Return the OpenAI function calling schema for the edit tool."""
        return {
            "type": "function",
            "function": {
                "name": "edit_file",
                "description": _EDIT_DESCRIPTION,
                "parameters": {
                    "type": "object",
                    "properties": {
                        "path": {"type": "string", "description": "Path to the file to edit"},
                        "edits": {"type": "array", "items": EDIT_ITEM_SCHEMA},
                    },
                    "required": ["path", "edits"],
                },
            },
        }
