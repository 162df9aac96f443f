#!/usr/bin/env python3
"""HashlineKit: hash-anchored file editing for LLM coding agents.

A CLI and library that lets an agent edit files by referring to lines as
``LINE:HASH`` anchors instead of reproducing their text. Every anchor is
checked against the file before anything is written, so edits made against
a stale view of the file are rejected with a report of the current anchors.

Edit kinds:
  set_line       replace one line (or delete it with "")
  replace_lines  replace an inclusive range of lines
  insert_after   insert lines after an anchor
  replace        anchor-free substring replace with fuzzy fallback

Exit codes: 0=applied, 1=error/no match/no-op, 2=ambiguous, 3=hash mismatch
"""

import argparse
import json
import os
import re
import shutil
import subprocess
import sys
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Optional

from hl_edit import apply_edits
from hl_errors import AmbiguousMatchError, HashlineError, HashMismatchError, NoMatchError, NoOpError
from hl_fuzzy import DEFAULT_FUZZY_THRESHOLD
from hl_hash import fingerprint, format_hash_lines
from hl_log import get_logger, setup_logger
from hl_normalize import SourceText

logger = get_logger("hl")

DEFAULT_MAX_LINES = 2000
DEFAULT_GREP_LIMIT = 100

EXIT_CODES = {
    "applied": 0,
    "error": 1,
    "no_match": 1,
    "noop": 1,
    "ambiguous": 2,
    "mismatch": 3,
}

# JSON schema for one wire-format edit; shared by the MCP tool and the LLM API schemas.
EDIT_ITEM_SCHEMA = {
    "type": "object",
    "description": (
        "Exactly one of set_line, replace_lines, insert_after or replace. "
        "Anchors are \"LINE:HASH\" strings copied from read output."
    ),
    "properties": {
        "set_line": {
            "type": "object",
            "properties": {
                "anchor": {"type": "string", "description": "Line reference \"LINE:HASH\""},
                "new_text": {"type": "string", "description": "Replacement lines (\\n-separated); \"\" deletes"},
            },
            "required": ["anchor", "new_text"],
        },
        "replace_lines": {
            "type": "object",
            "properties": {
                "start_anchor": {"type": "string", "description": "First line \"LINE:HASH\""},
                "end_anchor": {"type": "string", "description": "Last line \"LINE:HASH\" (inclusive)"},
                "new_text": {"type": "string", "description": "Replacement lines (\\n-separated); \"\" deletes"},
            },
            "required": ["start_anchor", "end_anchor", "new_text"],
        },
        "insert_after": {
            "type": "object",
            "properties": {
                "anchor": {"type": "string", "description": "Insert after this line \"LINE:HASH\""},
                "text": {"type": "string", "description": "Lines to insert (\\n-separated); must be non-empty"},
            },
            "required": ["anchor", "text"],
        },
        "replace": {
            "type": "object",
            "properties": {
                "old_text": {"type": "string", "description": "Text to find (fuzzy fallback)"},
                "new_text": {"type": "string", "description": "Replacement text"},
                "all": {"type": "boolean", "description": "Replace every occurrence"},
            },
            "required": ["old_text", "new_text"],
        },
    },
}

_RG_MATCH_RE = re.compile(r"^(.+?):(\d+):(.*)$")
_RG_CONTEXT_RE = re.compile(r"^(.+?)-(\d+)-(.*)$")


@dataclass
class ReadResult:
    status: str  # "ok", "error"
    file: str
    text: Optional[str] = None
    total_lines: Optional[int] = None
    start_line: Optional[int] = None
    end_line: Optional[int] = None
    error: Optional[str] = None


@dataclass
class EditResult:
    status: str  # "applied", "mismatch", "ambiguous", "no_match", "noop", "error"
    file: str
    first_changed_line: Optional[int] = None
    replacements: Optional[int] = None
    warnings: Optional[List[str]] = None
    noop_edits: Optional[List[dict]] = None
    remaps: Optional[Dict[str, str]] = None
    error: Optional[str] = None
    diff: Optional[str] = None
    dry_run: Optional[bool] = None


@dataclass
class WriteResult:
    status: str  # "created", "overwritten", "error"
    file: str
    lines: Optional[int] = None
    error: Optional[str] = None


@dataclass
class GrepResult:
    status: str  # "ok", "no_match", "error"
    pattern: str
    text: Optional[str] = None
    error: Optional[str] = None


def _read_text(file_path: str) -> str:
    with open(file_path, 'rb') as f:
        return f.read().decode('utf-8', errors='replace')


def read_file(
    file_path: str,
    offset: int = 1,
    limit: int = DEFAULT_MAX_LINES,
    plain: bool = False,
) -> ReadResult:
    """Read a file (or a page of it) in ``LINE:HASH|CONTENT`` display format.

    A directory yields a ``d name`` / ``f name`` listing instead.
    """
    if os.path.isdir(file_path):
        try:
            entries = sorted(os.scandir(file_path), key=lambda e: e.name)
        except OSError as e:
            return ReadResult(status="error", file=file_path, error=str(e))
        listing = "\n".join(f"{'d' if e.is_dir() else 'f'} {e.name}" for e in entries)
        return ReadResult(status="ok", file=file_path, text=f"Directory: {file_path}\n\n{listing}")

    try:
        raw = _read_text(file_path)
    except FileNotFoundError:
        return ReadResult(status="error", file=file_path, error=f"File not found: {file_path}")
    except OSError as e:
        return ReadResult(status="error", file=file_path, error=str(e))

    lines = SourceText.parse(raw).lines
    total = len(lines)
    start = max(1, offset)
    if start > total:
        return ReadResult(
            status="error", file=file_path, total_lines=total,
            error=f"Offset {start} is past the end of the file ({total} lines)",
        )
    end = min(total, start - 1 + max(1, limit))
    selected = "\n".join(lines[start - 1:end])
    if plain:
        body = "\n".join(f"{n}|{line}" for n, line in enumerate(lines[start - 1:end], start=start))
    else:
        body = format_hash_lines(selected, start)

    header = f"File: {file_path} ({total} lines)"
    if start > 1 or end < total:
        header += f" [showing lines {start}-{end}]"
    if end < total:
        header += f" ({total - end} more lines below)"

    return ReadResult(
        status="ok", file=file_path, text=f"{header}\n\n{body}",
        total_lines=total, start_line=start, end_line=end,
    )


def edit_file(
    file_path: str,
    edits: List[Any],
    threshold: float = DEFAULT_FUZZY_THRESHOLD,
    dry_run: bool = False,
) -> EditResult:
    """Apply a batch of edits to a file.

    Nothing is written unless every anchor validates and the batch changes
    the file. Engine errors are reported through ``status``, never raised.
    """
    try:
        content = _read_text(file_path)
    except FileNotFoundError:
        return EditResult(status="error", file=file_path, error=f"File not found: {file_path}")
    except OSError as e:
        return EditResult(status="error", file=file_path, error=str(e))

    try:
        outcome = apply_edits(content, edits, threshold=threshold, path=file_path)
    except HashMismatchError as e:
        logger.info("Rejected stale edit batch (%d mismatches)", len(e.mismatches),
                    extra={"file_path": file_path})
        return EditResult(status="mismatch", file=file_path, error=str(e), remaps=e.remaps)
    except AmbiguousMatchError as e:
        return EditResult(status="ambiguous", file=file_path, error=str(e))
    except NoMatchError as e:
        return EditResult(status="no_match", file=file_path, error=str(e))
    except NoOpError as e:
        return EditResult(
            status="noop",
            file=file_path,
            error=str(e),
            noop_edits=[
                {"edit_index": n.edit_index, "loc": n.loc, "current_content": n.current_content}
                for n in e.noop_edits
            ],
        )
    except HashlineError as e:
        return EditResult(status="error", file=file_path, error=str(e))

    if not dry_run:
        try:
            with open(file_path, 'w', encoding='utf-8', newline='') as f:
                f.write(outcome.content)
        except OSError as e:
            return EditResult(status="error", file=file_path, error=str(e))
        logger.info("Applied %d edits", len(edits), extra={"file_path": file_path,
                                                          "line_number": outcome.first_changed_line})

    return EditResult(
        status="applied",
        file=file_path,
        first_changed_line=outcome.first_changed_line,
        replacements=outcome.replacements or None,
        warnings=outcome.warnings or None,
        noop_edits=[
            {"edit_index": n.edit_index, "loc": n.loc, "current_content": n.current_content}
            for n in outcome.noop_edits
        ] or None,
        diff=outcome.diff,
        dry_run=True if dry_run else None,
    )


def write_file(file_path: str, content: str) -> WriteResult:
    """Create or overwrite a file, creating parent directories as needed."""
    existed = os.path.exists(file_path)
    try:
        parent = os.path.dirname(file_path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(file_path, 'w', encoding='utf-8', newline='') as f:
            f.write(content)
    except OSError as e:
        return WriteResult(status="error", file=file_path, error=str(e))
    return WriteResult(
        status="overwritten" if existed else "created",
        file=file_path,
        lines=len(content.split("\n")),
    )


def format_grep_output(output: str) -> str:
    """Rewrite ripgrep output into display format.

    Match lines become ``FILE:>>N:HH|CONTENT`` and context lines
    ``FILE:  N:HH|CONTENT``. Anything else passes through unchanged.
    """
    formatted = []
    for line in output.rstrip("\n").split("\n"):
        if line == "--":
            formatted.append(line)
            continue
        m = _RG_MATCH_RE.match(line)
        if m:
            file, num, content = m.group(1), int(m.group(2)), m.group(3)
            formatted.append(f"{file}:>>{num}:{fingerprint(content)}|{content}")
            continue
        m = _RG_CONTEXT_RE.match(line)
        if m:
            file, num, content = m.group(1), int(m.group(2)), m.group(3)
            formatted.append(f"{file}:  {num}:{fingerprint(content)}|{content}")
            continue
        formatted.append(line)
    return "\n".join(formatted)


def grep_files(
    pattern: str,
    path: str = ".",
    ignore_case: bool = False,
    glob: Optional[str] = None,
    file_type: Optional[str] = None,
    before: int = 0,
    after: int = 0,
    limit: int = DEFAULT_GREP_LIMIT,
) -> GrepResult:
    """Search files with ripgrep and return hits in display format."""
    if not shutil.which("rg"):
        return GrepResult(status="error", pattern=pattern, error="ripgrep (rg) is not installed")

    cmd = ["rg", "--line-number", "--no-heading", "--with-filename", "--color", "never"]
    if ignore_case:
        cmd.append("-i")
    if before:
        cmd += ["-B", str(before)]
    if after:
        cmd += ["-A", str(after)]
    if glob:
        cmd += ["--glob", glob]
    if file_type:
        cmd += ["--type", file_type]
    cmd += ["-m", str(limit), "--", pattern, path]

    logger.debug("Running %s", " ".join(cmd))
    try:
        proc = subprocess.run(cmd, capture_output=True, text=True, encoding='utf-8', errors='replace')
    except OSError as e:
        return GrepResult(status="error", pattern=pattern, error=str(e))

    if proc.returncode == 1:
        return GrepResult(status="no_match", pattern=pattern, text="No matches found.")
    if proc.returncode != 0:
        return GrepResult(status="error", pattern=pattern, error=proc.stderr.strip() or "unknown error")
    return GrepResult(status="ok", pattern=pattern, text=format_grep_output(proc.stdout))


def result_to_dict(result: Any) -> dict:
    """Convert a result dataclass to a JSON-serializable dict, skipping None fields."""
    d = {}
    for f in fields(result):
        value = getattr(result, f.name)
        if value is not None:
            d[f.name] = value
    return d


def parse_edit_input(args) -> List[Any]:
    """Parse an edit batch from --edits <file> or --stdin.

    Accepts a bare array or ``{"file": ..., "edits": [...]}``.
    """
    if args.stdin:
        data = json.load(sys.stdin)
    elif args.edits:
        with open(args.edits, 'r', encoding='utf-8') as f:
            data = json.load(f)
    else:
        raise ValueError("Must provide --edits <file> or --stdin")

    if isinstance(data, dict):
        if "edits" in data:
            return data["edits"]
        return [data]
    if isinstance(data, list):
        return data
    raise ValueError("Edit input must be a JSON array or an object with an 'edits' array")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="hl",
        description="HashlineKit: hash-anchored file editing for LLM coding agents",
    )
    parser.add_argument("--log-level", help="Log level (default: $HASHLINEKIT_LOG_LEVEL or WARNING)")
    parser.add_argument("--log-file", help="Append JSON log lines to this file")
    sub = parser.add_subparsers(dest="command")

    read_parser = sub.add_parser("read", help="Print a file with LINE:HASH prefixes")
    read_parser.add_argument("file", help="File (or directory) to read")
    read_parser.add_argument("--offset", type=int, default=1, help="First line to show (1-indexed)")
    read_parser.add_argument(
        "--limit", type=int, default=DEFAULT_MAX_LINES,
        help=f"Maximum lines to show (default: {DEFAULT_MAX_LINES})",
    )
    read_parser.add_argument("--plain", action="store_true", help="Omit hashes (LINE|CONTENT)")

    edit_parser = sub.add_parser("edit", help="Apply an edit batch to a file")
    edit_parser.add_argument("--file", help="Target file path", required=True)
    edit_parser.add_argument("--edits", help="JSON file with the edit batch")
    edit_parser.add_argument("--stdin", action="store_true", help="Read the edit batch from stdin")
    edit_parser.add_argument(
        "--threshold",
        type=float,
        default=DEFAULT_FUZZY_THRESHOLD,
        help=f"Fuzzy match threshold for replace edits (default: {DEFAULT_FUZZY_THRESHOLD})",
    )
    edit_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would change without writing",
    )
    edit_parser.add_argument(
        "--diff",
        action="store_true",
        help="Print the diff to stderr",
    )

    write_parser = sub.add_parser("write", help="Create or overwrite a file")
    write_parser.add_argument("--file", help="Target file path", required=True)
    write_parser.add_argument("--content", help="File content")
    write_parser.add_argument("--stdin", action="store_true", help="Read content from stdin")

    grep_parser = sub.add_parser("grep", help="Search files, printing LINE:HASH anchors")
    grep_parser.add_argument("pattern", help="Regex pattern")
    grep_parser.add_argument("path", nargs="?", default=".", help="File or directory (default: .)")
    grep_parser.add_argument("-i", dest="ignore_case", action="store_true", help="Case-insensitive")
    grep_parser.add_argument("--glob", help="Filter files by glob")
    grep_parser.add_argument("--type", dest="file_type", help="Filter by file type (e.g. py)")
    grep_parser.add_argument("-B", dest="before", type=int, default=0, help="Context lines before")
    grep_parser.add_argument("-A", dest="after", type=int, default=0, help="Context lines after")
    grep_parser.add_argument(
        "--limit", type=int, default=DEFAULT_GREP_LIMIT,
        help=f"Maximum matches per file (default: {DEFAULT_GREP_LIMIT})",
    )

    args = parser.parse_args(argv)

    try:
        setup_logger(level=args.log_level, log_file=args.log_file)
    except ValueError as e:
        print(json.dumps({"status": "error", "error": str(e)}))
        return 1

    if args.command == "read":
        result = read_file(args.file, offset=args.offset, limit=args.limit, plain=args.plain)
        if result.status != "ok":
            print(json.dumps(result_to_dict(result), indent=2))
            return 1
        print(result.text)
        return 0

    if args.command == "write":
        if args.stdin:
            content = sys.stdin.read()
        elif args.content is not None:
            content = args.content
        else:
            print(json.dumps({"status": "error", "error": "Must provide --content or --stdin"}))
            return 1
        result = write_file(args.file, content)
        print(json.dumps(result_to_dict(result), indent=2))
        return 0 if result.status in ("created", "overwritten") else 1

    if args.command == "grep":
        result = grep_files(
            args.pattern, args.path,
            ignore_case=args.ignore_case,
            glob=args.glob,
            file_type=args.file_type,
            before=args.before,
            after=args.after,
            limit=args.limit,
        )
        if result.status == "error":
            print(json.dumps(result_to_dict(result), indent=2))
            return 1
        print(result.text)
        return 0

    if args.command != "edit":
        parser.print_help()
        return 1

    try:
        edits = parse_edit_input(args)
    except (ValueError, OSError, json.JSONDecodeError) as e:
        print(json.dumps({"status": "error", "error": str(e)}))
        return 1

    result = edit_file(args.file, edits, threshold=args.threshold, dry_run=args.dry_run)

    # Print diff to stderr if requested
    if args.diff and result.diff:
        print(result.diff, file=sys.stderr)

    print(json.dumps(result_to_dict(result), indent=2))
    return EXIT_CODES.get(result.status, 1)


if __name__ == "__main__":
    sys.exit(main())
