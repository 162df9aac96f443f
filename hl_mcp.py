#!/usr/bin/env python3
"""HashlineKit MCP Server: Model Context Protocol server for hash-anchored editing.

Exposes HashlineKit's read/edit/write/search operations as MCP tools that
any compatible AI agent can use. Runs over stdio using JSON-RPC 2.0, one
message per line.

Tools provided:
  - read_file: Read a file as LINE:HASH|CONTENT lines
  - edit_file: Apply a batch of anchor-based (or replace) edits atomically
  - write_file: Create or overwrite a file
  - grep: Search files, results carry LINE:HASH anchors

Usage:
  python hl_mcp.py
"""

import json
import sys
from typing import Any

from hl import DEFAULT_GREP_LIMIT, DEFAULT_MAX_LINES, EDIT_ITEM_SCHEMA, edit_file, grep_files, read_file, write_file
from hl_log import get_logger, setup_logger

logger = get_logger("hl_mcp")

# MCP Protocol version
PROTOCOL_VERSION = "2024-11-05"
SERVER_NAME = "hashlinekit"
SERVER_VERSION = "0.1.0"

TOOLS = [
    {
        "name": "read_file",
        "description": (
            "Read a file. Each line is returned as LINE:HASH|CONTENT; use the "
            "LINE:HASH part as an anchor in edit_file. Directories return a listing."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Path to the file to read (relative or absolute)",
                },
                "offset": {
                    "type": "integer",
                    "description": "Line number to start reading from (1-indexed)",
                },
                "limit": {
                    "type": "integer",
                    "description": f"Maximum number of lines to read (default: {DEFAULT_MAX_LINES})",
                },
            },
            "required": ["path"],
        },
    },
    {
        "name": "edit_file",
        "description": (
            "Edit a file with LINE:HASH anchors from read_file or grep. All anchors "
            "are verified against the current file before anything is written; if "
            "lines changed, the edit is rejected and the updated anchors are shown."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "File path (relative or absolute)",
                },
                "edits": {
                    "type": "array",
                    "description": "Array of edit operations",
                    "items": EDIT_ITEM_SCHEMA,
                },
            },
            "required": ["path", "edits"],
        },
    },
    {
        "name": "write_file",
        "description": "Create or overwrite a file with the given content.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Path to the file to write",
                },
                "content": {
                    "type": "string",
                    "description": "File content",
                },
            },
            "required": ["path", "content"],
        },
    },
    {
        "name": "grep",
        "description": (
            "Search files with ripgrep. Matches are returned as FILE:>>LINE:HASH|CONTENT "
            "and context lines as FILE:  LINE:HASH|CONTENT."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "Regex pattern to search for"},
                "path": {"type": "string", "description": "File or directory to search (default: cwd)"},
                "glob": {"type": "string", "description": "Filter files by glob pattern (e.g. '*.py')"},
                "type": {"type": "string", "description": "Filter by file type (e.g. py, js, rust)"},
                "i": {"type": "boolean", "description": "Case-insensitive search", "default": False},
                "pre": {"type": "integer", "description": "Lines of context before matches"},
                "post": {"type": "integer", "description": "Lines of context after matches"},
                "limit": {
                    "type": "integer",
                    "description": f"Maximum matches per file (default: {DEFAULT_GREP_LIMIT})",
                },
            },
            "required": ["pattern"],
        },
    },
]


def make_response(id: Any, result: Any) -> dict:
    return {"jsonrpc": "2.0", "id": id, "result": result}


def make_error(id: Any, code: int, message: str, data: Any = None) -> dict:
    err = {"code": code, "message": message}
    if data is not None:
        err["data"] = data
    return {"jsonrpc": "2.0", "id": id, "error": err}


def tool_text(id: Any, text: str, is_error: bool = False) -> dict:
    return make_response(id, {
        "content": [{"type": "text", "text": text}],
        "isError": is_error,
    })


def handle_initialize(id: Any, params: dict) -> dict:
    return make_response(id, {
        "protocolVersion": PROTOCOL_VERSION,
        "capabilities": {
            "tools": {},
        },
        "serverInfo": {
            "name": SERVER_NAME,
            "version": SERVER_VERSION,
        },
    })


def handle_tools_list(id: Any, params: dict) -> dict:
    return make_response(id, {"tools": TOOLS})


def format_edit_result(path: str, result) -> str:
    if result.status == "applied":
        text = f"Updated {path}"
        if result.warnings:
            text += "\n\nWarnings:\n" + "\n".join(result.warnings)
        if result.diff:
            text += f"\n\nDiff:\n{result.diff}"
        return text
    if result.status == "mismatch":
        return result.error
    return f"Error editing {path}: {result.error}"


def handle_tool_call(id: Any, params: dict) -> dict:
    name = params.get("name", "")
    args = params.get("arguments", {}) or {}

    try:
        if name == "read_file":
            path = args["path"]
            result = read_file(
                path,
                offset=args.get("offset") or 1,
                limit=args.get("limit") or DEFAULT_MAX_LINES,
            )
            if result.status != "ok":
                return tool_text(id, f"Error reading {path}: {result.error}", is_error=True)
            return tool_text(id, result.text)

        elif name == "edit_file":
            path = args["path"]
            result = edit_file(path, args["edits"])
            return tool_text(id, format_edit_result(path, result), is_error=result.status != "applied")

        elif name == "write_file":
            path = args["path"]
            result = write_file(path, args["content"])
            if result.status == "error":
                return tool_text(id, f"Error writing {path}: {result.error}", is_error=True)
            verb = "Created" if result.status == "created" else "Overwrote"
            return tool_text(id, f"{verb} {path} ({result.lines} lines)")

        elif name == "grep":
            result = grep_files(
                args["pattern"],
                args.get("path") or ".",
                ignore_case=bool(args.get("i", False)),
                glob=args.get("glob"),
                file_type=args.get("type"),
                before=args.get("pre") or 0,
                after=args.get("post") or 0,
                limit=args.get("limit") or DEFAULT_GREP_LIMIT,
            )
            if result.status == "error":
                return tool_text(id, f"grep error: {result.error}", is_error=True)
            return tool_text(id, result.text)

        else:
            return make_error(id, -32601, f"Unknown tool: {name}")
    except KeyError as e:
        return make_error(id, -32602, f"Missing argument for {name}: {e.args[0]}")


HANDLERS = {
    "initialize": handle_initialize,
    "notifications/initialized": None,  # notification, no response
    "tools/list": handle_tools_list,
    "tools/call": handle_tool_call,
}


def run_stdio():
    """Main stdio loop: read JSON-RPC messages, dispatch, respond."""
    setup_logger()
    for line in sys.stdin:
        line = line.strip()
        if not line:
            continue
        try:
            msg = json.loads(line)
        except json.JSONDecodeError:
            resp = make_error(None, -32700, "Parse error")
            sys.stdout.write(json.dumps(resp) + "\n")
            sys.stdout.flush()
            continue

        method = msg.get("method", "")
        id = msg.get("id")
        params = msg.get("params", {}) or {}

        handler = HANDLERS.get(method)
        if handler is None:
            if id is not None and method not in HANDLERS:
                resp = make_error(id, -32601, f"Method not found: {method}")
                sys.stdout.write(json.dumps(resp) + "\n")
                sys.stdout.flush()
            # notifications (no id) or known notification methods: no response
            continue

        logger.debug("Handling %s", method)
        resp = handler(id, params)
        sys.stdout.write(json.dumps(resp) + "\n")
        sys.stdout.flush()


if __name__ == "__main__":
    run_stdio()
