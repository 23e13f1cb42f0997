"""Human-readable status lines for tool start/end messages."""

from __future__ import annotations

from typing import Any, Mapping

from ..types import ToolOutcome

__all__ = ["describe_tool_start", "describe_tool_end"]


def _path(arguments: Mapping[str, Any]) -> str:
    return str(arguments.get("path") or arguments.get("file_path") or arguments.get("filePath") or "")


def _move_target(arguments: Mapping[str, Any]) -> tuple[str, str]:
    source = arguments.get("source") or arguments.get("from") or ""
    destination = arguments.get("destination") or arguments.get("to") or ""
    return str(source), str(destination)


def _count(value: Any) -> int:
    return len(value) if isinstance(value, (list, tuple)) else 0


def describe_tool_start(name: str, arguments: Mapping[str, Any]) -> str:
    """Return the line shown while tool *name* runs."""
    if name == "read_file":
        return f"Reading file: {_path(arguments)}"
    if name == "write_file":
        return f"Writing file: {_path(arguments)}"
    if name == "edit_file":
        return f"Editing file: {_path(arguments)}"
    if name == "list_files":
        return f"Listing directory: {_path(arguments) or '.'}"
    if name == "search_files":
        return f"Searching files: {arguments.get('pattern', '')}"
    if name == "search_in_files":
        return f"Searching file contents: {arguments.get('query', '')}"
    if name == "get_file_info":
        return f"Getting file info: {_path(arguments)}"
    if name == "create_directory":
        return f"Creating directory: {_path(arguments)}"
    if name == "move_file":
        source, destination = _move_target(arguments)
        return f"Moving file: {source} -> {destination}"
    if name == "delete_file":
        return f"Deleting: {_path(arguments)}"
    return f"Running: {name}"


def describe_tool_end(name: str, arguments: Mapping[str, Any], outcome: ToolOutcome) -> str:
    """Return the line shown once tool *name* has returned *outcome*."""
    if not outcome.success:
        return f"Failed: {outcome.error}"
    data = outcome.data
    if name == "read_file":
        return f"Read file: {_path(arguments)}"
    if name == "write_file":
        return f"Wrote file: {_path(arguments)}"
    if name == "edit_file":
        return f"Edited file: {_path(arguments)}"
    if name == "list_files":
        files = data.get("files") if isinstance(data, Mapping) else None
        return f"Found {_count(files)} files/directories"
    if name == "search_files":
        return f"Search finished, {_count(data)} matching files"
    if name == "search_in_files":
        matches = data.get("matches") if isinstance(data, Mapping) else None
        return f"Search finished, {_count(matches)} matches"
    if name == "get_file_info":
        return f"Got file info: {_path(arguments)}"
    if name == "create_directory":
        return f"Created directory: {_path(arguments)}"
    if name == "move_file":
        source, destination = _move_target(arguments)
        return f"Moved file: {source} -> {destination}"
    if name == "delete_file":
        return f"Deleted: {_path(arguments)}"
    return f"Done: {name}"
