"""Shared pytest fixtures."""

from __future__ import annotations

from typing import Any, Mapping

import pytest

from thimble.ai.orchestration.tools import ToolRegistry, ToolSpec


@pytest.fixture
def read_file_spec() -> ToolSpec:
    return ToolSpec(
        name="read_file",
        description="Read a text file from the workspace",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path relative to the workspace"},
                "encoding": {"type": "string"},
            },
            "required": ["path"],
        },
    )


@pytest.fixture
def file_registry(read_file_spec: ToolSpec) -> ToolRegistry:
    registry = ToolRegistry()

    def read_file(args: Mapping[str, Any]) -> dict[str, Any]:
        if args.get("path") == "a.txt":
            return {"success": True, "data": "hello"}
        return {"success": False, "error": "ENOENT"}

    registry.add_function(spec=read_file_spec, handler=read_file)
    return registry
