"""Tests for the tool invoker seam and tool status lines."""

from __future__ import annotations

import pytest

from thimble.ai.orchestration.tools import (
    ExecutorConfig,
    RegistryToolInvoker,
    ToolInvoker,
    ToolRegistry,
    ToolSpec,
    describe_tool_end,
    describe_tool_start,
    normalize_outcome,
)
from thimble.ai.orchestration.types import ToolOutcome


class TestNormalizeOutcome:
    def test_outcome_passes_through(self) -> None:
        outcome = ToolOutcome.failed("nope")

        assert normalize_outcome(outcome) is outcome

    def test_success_mapping(self) -> None:
        assert normalize_outcome({"success": True, "data": [1]}) == ToolOutcome.ok([1])

    def test_failure_mapping(self) -> None:
        assert normalize_outcome({"success": False, "error": "ENOENT"}) == ToolOutcome.failed("ENOENT")
        assert normalize_outcome({"success": False}) == ToolOutcome.failed("tool reported failure")

    def test_plain_data_is_success(self) -> None:
        assert normalize_outcome({"files": []}) == ToolOutcome.ok({"files": []})
        assert normalize_outcome("text") == ToolOutcome.ok("text")


class TestRegistryToolInvoker:
    @pytest.mark.asyncio
    async def test_successful_call(self, file_registry: ToolRegistry) -> None:
        invoker = RegistryToolInvoker(file_registry)

        assert isinstance(invoker, ToolInvoker)
        assert await invoker.invoke("read_file", {"path": "a.txt"}) == ToolOutcome.ok("hello")

    @pytest.mark.asyncio
    async def test_reported_failure(self, file_registry: ToolRegistry) -> None:
        outcome = await RegistryToolInvoker(file_registry).invoke("read_file", {"path": "b.txt"})

        assert outcome == ToolOutcome.failed("ENOENT")

    @pytest.mark.asyncio
    async def test_unknown_tool_is_a_failed_outcome(self) -> None:
        outcome = await RegistryToolInvoker().invoke("delete_everything", {})

        assert not outcome.success
        assert "not found" in (outcome.error or "")

    @pytest.mark.asyncio
    async def test_raising_tool_is_a_failed_outcome(self) -> None:
        registry = ToolRegistry()

        def broken(args):
            raise PermissionError("denied")

        registry.add_function(spec=ToolSpec(name="write_file", description="Write"), handler=broken)
        invoker = RegistryToolInvoker(registry, config=ExecutorConfig(default_timeout=None))

        assert await invoker.invoke("write_file", {"path": "x"}) == ToolOutcome.failed("denied")
        assert invoker.registry is registry


class TestStatusLines:
    @pytest.mark.parametrize(
        ("name", "arguments", "expected"),
        [
            ("read_file", {"path": "a.txt"}, "Reading file: a.txt"),
            ("write_file", {"file_path": "b.py"}, "Writing file: b.py"),
            ("list_files", {}, "Listing directory: ."),
            ("search_files", {"pattern": "*.py"}, "Searching files: *.py"),
            ("move_file", {"source": "a", "destination": "b"}, "Moving file: a -> b"),
            ("delete_file", {"path": "tmp"}, "Deleting: tmp"),
            ("custom", {}, "Running: custom"),
        ],
    )
    def test_start_lines(self, name: str, arguments: dict, expected: str) -> None:
        assert describe_tool_start(name, arguments) == expected

    def test_failure_line(self) -> None:
        assert describe_tool_end("read_file", {"path": "b.txt"}, ToolOutcome.failed("ENOENT")) == "Failed: ENOENT"

    @pytest.mark.parametrize(
        ("name", "data", "expected"),
        [
            ("read_file", "hello", "Read file: a.txt"),
            ("list_files", {"files": ["a", "b"]}, "Found 2 files/directories"),
            ("search_files", ["a.py"], "Search finished, 1 matching files"),
            ("search_in_files", {"matches": [1, 2, 3]}, "Search finished, 3 matches"),
            ("custom", None, "Done: custom"),
        ],
    )
    def test_end_lines(self, name: str, data: object, expected: str) -> None:
        assert describe_tool_end(name, {"path": "a.txt"}, ToolOutcome.ok(data)) == expected
