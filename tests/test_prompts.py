"""Tests for orchestration/prompts.py."""

from __future__ import annotations

import pytest

from thimble.ai.orchestration.prompts import build_system_prompt, format_instructions, render_tool_catalogue
from thimble.ai.orchestration.tools import ToolSpec


def test_render_catalogue_lists_parameters(read_file_spec: ToolSpec) -> None:
    rendered = render_tool_catalogue([read_file_spec, ToolSpec(name="list_files", description="List a directory")])

    assert rendered.splitlines() == [
        "- read_file: Read a text file from the workspace",
        "  Parameters:",
        "    - path (string, required): File path relative to the workspace",
        "    - encoding (string, optional)",
        "- list_files: List a directory",
    ]


def test_empty_catalogue() -> None:
    assert "no tools are available" in render_tool_catalogue([])


@pytest.mark.parametrize(
    ("format_name", "marker"),
    [("single-token", "ANSWER:"), ("text", "FINAL_ANSWER:"), ("xml", "<answer>")],
)
def test_format_instructions_name_the_terminal_field(format_name: str, marker: str) -> None:
    assert marker in format_instructions(format_name)


def test_single_token_instructions_do_not_mention_final_answer() -> None:
    assert "FINAL_ANSWER" not in format_instructions("single-token")


def test_unknown_format_raises() -> None:
    with pytest.raises(ValueError):
        format_instructions("markdown")


def test_build_system_prompt_sections(read_file_spec: ToolSpec) -> None:
    prompt = build_system_prompt(
        [read_file_spec],
        format_name="xml",
        context={"workspace": "/repo", "active_file": "main.py", "selection": None},
    )

    assert prompt.index("You can use the following tools:") < prompt.index("- read_file:")
    assert prompt.index("- read_file:") < prompt.index("<thought>")
    assert prompt.endswith("Editor context:\n- workspace: /repo\n- active_file: main.py")


def test_build_system_prompt_is_deterministic(read_file_spec: ToolSpec) -> None:
    first = build_system_prompt([read_file_spec])
    second = build_system_prompt([read_file_spec])

    assert first == second
    assert "Editor context" not in first
