"""System prompt rendering for each wire format."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from .stream_parser import DEFAULT_FORMAT, SUPPORTED_FORMATS
from .tools.types import ToolSpec

__all__ = [
    "render_tool_catalogue",
    "format_instructions",
    "build_system_prompt",
]

_PREAMBLE = "You are a coding assistant working inside the user's editor."

_NO_TOOLS = "(no tools are available; answer directly)"

_KEYWORD_INSTRUCTIONS = """\
Reply using exactly this line format and nothing else.

When you need a tool:
THOUGHT: <your reasoning>
ACTION: <tool name>
ACTION_INPUT: <JSON object with the tool arguments>

When you can answer:
THOUGHT: <your reasoning based on what you know>
{answer}: <the complete final answer, may span several lines>

Rules:
1. Start each field on its own line with the field name followed by a colon.
2. Request at most one tool per reply, then wait for the observation.
3. ACTION_INPUT must be a single JSON object.
4. {answer} must be the last field of a reply.
5. Keep the earlier conversation in mind.

Example:
THOUGHT: The user asks who I am; no tool is needed.
{answer}: I am a coding assistant that can read, write and search files in your workspace."""

_TAG_INSTRUCTIONS = """\
Reply using exactly these tags and nothing else.

When you need a tool:
<thought>your reasoning</thought>
<action><name>tool name</name><input>JSON object with the tool arguments</input></action>

When you can answer:
<thought>your reasoning based on what you know</thought>
<answer>the complete final answer</answer>

Rules:
1. Request at most one tool per reply, then wait for the observation.
2. <input> must contain a single JSON object.
3. <answer> must be the last element of a reply.
4. Keep the earlier conversation in mind."""


def render_tool_catalogue(specs: Sequence[ToolSpec]) -> str:
    """Render *specs* as an indented bullet list for the system prompt."""
    if not specs:
        return _NO_TOOLS
    lines: list[str] = []
    for spec in specs:
        lines.append(f"- {spec.name}: {spec.description}")
        parameters = spec.iter_parameters()
        if not parameters:
            continue
        lines.append("  Parameters:")
        for parameter in parameters:
            flag = "required" if parameter.required else "optional"
            description = f": {parameter.description}" if parameter.description else ""
            lines.append(f"    - {parameter.name} ({parameter.type}, {flag}){description}")
    return "\n".join(lines)


def format_instructions(format_name: str = DEFAULT_FORMAT) -> str:
    """Return the output-format rules for *format_name*."""
    if format_name == "single-token":
        return _KEYWORD_INSTRUCTIONS.format(answer="ANSWER")
    if format_name == "text":
        return _KEYWORD_INSTRUCTIONS.format(answer="FINAL_ANSWER")
    if format_name == "xml":
        return _TAG_INSTRUCTIONS
    raise ValueError(f"Unsupported response format: {format_name!r} (expected one of {', '.join(SUPPORTED_FORMATS)})")


def build_system_prompt(
    specs: Sequence[ToolSpec],
    *,
    format_name: str = DEFAULT_FORMAT,
    context: Mapping[str, Any] | None = None,
) -> str:
    """Compose the per-round system turn: preamble, tools, format rules, context."""
    sections = [
        _PREAMBLE,
        f"You can use the following tools:\n\n{render_tool_catalogue(specs)}",
        format_instructions(format_name),
    ]
    if context:
        rendered = "\n".join(f"- {key}: {value}" for key, value in context.items() if value not in (None, ""))
        if rendered:
            sections.append(f"Editor context:\n{rendered}")
    return "\n\n".join(sections)
