"""Tool seam for the agent loop.

This package provides the tool registry, the timed executor and the invoker
adapter the loop calls through, plus the status lines shown around each call.

Example:
    from thimble.ai.orchestration.tools import RegistryToolInvoker, ToolRegistry, ToolSpec

    registry = ToolRegistry()
    registry.add_function(
        spec=ToolSpec(name="read_file", description="Read a file"),
        handler=lambda args: {"success": True, "data": Path(args["path"]).read_text()},
    )
    outcome = await RegistryToolInvoker(registry).invoke("read_file", {"path": "a.txt"})
"""

from .types import (
    AsyncToolHandler,
    SimpleTool,
    Tool,
    ToolHandler,
    ToolParameter,
    ToolSpec,
)

from .registry import (
    DuplicateToolError,
    ToolNotFoundError,
    ToolRegistry,
)

from .executor import (
    ExecutorConfig,
    ToolExecutionError,
    ToolExecutor,
)

from .invoker import (
    RegistryToolInvoker,
    ToolInvoker,
    normalize_outcome,
)

from .status import describe_tool_end, describe_tool_start

__all__ = [
    # types.py
    "Tool",
    "ToolSpec",
    "ToolParameter",
    "ToolHandler",
    "AsyncToolHandler",
    "SimpleTool",
    # registry.py
    "ToolRegistry",
    "DuplicateToolError",
    "ToolNotFoundError",
    # executor.py
    "ToolExecutor",
    "ExecutorConfig",
    "ToolExecutionError",
    # invoker.py
    "ToolInvoker",
    "RegistryToolInvoker",
    "normalize_outcome",
    # status.py
    "describe_tool_start",
    "describe_tool_end",
]
