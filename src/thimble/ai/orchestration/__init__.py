"""ReAct orchestration core: chunk parsing, message streaming and the agent loop."""

# Core types
from .types import (
    AgentRequest,
    AgentResponse,
    AgentStatus,
    ConversationTurn,
    LoopPhase,
    MessageType,
    ParseEvent,
    ParseEventKind,
    ParserState,
    Section,
    StandardMessage,
    ToolInvocation,
    ToolOutcome,
)

# Chunk parsing
from .stream_parser import (
    DEFAULT_FORMAT,
    SUPPORTED_FORMATS,
    ChunkParser,
    KeywordChunkParser,
    TagChunkParser,
    create_parser,
    is_format_supported,
)

# Streaming messages
from .emitter import (
    StreamingMessageEmitter,
    error_message,
    text_message,
    think_message,
    tool_message,
)

# Conversation and prompts
from .conversation import ConversationHistory, format_observation, validate_seed
from .prompts import build_system_prompt, render_tool_catalogue

# Tracing
from .event_log import NULL_TRACE_HOOK, AgentEventLogger, AgentEventLogRun, NullTraceHook, TraceHook

# Tool system
from .tools import (
    DuplicateToolError,
    ExecutorConfig,
    RegistryToolInvoker,
    SimpleTool,
    ToolExecutionError,
    ToolExecutor,
    ToolInvoker,
    ToolNotFoundError,
    ToolRegistry,
    ToolSpec,
)

# Agent loop
from .agent_loop import (
    AgentCallbacks,
    LoopConfig,
    ModelClient,
    ProtocolViolationError,
    ReactAgentLoop,
    create_agent_loop,
)

__all__ = [
    # types.py
    "AgentRequest",
    "AgentResponse",
    "AgentStatus",
    "ConversationTurn",
    "LoopPhase",
    "MessageType",
    "ParseEvent",
    "ParseEventKind",
    "ParserState",
    "Section",
    "StandardMessage",
    "ToolInvocation",
    "ToolOutcome",
    # stream_parser.py
    "DEFAULT_FORMAT",
    "SUPPORTED_FORMATS",
    "ChunkParser",
    "KeywordChunkParser",
    "TagChunkParser",
    "create_parser",
    "is_format_supported",
    # emitter.py
    "StreamingMessageEmitter",
    "error_message",
    "text_message",
    "think_message",
    "tool_message",
    # conversation.py / prompts.py
    "ConversationHistory",
    "format_observation",
    "validate_seed",
    "build_system_prompt",
    "render_tool_catalogue",
    # event_log.py
    "TraceHook",
    "NullTraceHook",
    "NULL_TRACE_HOOK",
    "AgentEventLogger",
    "AgentEventLogRun",
    # tools
    "DuplicateToolError",
    "ExecutorConfig",
    "RegistryToolInvoker",
    "SimpleTool",
    "ToolExecutionError",
    "ToolExecutor",
    "ToolInvoker",
    "ToolNotFoundError",
    "ToolRegistry",
    "ToolSpec",
    # agent_loop.py
    "AgentCallbacks",
    "LoopConfig",
    "ModelClient",
    "ProtocolViolationError",
    "ReactAgentLoop",
    "create_agent_loop",
]
