"""ReAct agent loop: model rounds, streamed parsing and tool execution.

Each round builds a system turn (instructions plus the tool catalogue), the
trailing conversation window and a current turn, streams the model's reply
through a :class:`~thimble.ai.orchestration.stream_parser.ChunkParser` and
forwards the resulting messages to the caller as they arrive. A completed
action runs exactly one tool and starts another round; a completed answer
ends the request.

Terminal outcomes:

* answer: ``on_complete(answer)``;
* structural parse error without action or answer: ``on_complete`` with a
  generic fallback result;
* round budget exhausted: an error message, then ``on_complete`` with an
  apology;
* protocol violation (neither action nor answer) or an exception from the
  model or a tool: an error message, then ``on_error``;
* :meth:`ReactAgentLoop.stop`: no further callbacks at all.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, Protocol, Sequence

from ..tokens import ByteEstimateCounter
from .conversation import ConversationHistory
from .emitter import StreamingMessageEmitter
from .event_log import NULL_TRACE_HOOK, TraceHook
from .prompts import build_system_prompt
from .stream_parser import DEFAULT_FORMAT, ChunkParser, create_parser, is_format_supported
from .tools.invoker import RegistryToolInvoker, ToolInvoker, normalize_outcome
from .tools.registry import ToolRegistry
from .tools.status import describe_tool_end, describe_tool_start
from .tools.types import ToolSpec
from .types import (
    AgentRequest,
    AgentResponse,
    AgentStatus,
    ConversationTurn,
    LoopPhase,
    ParseEvent,
    ParseEventKind,
    ParserState,
    StandardMessage,
    ToolInvocation,
)

__all__ = [
    "ReactAgentLoop",
    "LoopConfig",
    "AgentCallbacks",
    "ModelClient",
    "ProtocolViolationError",
    "create_agent_loop",
    "DEFAULT_CONTINUATION_PROMPT",
    "BUDGET_EXHAUSTED_RESULT",
    "FALLBACK_RESULT",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_CONTINUATION_PROMPT = "Please continue."
BUDGET_EXHAUSTED_RESULT = (
    "Sorry, I could not finish this task within the allowed number of steps. "
    "Try splitting it into smaller requests."
)
FALLBACK_RESULT = "The task finished, but no clear answer was produced."


# -----------------------------------------------------------------------------
# Contracts
# -----------------------------------------------------------------------------


class ProtocolViolationError(Exception):
    """A round ended with neither an action nor a final answer."""

    def __init__(self, round_index: int, response_text: str) -> None:
        self.round_index = round_index
        self.response_text = response_text
        super().__init__(
            f"Model response in round {round_index} contained neither an action nor a final answer"
        )


class ModelClient(Protocol):
    """Streaming model call consumed by the loop.

    ``history`` starts with the synthesized system turn; the concatenation of
    the yielded chunks is the full response for the round.
    """

    def stream_complete(
        self,
        current_turn: ConversationTurn,
        history: Sequence[ConversationTurn],
    ) -> AsyncIterator[str]:
        ...


MessageCallback = Callable[[StandardMessage], Awaitable[None] | None]
CompleteCallback = Callable[[str], Awaitable[None] | None]
ErrorCallback = Callable[[str], Awaitable[None] | None]


@dataclass(slots=True, frozen=True)
class AgentCallbacks:
    """Caller-side observers; each may be sync or async.

    ``on_message`` fires for every streamed message in order. Exactly one of
    ``on_complete``/``on_error`` fires per request unless the loop is stopped.
    """

    on_message: MessageCallback | None = None
    on_complete: CompleteCallback | None = None
    on_error: ErrorCallback | None = None


@dataclass(slots=True, frozen=True)
class LoopConfig:
    """Configuration for the agent loop.

    Attributes:
        response_format: Wire format the model is asked to use.
        max_rounds: Model calls allowed per request.
        continuation_prompt: Current turn for every round after the first.
        history_window_turns: Trailing history turns sent per round; None sends all.
        history_token_budget: Optional token cap for the history window.
        role: Role tag put on emitted messages.
        budget_exhausted_result: Result reported when ``max_rounds`` is reached.
        fallback_result: Result reported after an unrecoverable parse error.
    """

    response_format: str = DEFAULT_FORMAT
    max_rounds: int = 10
    continuation_prompt: str = DEFAULT_CONTINUATION_PROMPT
    history_window_turns: int | None = 20
    history_token_budget: int | None = None
    role: str = "assistant"
    budget_exhausted_result: str = BUDGET_EXHAUSTED_RESULT
    fallback_result: str = FALLBACK_RESULT

    def __post_init__(self) -> None:
        if not is_format_supported(self.response_format):
            raise ValueError(f"Unsupported response format: {self.response_format!r}")
        if self.max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")


# -----------------------------------------------------------------------------
# Internal helpers
# -----------------------------------------------------------------------------


class _CallbackGate:
    """Delivers callbacks in order, once stopped delivers nothing."""

    def __init__(self, callbacks: AgentCallbacks | None, *, suppressed: Callable[[], bool]) -> None:
        self._callbacks = callbacks or AgentCallbacks()
        self._suppressed = suppressed
        self._terminal_sent = False

    async def message(self, message: StandardMessage) -> None:
        await self._call("on_message", self._callbacks.on_message, message)

    async def complete(self, result: str) -> None:
        if self._terminal_sent:
            return
        self._terminal_sent = True
        await self._call("on_complete", self._callbacks.on_complete, result)

    async def error(self, error: str) -> None:
        if self._terminal_sent:
            return
        self._terminal_sent = True
        await self._call("on_error", self._callbacks.on_error, error)

    async def _call(self, name: str, callback: Callable[[Any], Any] | None, argument: Any) -> None:
        if callback is None or self._suppressed():
            return
        try:
            result = callback(argument)
            if inspect.isawaitable(result):
                await result
        except Exception:
            LOGGER.exception("Agent %s callback raised", name)


@dataclass(slots=True)
class _RoundResult:
    response_text: str
    state: ParserState
    parse_error: str | None = None


@dataclass(slots=True)
class _RunStats:
    rounds: int = 0
    tools_used: list[str] = field(default_factory=list)
    started: float = field(default_factory=time.perf_counter)

    def metadata(self, **extra: Any) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "rounds": self.rounds,
            "tools_used": list(self.tools_used),
            "execution_time_ms": round((time.perf_counter() - self.started) * 1000, 1),
            "stopped": False,
        }
        payload.update(extra)
        return payload


class _StoppedError(Exception):
    """Unwinds a run after :meth:`ReactAgentLoop.stop`."""


# -----------------------------------------------------------------------------
# Agent Loop
# -----------------------------------------------------------------------------


class ReactAgentLoop:
    """Drives one request at a time through model rounds and tool calls.

    Example:
        >>> loop = ReactAgentLoop(client, RegistryToolInvoker(registry))
        >>> response = await loop.run(AgentRequest(message="What is in a.txt?"))
        >>> print(response.result)
    """

    def __init__(
        self,
        client: ModelClient,
        tools: ToolInvoker,
        *,
        catalogue: Sequence[ToolSpec] | None = None,
        config: LoopConfig | None = None,
        tracer: TraceHook | None = None,
        token_counter: Callable[[str], int] | None = None,
    ) -> None:
        """Initialize the loop.

        Args:
            client: Model client implementing ``stream_complete``.
            tools: Tool invoker the loop calls through.
            catalogue: Tool specs rendered into the system prompt. Defaults to
                the enabled tools of the invoker's registry, when it has one.
            config: Optional loop configuration.
            tracer: Optional structured trace hook.
            token_counter: Counter for the history token budget. Defaults to
                the client's ``count_tokens`` or a byte-length estimate.
        """
        self._client = client
        self._tools = tools
        self._catalogue = tuple(catalogue) if catalogue is not None else None
        self._config = config or LoopConfig()
        self._tracer = tracer or NULL_TRACE_HOOK
        self._token_counter = token_counter or self._default_token_counter(client)

        self._phase = LoopPhase.IDLE
        self._active = False
        self._stopped = False
        self._disposed = False
        self._round = 0
        self._current_task: str | None = None
        self._stream_task: asyncio.Task[_RoundResult] | None = None
        self._history: ConversationHistory | None = None
        self._parser: ChunkParser | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> LoopConfig:
        return self._config

    @property
    def phase(self) -> LoopPhase:
        return self._phase

    @property
    def is_active(self) -> bool:
        return self._active and not self._stopped

    @property
    def history(self) -> tuple[ConversationTurn, ...]:
        """Turns of the current or most recent request."""
        return self._history.turns if self._history is not None else ()

    @property
    def parser_state(self) -> ParserState | None:
        """Parser state of the current or most recent round."""
        return self._parser.get_current_state() if self._parser is not None else None

    def status(self) -> AgentStatus:
        return AgentStatus(
            is_active=self.is_active,
            phase=self._phase,
            round=self._round,
            current_task=self._current_task,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self, request: AgentRequest | str, callbacks: AgentCallbacks | None = None) -> AgentResponse:
        """Run *request* to completion.

        Raises:
            RuntimeError: If the loop is disposed or already running a request.
            ValueError: If the request message is empty.
        """
        if isinstance(request, str):
            request = AgentRequest(message=request)
        if self._disposed:
            raise RuntimeError("agent loop has been disposed")
        if self._active:
            raise RuntimeError("agent loop is already running a request")
        if not request.message.strip():
            raise ValueError("request message must not be empty")

        self._active = True
        self._stopped = False
        self._round = 0
        self._current_task = request.message
        history = self._history = ConversationHistory.from_seed(request.history)
        parser = self._parser = create_parser(self._config.response_format, tracer=self._tracer)
        emitter = StreamingMessageEmitter(
            session_id=request.session_id,
            role=self._config.role,
            tracer=self._tracer,
        )
        gate = _CallbackGate(callbacks, suppressed=lambda: self._stopped)
        stats = _RunStats()
        LOGGER.info(
            "Agent request started (session=%s, format=%s, seeded_turns=%d)",
            request.session_id,
            self._config.response_format,
            len(history),
        )
        self._tracer.trace(
            "loop.start",
            {"session_id": request.session_id, "message": request.message, "format": self._config.response_format},
        )

        try:
            return await self._run_rounds(request, history, parser, emitter, gate, stats)
        except _StoppedError:
            return self._stopped_response(stats)
        except asyncio.CancelledError:
            if not self._stopped:
                raise
            return self._stopped_response(stats)
        except ProtocolViolationError as exc:
            LOGGER.error("%s", exc)
            return await self._fail(exc, emitter, gate, stats, error_code="protocol_violation")
        except Exception as exc:
            if self._stopped:
                return self._stopped_response(stats)
            LOGGER.exception("Agent request failed in round %d", self._round)
            return await self._fail(exc, emitter, gate, stats, error_code="exception")
        finally:
            self._active = False
            self._stream_task = None

    def stop(self) -> None:
        """Abort the in-flight model call and suppress all further callbacks.

        Safe to call at any time, including from inside a callback.
        """
        if not self._active or self._stopped:
            return
        self._stopped = True
        self._set_phase(LoopPhase.STOPPED)
        task = self._stream_task
        if task is not None and not task.done():
            task.cancel()
        LOGGER.info("Agent request stopped in round %d", self._round)

    async def dispose(self) -> None:
        """Stop any running request and release the model client. Idempotent."""
        if self._disposed:
            return
        self.stop()
        self._disposed = True
        close = getattr(self._client, "aclose", None)
        if close is None:
            return
        try:
            result = close()
            if inspect.isawaitable(result):
                await result
        except Exception:
            LOGGER.warning("Model client failed to close cleanly", exc_info=True)

    # ------------------------------------------------------------------
    # Rounds
    # ------------------------------------------------------------------

    async def _run_rounds(
        self,
        request: AgentRequest,
        history: ConversationHistory,
        parser: ChunkParser,
        emitter: StreamingMessageEmitter,
        gate: _CallbackGate,
        stats: _RunStats,
    ) -> AgentResponse:
        for round_index in range(1, self._config.max_rounds + 1):
            self._check_stopped()
            self._round = round_index
            stats.rounds = round_index
            current = ConversationTurn.user(
                request.message if round_index == 1 else self._config.continuation_prompt
            )
            turns = [self._system_turn(request.context), *self._history_window(history)]

            self._set_phase(LoopPhase.REQUESTING)
            LOGGER.info("Agent round %d/%d (%d history turns)", round_index, self._config.max_rounds, len(turns) - 1)
            self._tracer.trace(
                "loop.round",
                {"round": round_index, "current_turn": current.content, "history_turns": len(turns) - 1},
            )

            parser.reset()
            emitter.reset()
            self._stream_task = asyncio.ensure_future(
                self._stream_round(parser, emitter, gate, current, turns)
            )
            outcome = await self._stream_task
            self._stream_task = None
            self._check_stopped()

            if round_index == 1:
                history.append_user(request.message)
            history.append_assistant(outcome.response_text)
            state = outcome.state

            if state.is_action_complete and state.action_input is not None:
                self._set_phase(LoopPhase.ACTION_PENDING)
                invocation = ToolInvocation(name=state.action_name, arguments=dict(state.action_input))
                await self._execute_tool(invocation, history, emitter, gate, stats)
                continue

            if state.is_answer_complete and state.answer_content:
                self._set_phase(LoopPhase.ANSWER_READY)
                return await self._complete(state.answer_content, gate, stats)

            if outcome.parse_error is not None:
                LOGGER.warning("Round %d abandoned after parse error: %s", round_index, outcome.parse_error)
                await gate.message(emitter.text(self._config.fallback_result))
                return await self._complete(
                    self._config.fallback_result, gate, stats, parse_error=outcome.parse_error
                )

            raise ProtocolViolationError(round_index, outcome.response_text)

        LOGGER.warning("Agent reached the maximum of %d rounds without an answer", self._config.max_rounds)
        await gate.message(
            emitter.error(
                f"Reached the maximum of {self._config.max_rounds} rounds without a final answer",
                error="max_rounds_exceeded",
            )
        )
        await gate.message(emitter.text(self._config.budget_exhausted_result))
        return await self._complete(self._config.budget_exhausted_result, gate, stats, max_rounds_reached=True)

    async def _stream_round(
        self,
        parser: ChunkParser,
        emitter: StreamingMessageEmitter,
        gate: _CallbackGate,
        current: ConversationTurn,
        turns: Sequence[ConversationTurn],
    ) -> _RoundResult:
        chunks: list[str] = []
        parse_error: str | None = None
        stream = self._client.stream_complete(current, turns)
        try:
            async for chunk in stream:
                if not chunk:
                    continue
                if not chunks:
                    self._set_phase(LoopPhase.STREAMING)
                chunks.append(chunk)
                parse_error = await self._dispatch(parser.parse_chunk(chunk), emitter, gate) or parse_error
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
        parse_error = await self._dispatch(parser.finish(), emitter, gate) or parse_error
        for message in emitter.close():
            await gate.message(message)
        response_text = "".join(chunks)
        LOGGER.debug("Round %d response: %d chars in %d chunks", self._round, len(response_text), len(chunks))
        return _RoundResult(response_text=response_text, state=parser.get_current_state(), parse_error=parse_error)

    async def _dispatch(
        self,
        events: Sequence[ParseEvent],
        emitter: StreamingMessageEmitter,
        gate: _CallbackGate,
    ) -> str | None:
        parse_error: str | None = None
        for event in events:
            if event.kind is ParseEventKind.ERROR:
                parse_error = event.content or "malformed structured output"
                LOGGER.warning("Structural parse error in round %d: %s", self._round, parse_error)
            elif event.kind is ParseEventKind.ACTION_COMPLETE:
                LOGGER.info("Action recognized: %s", (event.data or {}).get("action"))
            for message in emitter.handle(event):
                await gate.message(message)
        return parse_error

    async def _execute_tool(
        self,
        invocation: ToolInvocation,
        history: ConversationHistory,
        emitter: StreamingMessageEmitter,
        gate: _CallbackGate,
        stats: _RunStats,
    ) -> None:
        self._set_phase(LoopPhase.EXECUTING_TOOL)
        name, arguments = invocation.name, dict(invocation.arguments)
        message_id = emitter.new_id()
        await gate.message(emitter.tool_started(name, describe_tool_start(name, arguments), message_id=message_id))

        LOGGER.info("Invoking tool %s", name)
        outcome = normalize_outcome(await self._tools.invoke(name, arguments))
        stats.tools_used.append(name)
        if not outcome.success:
            LOGGER.warning("Tool %s failed: %s", name, outcome.error)
        observation = history.append_observation(outcome)
        self._tracer.trace(
            "loop.tool",
            {
                "round": self._round,
                "invocation": invocation,
                "success": outcome.success,
                "error": outcome.error,
                "observation": observation,
            },
        )
        await gate.message(
            emitter.tool_finished(
                name,
                describe_tool_end(name, arguments, outcome),
                message_id=message_id,
                success=outcome.success,
                data=outcome.data,
            )
        )

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    async def _complete(self, result: str, gate: _CallbackGate, stats: _RunStats, **extra: Any) -> AgentResponse:
        self._check_stopped()
        self._set_phase(LoopPhase.DONE)
        metadata = stats.metadata(**extra)
        LOGGER.info("Agent request completed after %d round(s)", stats.rounds)
        self._tracer.trace("loop.complete", {"result": result, "metadata": metadata})
        await gate.complete(result)
        return AgentResponse(success=True, result=result, metadata=metadata)

    async def _fail(
        self,
        exc: Exception,
        emitter: StreamingMessageEmitter,
        gate: _CallbackGate,
        stats: _RunStats,
        *,
        error_code: str,
    ) -> AgentResponse:
        self._set_phase(LoopPhase.FAILED)
        message = str(exc) or type(exc).__name__
        for pending in emitter.close():
            await gate.message(pending)
        await gate.message(emitter.error(message, error=error_code))
        metadata = stats.metadata(error_code=error_code)
        self._tracer.trace("loop.error", {"error": message, "error_code": error_code, "metadata": metadata})
        await gate.error(message)
        return AgentResponse(success=False, result="", error=message, metadata=metadata)

    def _stopped_response(self, stats: _RunStats) -> AgentResponse:
        self._set_phase(LoopPhase.STOPPED)
        metadata = stats.metadata(stopped=True)
        self._tracer.trace("loop.stopped", {"metadata": metadata})
        return AgentResponse(success=False, result="", error="stopped", metadata=metadata)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_stopped(self) -> None:
        if self._stopped:
            raise _StoppedError()

    def _set_phase(self, phase: LoopPhase) -> None:
        if self._phase is phase:
            return
        # Stop is final for the current request.
        if self._stopped and phase is not LoopPhase.STOPPED:
            return
        LOGGER.debug("Agent phase %s -> %s", self._phase.value, phase.value)
        self._phase = phase
        self._tracer.trace("loop.phase", {"phase": phase.value, "round": self._round})

    def _system_turn(self, context: Mapping[str, Any]) -> ConversationTurn:
        return ConversationTurn.system(
            build_system_prompt(
                self._current_catalogue(),
                format_name=self._config.response_format,
                context=context,
            )
        )

    def _current_catalogue(self) -> Sequence[ToolSpec]:
        if self._catalogue is not None:
            return self._catalogue
        registry = getattr(self._tools, "registry", None)
        if isinstance(registry, ToolRegistry):
            return registry.catalogue()
        return ()

    def _history_window(self, history: ConversationHistory) -> list[ConversationTurn]:
        return history.window(
            max_turns=self._config.history_window_turns,
            token_budget=self._config.history_token_budget,
            counter=self._token_counter,
        )

    @staticmethod
    def _default_token_counter(client: Any) -> Callable[[str], int]:
        count_tokens = getattr(client, "count_tokens", None)
        if callable(count_tokens):
            return count_tokens
        return ByteEstimateCounter().count


def create_agent_loop(
    client: ModelClient,
    registry: ToolRegistry | None = None,
    *,
    response_format: str = DEFAULT_FORMAT,
    max_rounds: int = 10,
    tracer: TraceHook | None = None,
) -> ReactAgentLoop:
    """Create a :class:`ReactAgentLoop` over a tool registry.

    Example:
        >>> loop = create_agent_loop(ai_client, registry, response_format="xml")
    """
    return ReactAgentLoop(
        client,
        RegistryToolInvoker(registry or ToolRegistry()),
        config=LoopConfig(response_format=response_format, max_rounds=max_rounds),
        tracer=tracer,
    )
