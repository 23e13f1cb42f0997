"""Command line front end: ask the agent one question and stream the reply."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import uuid
from dataclasses import asdict
from pathlib import Path
from typing import Sequence, TextIO

from .ai.client import AIClient
from .ai.orchestration.agent_loop import AgentCallbacks, ReactAgentLoop
from .ai.orchestration.event_log import AgentEventLogger
from .ai.orchestration.stream_parser import SUPPORTED_FORMATS
from .ai.orchestration.tools import RegistryToolInvoker, ToolRegistry
from .ai.orchestration.types import AgentRequest, MessageType, StandardMessage
from .services.settings import Settings, SettingsStore, redact_secret
from .utils.logging import resolve_level, setup_logging

LOGGER = logging.getLogger(__name__)


class ConsolePrinter:
    """Renders streamed messages as plain text."""

    def __init__(self, out: TextIO, err: TextIO) -> None:
        self._out = out
        self._err = err
        self._streamed: set[str] = set()

    def on_message(self, message: StandardMessage) -> None:
        if message.type is MessageType.ERROR:
            print(f"[error] {message.content}", file=self._err)
            return
        if message.type is MessageType.TOOL:
            print(f"[tool] {message.content}", file=self._out)
            return
        if message.status == "start":
            if message.type is MessageType.THINK:
                self._out.write("[thinking] ")
            return
        if message.status == "delta":
            self._streamed.add(message.id)
            self._out.write(message.content)
            self._out.flush()
            return
        if message.id not in self._streamed:
            self._out.write(message.content)
        self._streamed.discard(message.id)
        self._out.write("\n")
        self._out.flush()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="thimble", description="Ask the ReAct coding agent a question.")
    parser.add_argument("question", nargs="?", help="Request to send. Reads stdin when omitted.")
    parser.add_argument("--format", dest="response_format", choices=SUPPORTED_FORMATS, help="Response wire format.")
    parser.add_argument("--max-rounds", type=int, help="Maximum model rounds per request.")
    parser.add_argument("--model", help="Model identifier.")
    parser.add_argument("--base-url", help="OpenAI-compatible API base URL.")
    parser.add_argument("--settings", type=Path, help="Settings file to use instead of ~/.thimble/settings.json.")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging and JSONL event logs.")
    parser.add_argument("--dump-settings", action="store_true", help="Print the effective settings and exit.")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    store = SettingsStore(args.settings)
    overrides = {
        "response_format": args.response_format,
        "max_rounds": args.max_rounds,
        "model": args.model,
        "base_url": args.base_url,
    }
    if args.debug:
        overrides.update(debug_logging=True, debug_event_logging=True)
    settings = store.load(overrides=overrides)

    if args.dump_settings:
        payload = asdict(settings)
        payload["api_key"] = redact_secret(settings.api_key)
        print(json.dumps(payload, indent=2, sort_keys=True))
        return 0

    question = args.question or sys.stdin.read().strip()
    if not question:
        print("No question provided.", file=sys.stderr)
        return 1

    setup_logging(resolve_level(settings.debug_logging), console=settings.debug_logging)
    try:
        return asyncio.run(run_question(settings, question))
    except KeyboardInterrupt:
        return 130


async def run_question(
    settings: Settings,
    question: str,
    *,
    registry: ToolRegistry | None = None,
    client: AIClient | None = None,
    out: TextIO | None = None,
    err: TextIO | None = None,
) -> int:
    """Run one request end to end and return the process exit code."""
    client = client or AIClient(settings.client_settings())
    printer = ConsolePrinter(out or sys.stdout, err or sys.stderr)
    run_id = uuid.uuid4().hex
    event_logger = AgentEventLogger(enabled=settings.debug_event_logging)
    with event_logger.start_run(run_id=run_id, prompt=question, response_format=settings.response_format) as log_run:
        loop = ReactAgentLoop(
            client,
            RegistryToolInvoker(registry or ToolRegistry(), config=settings.executor_config()),
            config=settings.loop_config(),
            tracer=log_run,
        )
        try:
            response = await loop.run(
                AgentRequest(message=question, session_id=run_id[:8]),
                AgentCallbacks(on_message=printer.on_message),
            )
        finally:
            await loop.dispose()
        if response.success:
            log_run.log_completion(result=response.result, rounds=response.metadata.get("rounds", 0), metadata=response.metadata)
        else:
            log_run.log_failure(message=response.error or "agent request failed", details=response.metadata)
    LOGGER.debug("Request %s finished: success=%s", run_id, response.success)
    return 0 if response.success else 1
