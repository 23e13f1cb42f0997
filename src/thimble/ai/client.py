"""Model transport for OpenAI-compatible chat completion endpoints.

:class:`AIClient` implements the model call contract the agent loop consumes:
given the current turn and the preceding turns, yield the response text in
order as it streams in. Transient transport failures are retried with
exponential backoff, but only until the first chunk has been delivered;
after that a retry would replay text the caller has already parsed.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Mapping, Sequence

import httpx
from openai import AsyncOpenAI, APIConnectionError, APIStatusError, APITimeoutError, RateLimitError
from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception, stop_after_attempt, wait_exponential

from .orchestration.types import ConversationTurn
from .tokens import TokenCounter, TokenCounterRegistry

__all__ = ["AIClient", "ClientSettings"]

LOGGER = logging.getLogger(__name__)

_RETRYABLE_ERRORS = (APIConnectionError, APITimeoutError, RateLimitError, httpx.TransportError)
_RETRYABLE_STATUS = frozenset({408, 409, 429, 500, 502, 503, 504})


@dataclass(slots=True)
class ClientSettings:
    """Connection and sampling options for :class:`AIClient`."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    temperature: float | None = 0.2
    max_tokens: int | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None
    metadata: Mapping[str, str] | None = None
    debug_logging: bool = False


@dataclass(slots=True)
class _StreamProgress:
    chunks: int = 0
    refusal: List[str] = field(default_factory=list)


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, APIStatusError):
        return exc.status_code in _RETRYABLE_STATUS
    return isinstance(exc, _RETRYABLE_ERRORS)


class AIClient:
    """Streams model responses and counts tokens for one configured model."""

    def __init__(
        self,
        settings: ClientSettings,
        *,
        client: AsyncOpenAI | None = None,
        token_registry: TokenCounterRegistry | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or self._open(settings)
        self._models: List[str] | None = None
        self._models_lock = asyncio.Lock()
        self._counters = token_registry or TokenCounterRegistry.shared()

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    @property
    def model(self) -> str:
        return self._settings.model

    async def stream_complete(
        self,
        current_turn: ConversationTurn,
        history: Sequence[ConversationTurn],
    ) -> AsyncIterator[str]:
        """Yield the text of the model's reply to *current_turn*.

        Args:
            current_turn: The turn being answered (request or continuation cue).
            history: Earlier turns, oldest first, including the system prompt.
        """

        request = self._build_request([*history, current_turn])
        progress = _StreamProgress()
        LOGGER.debug("Streaming %s with %d turn(s)", self._settings.model, len(request["messages"]))
        if self._settings.debug_logging:
            self._log_request(request)

        async for attempt in self._retrying(progress):
            with attempt:
                async with self._client.chat.completions.stream(**request) as stream:
                    async for event in stream:
                        text = self._text_of(event, progress)
                        if text:
                            progress.chunks += 1
                            yield text
        if progress.refusal:
            LOGGER.warning("Model refused the request: %s", "".join(progress.refusal))

    async def list_models(self, *, force_refresh: bool = False) -> List[str]:
        """Return the model identifiers the endpoint advertises (cached)."""

        async with self._models_lock:
            if self._models is None or force_refresh:
                page = await self._client.models.list()
                self._models = [item.id for item in page.data if getattr(item, "id", None)]
            return list(self._models)

    def token_counter(self, model: str | None = None) -> TokenCounter:
        return self._counters.counter_for(model or self._settings.model)

    def count_tokens(self, text: str, *, model: str | None = None, estimate_only: bool = False) -> int:
        if not text:
            return 0
        counter = self.token_counter(model)
        if estimate_only:
            return counter.estimate(text)
        try:
            return counter.count(text)
        except Exception:
            LOGGER.debug("count_tokens failed; falling back to estimate", exc_info=True)
            return counter.estimate(text)

    async def aclose(self) -> None:
        """Release the HTTP connection pool held by the OpenAI client."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    @staticmethod
    def _open(settings: ClientSettings) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            default_headers=dict(settings.default_headers) if settings.default_headers else None,
            max_retries=0,
        )

    def _retrying(self, progress: _StreamProgress) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(multiplier=self._settings.retry_min_seconds, max=self._settings.retry_max_seconds),
            retry=retry_if_exception(lambda exc: progress.chunks == 0 and _is_retryable(exc)),
            before_sleep=before_sleep_log(LOGGER, logging.WARNING),
        )

    def _build_request(self, turns: Sequence[ConversationTurn]) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            "model": self._settings.model,
            "messages": [turn.to_chat_param() for turn in turns],
        }
        if self._settings.temperature is not None:
            request["temperature"] = self._settings.temperature
        if self._settings.max_tokens is not None:
            request["max_tokens"] = self._settings.max_tokens
        if self._settings.metadata:
            request["metadata"] = dict(self._settings.metadata)
        return request

    @staticmethod
    def _text_of(event: Any, progress: _StreamProgress) -> str | None:
        kind = getattr(event, "type", None)
        if kind == "content.delta":
            return getattr(event, "delta", None) or None
        if kind == "refusal.delta":
            # Refusals are surfaced as ordinary text so the parser can reject them.
            delta = getattr(event, "delta", None) or ""
            progress.refusal.append(delta)
            return delta or None
        return None

    def _log_request(self, request: Mapping[str, Any]) -> None:
        try:
            LOGGER.debug("Model request:\n%s", json.dumps(request, ensure_ascii=False, indent=2))
        except (TypeError, ValueError):
            LOGGER.debug("Model request (unserializable): %r", request)
