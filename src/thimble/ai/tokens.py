"""Token counting used to keep conversation history inside a budget."""

from __future__ import annotations

import logging
import math
from typing import Callable, Dict, Protocol

import tiktoken

__all__ = [
    "TokenCounter",
    "ByteEstimateCounter",
    "TiktokenCounter",
    "TokenCounterRegistry",
    "default_counter_factory",
]

LOGGER = logging.getLogger(__name__)

# Rough average for English prose and code under BPE tokenizers.
BYTES_PER_TOKEN = 4
FALLBACK_ENCODING = "cl100k_base"


class TokenCounter(Protocol):
    """Anything that can size a string in model tokens."""

    model_name: str | None

    def count(self, text: str) -> int:
        """Exact token count, may raise if the tokenizer is unusable."""
        ...

    def estimate(self, text: str) -> int:
        """Cheap deterministic approximation that never raises."""
        ...


class ByteEstimateCounter:
    """Sizes text by its UTF-8 length; used when no tokenizer is available."""

    def __init__(self, *, model_name: str | None = None, bytes_per_token: int = BYTES_PER_TOKEN) -> None:
        self.model_name = model_name
        self.bytes_per_token = max(1, int(bytes_per_token))

    def count(self, text: str) -> int:
        return self.estimate(text)

    def estimate(self, text: str) -> int:
        size = len(text.encode("utf-8", errors="ignore")) if text else 0
        return math.ceil(size / self.bytes_per_token)


class TiktokenCounter:
    """Exact counts from the model's tiktoken encoding."""

    def __init__(self, model_name: str, *, encoding_name: str | None = None) -> None:
        if not model_name:
            raise ValueError("TiktokenCounter needs a model name")
        self.model_name = model_name
        self.encoding = tiktoken.get_encoding(encoding_name) if encoding_name else _encoding_for(model_name)
        self._estimator = ByteEstimateCounter(model_name=model_name)

    def count(self, text: str) -> int:
        return len(self.encoding.encode(text, disallowed_special=())) if text else 0

    def estimate(self, text: str) -> int:
        return self._estimator.estimate(text)


def _encoding_for(model_name: str) -> tiktoken.Encoding:
    try:
        return tiktoken.encoding_for_model(model_name)
    except KeyError:
        LOGGER.debug("No tiktoken mapping for %s; using %s", model_name, FALLBACK_ENCODING)
        return tiktoken.get_encoding(FALLBACK_ENCODING)


def default_counter_factory(model_name: str) -> TokenCounter:
    """Prefer tiktoken; fall back to byte estimates when it cannot load."""

    try:
        return TiktokenCounter(model_name)
    except Exception as exc:  # pragma: no cover - encoding download unavailable
        LOGGER.debug("tiktoken unavailable for %s (%s); estimating by bytes", model_name, exc)
        return ByteEstimateCounter(model_name=model_name)


class TokenCounterRegistry:
    """Per-model counters, created on first use by *factory*.

    Model names are matched case-insensitively. An empty model name maps to a
    shared byte estimator.
    """

    _shared: TokenCounterRegistry | None = None

    def __init__(self, factory: Callable[[str], TokenCounter] = default_counter_factory) -> None:
        self._factory = factory
        self._by_model: Dict[str, TokenCounter] = {}
        self._anonymous = ByteEstimateCounter()

    @classmethod
    def shared(cls) -> TokenCounterRegistry:
        if cls._shared is None:
            cls._shared = cls()
        return cls._shared

    def register(self, model_name: str, counter: TokenCounter) -> None:
        key = model_name.strip().lower()
        if not key:
            raise ValueError("Cannot register a token counter without a model name")
        self._by_model[key] = counter

    def __contains__(self, model_name: object) -> bool:
        return isinstance(model_name, str) and model_name.strip().lower() in self._by_model

    def counter_for(self, model_name: str | None) -> TokenCounter:
        name = (model_name or "").strip()
        if not name:
            return self._anonymous
        counter = self._by_model.get(name.lower())
        if counter is None:
            counter = self._by_model[name.lower()] = self._factory(name)
        return counter
