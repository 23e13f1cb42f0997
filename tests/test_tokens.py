"""Tests for ai/tokens.py."""

from __future__ import annotations

import pytest

from thimble.ai.tokens import ByteEstimateCounter, TokenCounterRegistry


class _FakeCounter:
    def __init__(self, multiplier: int = 1, *, model_name: str = "fake-model") -> None:
        self.multiplier = multiplier
        self.model_name: str | None = model_name

    def count(self, text: str) -> int:
        return len(text) * self.multiplier

    def estimate(self, text: str) -> int:
        return len(text)


def test_byte_estimate_rounds_up() -> None:
    counter = ByteEstimateCounter()

    assert counter.count("") == 0
    assert counter.count("a") == 1
    assert counter.count("abcde") == 2
    assert ByteEstimateCounter(bytes_per_token=1).count("é") == 2
    assert ByteEstimateCounter(bytes_per_token=0).bytes_per_token == 1


def test_registry_matches_names_case_insensitively() -> None:
    registry = TokenCounterRegistry(factory=lambda name: ByteEstimateCounter(model_name=name))
    fake = _FakeCounter(multiplier=2, model_name="fake")
    registry.register("Fake", fake)

    assert "fake" in registry
    assert registry.counter_for(" FAKE ") is fake
    assert registry.counter_for("FAKE").count("abc") == 6


def test_registry_builds_missing_counters_once() -> None:
    built: list[str] = []

    def _factory(name: str) -> ByteEstimateCounter:
        built.append(name)
        return ByteEstimateCounter(model_name=name)

    registry = TokenCounterRegistry(factory=_factory)

    first = registry.counter_for("Local-Model")
    second = registry.counter_for("local-model")

    assert first is second
    assert built == ["Local-Model"]
    assert "local-model" in registry


def test_registry_without_model_uses_byte_estimate() -> None:
    registry = TokenCounterRegistry(factory=lambda name: pytest.fail("factory should not run"))

    assert registry.counter_for(None).count("abcdefgh") == 2
    assert registry.counter_for("  ").model_name is None
    assert None not in registry


def test_register_requires_name() -> None:
    with pytest.raises(ValueError):
        TokenCounterRegistry().register("  ", ByteEstimateCounter())
