"""Model client, token accounting and the ReAct orchestration core."""

from .client import AIClient, ClientSettings
from .tokens import ByteEstimateCounter, TiktokenCounter, TokenCounterRegistry

__all__ = [
    "AIClient",
    "ClientSettings",
    "TokenCounterRegistry",
    "ByteEstimateCounter",
    "TiktokenCounter",
]
