"""Dungeon Master module for QuestSync.

The narrative oracle narrates and asks for world changes through tool
calls; Python applies them. This package holds:
- the oracle interfaces the engine depends on
- retry for transient oracle failures (tenacity)
- the OpenAI-compatible oracle and location illustrator
- prompts and the rolling story summary
"""

from __future__ import annotations

from .memory import EveryNMessages, StorySummarizer, SummaryPolicy
from .openai_oracle import OpenAIImageGenerator, OpenAIOracle, OpenAIOracleSession
from .oracle import ImageGenerator, NarrativeOracle, OracleReply, OracleSession
from .retry import RetryingSession, RetryPolicy, call_with_retry

__all__ = [
    "NarrativeOracle",
    "OracleSession",
    "OracleReply",
    "ImageGenerator",
    "RetryPolicy",
    "RetryingSession",
    "call_with_retry",
    "OpenAIOracle",
    "OpenAIOracleSession",
    "OpenAIImageGenerator",
    "SummaryPolicy",
    "EveryNMessages",
    "StorySummarizer",
]
