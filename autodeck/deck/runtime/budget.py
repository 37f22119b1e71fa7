"""
Token budget utilities for the deck pipeline.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable

from ..lod import LodLevel

CONTEXT_WINDOW = 200_000
SAFETY_MARGIN = 2_000
PREFLIGHT_TOKEN_LIMIT = 180_000
MAX_OUTPUT_TOKENS = 64_000

PREFLIGHT_MESSAGE = (
    "Documents are too large for a single API call. "
    "Consider splitting into smaller collections."
)


class BudgetExceeded(RuntimeError):
    """Raised when source documents cannot fit in a single generation call."""

    def __init__(self, estimated_tokens: int, limit: int):
        super().__init__(PREFLIGHT_MESSAGE)
        self.estimated_tokens = estimated_tokens
        self.limit = limit


def estimate_tokens(text: str) -> int:
    # Character heuristic, not a tokenizer.
    return math.ceil(len(text) / 4)


def preflight_tokens(inline_contents: Iterable[str]) -> int:
    return sum(estimate_tokens(content) for content in inline_contents if content)


def check_preflight(inline_contents: Iterable[str], limit: int = PREFLIGHT_TOKEN_LIMIT) -> int:
    """Raise BudgetExceeded if inline documents exceed ``limit`` estimated tokens."""
    estimated = preflight_tokens(inline_contents)
    if estimated > limit:
        raise BudgetExceeded(estimated, limit)
    return estimated


def producer_max_tokens(batch_size: int, lod: LodLevel, ceiling: int = MAX_OUTPUT_TOKENS) -> int:
    # 1.5 approximates words to tokens, 1.3 covers JSON structure
    per_card = math.ceil(lod.word_count_max * 1.5 * 1.3)
    return min(ceiling, batch_size * per_card + 500)


@dataclass
class MessageBudget:
    context_window: int = CONTEXT_WINDOW
    safety_margin: int = SAFETY_MARGIN

    def available_for_messages(self, system_blocks: list[str], max_output_tokens: int) -> int:
        system_tokens = sum(estimate_tokens(block) for block in system_blocks if block)
        return max(0, self.context_window - self.safety_margin - system_tokens - max_output_tokens)


def message_budget(system_blocks: list[str], max_output_tokens: int) -> int:
    """Tokens left for conversation turns after system text and output are reserved."""
    return MessageBudget().available_for_messages(system_blocks, max_output_tokens)
