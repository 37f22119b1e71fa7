"""
Usage telemetry for deck generation calls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from ...pricing import CostEstimate, estimate_cost_usd

logger = logging.getLogger(__name__)


@dataclass
class UsageCounters:
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class UsageRecord:
    provider: str
    model: str
    usage: UsageCounters
    stage: str = ""
    session_id: str | None = None

    @property
    def cost(self) -> CostEstimate:
        return estimate_cost_usd(
            self.model,
            self.usage.input_tokens,
            self.usage.output_tokens,
            cache_read_tokens=self.usage.cache_read_tokens,
            cache_write_tokens=self.usage.cache_write_tokens,
        )


class UsageRecorder(Protocol):
    def record(self, record: UsageRecord) -> None: ...


def _int_attr(obj: Any, *names: str) -> int:
    for name in names:
        value = obj.get(name) if isinstance(obj, dict) else getattr(obj, name, None)
        if value:
            try:
                return int(value)
            except (TypeError, ValueError):
                continue
    return 0


def extract_usage(response: Any) -> UsageCounters:
    """Read token counters (including Anthropic cache counters) from a LiteLLM response."""
    usage_obj = getattr(response, "usage", None)
    if usage_obj is None:
        return UsageCounters()
    cache_read = _int_attr(usage_obj, "cache_read_input_tokens")
    if not cache_read:
        details = getattr(usage_obj, "prompt_tokens_details", None)
        if details is not None:
            cache_read = _int_attr(details, "cached_tokens")
    return UsageCounters(
        input_tokens=_int_attr(usage_obj, "prompt_tokens", "input_tokens"),
        output_tokens=_int_attr(usage_obj, "completion_tokens", "output_tokens"),
        cache_read_tokens=cache_read,
        cache_write_tokens=_int_attr(usage_obj, "cache_creation_input_tokens"),
    )


@dataclass
class UsageLedger:
    """In-memory usage recorder that keeps per-session totals."""

    records: list[UsageRecord] = field(default_factory=list)

    def record(self, record: UsageRecord) -> None:
        self.records.append(record)
        logger.info(
            "usage stage=%s model=%s input=%d output=%d cache_read=%d cache_write=%d cost=%s",
            record.stage or "-",
            record.model,
            record.usage.input_tokens,
            record.usage.output_tokens,
            record.usage.cache_read_tokens,
            record.usage.cache_write_tokens,
            record.cost.display,
        )

    def totals(self, session_id: str | None = None) -> UsageCounters:
        total = UsageCounters()
        for record in self.records:
            if session_id is not None and record.session_id != session_id:
                continue
            total.input_tokens += record.usage.input_tokens
            total.output_tokens += record.usage.output_tokens
            total.cache_read_tokens += record.usage.cache_read_tokens
            total.cache_write_tokens += record.usage.cache_write_tokens
        return total

    def total_cost_usd(self, session_id: str | None = None) -> float:
        return sum(
            record.cost.total_cost_usd
            for record in self.records
            if session_id is None or record.session_id == session_id
        )
