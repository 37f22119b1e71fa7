from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from autodeck.deck.runtime.cancellation import CancellationToken, OperationCancelled
from autodeck.deck.runtime.generation import GenerationRequest, generate_recorded
from autodeck.deck.runtime.telemetry import UsageCounters, UsageLedger, UsageRecord, extract_usage
from autodeck.pricing import estimate_cost_usd
from deck_fakes import ScriptedGenerator


def test_estimate_cost_known_and_prefixed_models():
    cost = estimate_cost_usd("claude-sonnet-4-6", 1_000_000, 100_000, cache_read_tokens=1_000_000)

    assert cost.input_cost_usd == pytest.approx(3.0)
    assert cost.output_cost_usd == pytest.approx(1.5)
    assert cost.cache_cost_usd == pytest.approx(0.3)
    assert cost.display == "$4.8000"
    assert estimate_cost_usd("anthropic/claude-sonnet-4-6", 1_000_000, 0).total_cost_usd == pytest.approx(3.0)
    assert estimate_cost_usd("mystery-model", 1_000_000, 1_000_000).total_cost_usd == 0.0


def test_extract_usage_reads_cache_counters():
    response = SimpleNamespace(
        usage=SimpleNamespace(
            prompt_tokens=1200,
            completion_tokens=300,
            cache_read_input_tokens=800,
            cache_creation_input_tokens=150,
        )
    )

    usage = extract_usage(response)

    assert usage == UsageCounters(input_tokens=1200, output_tokens=300, cache_read_tokens=800, cache_write_tokens=150)
    assert extract_usage(SimpleNamespace()) == UsageCounters()


def test_extract_usage_openai_cached_tokens():
    response = SimpleNamespace(
        usage=SimpleNamespace(
            prompt_tokens=100,
            completion_tokens=10,
            prompt_tokens_details=SimpleNamespace(cached_tokens=40),
        )
    )

    assert extract_usage(response).cache_read_tokens == 40


def test_ledger_totals_per_session():
    ledger = UsageLedger()
    ledger.record(UsageRecord("anthropic", "claude-sonnet-4-6", UsageCounters(1000, 100), "planner", "a"))
    ledger.record(UsageRecord("anthropic", "claude-sonnet-4-6", UsageCounters(2000, 200), "producer", "b"))

    assert ledger.totals("a").input_tokens == 1000
    assert ledger.totals().output_tokens == 300
    assert ledger.total_cost_usd("b") == pytest.approx(0.006 + 0.003)


def test_generate_recorded_records_before_raising_cancellation():
    generator = ScriptedGenerator(["{}"])
    ledger = UsageLedger()
    cancel = CancellationToken()
    cancel.cancel()
    request = GenerationRequest(system_blocks=[], messages=[{"role": "user", "content": "hi"}], max_tokens=10)

    with pytest.raises(OperationCancelled):
        asyncio.run(generate_recorded(generator, request, cancel, recorder=ledger, stage="planner", session_id="s"))

    assert generator.calls == 1
    assert ledger.records[0].stage == "planner"


def test_cancellation_race_outcomes():
    async def scenario():
        token = CancellationToken()
        assert await token.race(asyncio.sleep(0, result="done")) == "done"

        never = asyncio.Event()
        pending = asyncio.ensure_future(token.race(never.wait()))
        await asyncio.sleep(0)
        token.cancel()
        with pytest.raises(OperationCancelled):
            await pending

        with pytest.raises(asyncio.TimeoutError):
            await CancellationToken().race(never.wait(), timeout=0.01)

    asyncio.run(scenario())
