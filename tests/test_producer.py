from __future__ import annotations

import asyncio

import pytest

from autodeck.deck.lod import get_lod
from autodeck.deck.models import Briefing, SourceDocument
from autodeck.deck.runtime.cancellation import CancellationToken
from autodeck.deck.runtime.contracts import parse_planner_response
from autodeck.deck.runtime.producer import ProducerStage, build_batch_context, partition_batches
from autodeck.deck.runtime.telemetry import UsageLedger
from deck_fakes import ScriptedGenerator, echo_producer, plan_response

BRIEFING = Briefing(audience="Ops", type="Runbook", objective="Cover incident handling")
DOCS = [SourceDocument(id="doc-1", name="runbook.md", content="Step one. Step two.")]


def _cards(count):
    return parse_planner_response(plan_response(count)).plan.cards


@pytest.mark.parametrize("count", [1, 14, 15, 16, 18, 24, 25, 40])
def test_partition_preserves_order_and_sizes(count):
    cards = _cards(count)
    batches = partition_batches(cards)

    assert [card for batch in batches for card in batch] == cards
    if count <= 15:
        assert len(batches) == 1
    else:
        assert all(len(batch) == 12 for batch in batches[:-1])
        assert 1 <= len(batches[-1]) <= 12


def test_partition_empty():
    assert partition_batches([]) == []


def test_eighteen_cards_split_twelve_and_six():
    cards = _cards(18)
    batches = partition_batches(cards)

    assert [len(batch) for batch in batches] == [12, 6]
    context = build_batch_context(batches[1], cards)
    assert context.startswith("IMPORTANT: You are writing cards 13–18 of a 18-card deck.")
    for number in range(1, 13):
        assert f"  Card {number}: Card title {number} — What card {number} covers" in context
    assert "Card 13:" not in context


def test_produce_runs_batches_in_order_and_records_usage():
    cards = _cards(18)
    generator = ScriptedGenerator([echo_producer, echo_producer])
    ledger = UsageLedger()
    stage = ProducerStage(generator, ledger)

    outcome = asyncio.run(
        stage.produce(
            session_id="s1",
            briefing=BRIEFING,
            lod=get_lod("standard"),
            cards=cards,
            documents=DOCS,
            cancel=CancellationToken(),
        )
    )

    assert outcome.status == "ok"
    assert [card.number for card in outcome.cards] == list(range(1, 19))
    assert generator.calls == 2
    assert [request.max_tokens for request in generator.requests] == [12 * 488 + 500, 6 * 488 + 500]
    assert "cards 1–12 of a 18-card deck" in generator.requests[0].messages[0]["content"]
    assert [record.stage for record in ledger.records] == ["producer", "producer"]
    assert ledger.totals("s1").input_tokens == 2000


def test_produce_single_batch_has_no_context():
    generator = ScriptedGenerator([echo_producer])
    stage = ProducerStage(generator)

    outcome = asyncio.run(
        stage.produce(
            session_id="s1",
            briefing=BRIEFING,
            lod=get_lod("standard"),
            cards=_cards(5),
            documents=DOCS,
            cancel=CancellationToken(),
        )
    )

    assert outcome.status == "ok"
    assert "IMPORTANT: You are writing cards" not in generator.requests[0].messages[0]["content"]


def test_produce_stops_at_first_failed_batch():
    generator = ScriptedGenerator(["not json at all", echo_producer])
    stage = ProducerStage(generator)

    outcome = asyncio.run(
        stage.produce(
            session_id="s1",
            briefing=BRIEFING,
            lod=get_lod("standard"),
            cards=_cards(18),
            documents=DOCS,
            cancel=CancellationToken(),
        )
    )

    assert outcome.status == "error"
    assert outcome.cards == []
    assert generator.calls == 1
