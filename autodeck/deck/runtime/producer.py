"""
Batch producer stage: write card content for a finalized plan.

Batches run one after another. Any failed batch fails the whole run, so
nothing is materialized from a partial deck.
"""

from __future__ import annotations

import logging

from ..lod import LodLevel
from ..models import Briefing, PlanCard, ProducedCard, SourceDocument
from .budget import MAX_OUTPUT_TOKENS, producer_max_tokens
from .cancellation import CancellationToken
from .contracts import ProducerOutcome, parse_producer_response
from .generation import TextGenerator, generate_recorded
from .prompts import build_producer_request
from .telemetry import UsageRecorder

logger = logging.getLogger(__name__)

SINGLE_BATCH_LIMIT = 15
BATCH_SIZE = 12


def batch_plan(cards: list[PlanCard], batch_size: int = BATCH_SIZE) -> list[list[PlanCard]]:
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")
    return [cards[i : i + batch_size] for i in range(0, len(cards), batch_size)]


def partition_batches(
    cards: list[PlanCard],
    single_batch_limit: int = SINGLE_BATCH_LIMIT,
    batch_size: int = BATCH_SIZE,
) -> list[list[PlanCard]]:
    """One batch up to ``single_batch_limit`` cards, else chunks of ``batch_size``."""
    if not cards:
        return []
    if len(cards) <= single_batch_limit:
        return [list(cards)]
    return batch_plan(cards, batch_size)


def build_batch_context(batch: list[PlanCard], all_cards: list[PlanCard]) -> str:
    batch_numbers = {card.number for card in batch}
    others = [card for card in all_cards if card.number not in batch_numbers]
    lines = [
        f"IMPORTANT: You are writing cards {batch[0].number}–{batch[-1].number} "
        f"of a {len(all_cards)}-card deck.",
        "Other cards in the deck (do NOT repeat their content):",
    ]
    lines.extend(f"  Card {card.number}: {card.title} — {card.description}" for card in others)
    return "\n".join(lines)


class ProducerStage:
    def __init__(
        self,
        generator: TextGenerator,
        recorder: UsageRecorder | None = None,
        single_batch_limit: int = SINGLE_BATCH_LIMIT,
        batch_size: int = BATCH_SIZE,
        max_output_tokens: int = MAX_OUTPUT_TOKENS,
    ):
        self.generator = generator
        self.recorder = recorder
        self.single_batch_limit = single_batch_limit
        self.batch_size = batch_size
        self.max_output_tokens = max_output_tokens

    async def produce(
        self,
        *,
        session_id: str,
        briefing: Briefing,
        lod: LodLevel,
        cards: list[PlanCard],
        documents: list[SourceDocument],
        cancel: CancellationToken,
        subject: str | None = None,
    ) -> ProducerOutcome:
        batches = partition_batches(cards, self.single_batch_limit, self.batch_size)
        produced: list[ProducedCard] = []
        for index, batch in enumerate(batches, start=1):
            context = build_batch_context(batch, cards) if len(batches) > 1 else None
            request = build_producer_request(
                briefing=briefing,
                lod=lod,
                cards=batch,
                documents=documents,
                max_tokens=producer_max_tokens(len(batch), lod, self.max_output_tokens),
                subject=subject,
                batch_context=context,
            )
            logger.info(
                "Producer batch %d/%d session=%s cards=%d",
                index,
                len(batches),
                session_id,
                len(batch),
            )
            result = await generate_recorded(
                self.generator,
                request,
                cancel,
                recorder=self.recorder,
                stage="producer",
                session_id=session_id,
            )
            outcome = parse_producer_response(result.text)
            if outcome.status != "ok":
                return outcome
            produced.extend(outcome.cards)
        return ProducerOutcome(status="ok", cards=produced)
