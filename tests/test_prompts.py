from __future__ import annotations

from dataclasses import replace

from autodeck.deck.core import filter_plan, set_question_answer, toggle_card_included
from autodeck.deck.lod import get_lod
from autodeck.deck.models import Briefing, ReviewState, SourceDocument
from autodeck.deck.runtime.contracts import parse_planner_response
from autodeck.deck.runtime.generation import FileRef, SystemBlock, build_message_payload, build_system_payload
from autodeck.deck.runtime.prompts import (
    briefing_context,
    build_finalizer_request,
    build_planner_request,
    build_producer_request,
    build_revision_request,
    expert_priming,
    lod_lines,
)
from deck_fakes import plan_response

BRIEFING = Briefing(
    audience="New hires",
    type="Training",
    objective="Explain onboarding",
    min_cards=5,
    max_cards=10,
    include_cover=True,
    include_closing=True,
)
DOCS = [
    SourceDocument(id="d1", name="handbook.md", content="Welcome to the team. " * 10),
    SourceDocument(id="d2", name="policy.pdf", file_id="file_123"),
]


def _plan(count=3, questions=True):
    return parse_planner_response(plan_response(count, questions)).plan


def test_briefing_context_lines():
    text = briefing_context(BRIEFING)

    assert "Audience: New hires" in text
    assert "Card count: between 5 and 10 cards" in text
    assert "Deck structure:\n- Include a cover card" in text
    assert "closing card" in text
    assert "section title" not in text
    assert "Card count" not in briefing_context(BRIEFING, include_structure=False)


def test_lod_lines_standard():
    assert lod_lines(get_lod("standard")) == (
        "Level of Detail: Standard\nWord count range per card: 200–250 words"
    )
    assert "STRICT" in lod_lines(get_lod("standard"), strict=True)


def test_expert_priming_only_with_subject():
    assert expert_priming(None) == ""
    assert expert_priming("  ") == ""
    assert "Cardiology" in expert_priming("Cardiology")


def test_planner_request_documents_and_file_refs():
    request = build_planner_request(briefing=BRIEFING, lod=get_lod("standard"), documents=DOCS, subject="HR")

    assert request.max_tokens == 16384
    assert request.temperature == 0.1
    assert request.system_blocks[0].text.startswith("You are a domain expert on the following subject: HR.")
    doc_block = request.system_blocks[1]
    assert doc_block.cache is True
    assert '<document id="d1" name="handbook.md" wordCount="40">' in doc_block.text
    assert "policy.pdf" not in doc_block.text
    assert [ref.file_id for ref in request.file_refs] == ["file_123"]
    user = request.messages[0]["content"]
    assert "1. handbook.md (d1, 40 words)" in user
    assert "2. policy.pdf (d2, 0 words)" in user


def test_revision_request_lists_exclusions_and_answers():
    plan = _plan()
    review = ReviewState.initial(plan)
    review = toggle_card_included(review, 2)
    review = set_question_answer(review, plan, "q1", "a")
    review = replace(review, general_comment="Shorter please")

    request = build_revision_request(
        briefing=BRIEFING,
        lod=get_lod("standard"),
        documents=DOCS,
        plan=plan,
        review_state=review,
    )

    user = request.messages[0]["content"]
    assert "Excluded cards (do NOT reintroduce): 2" in user
    assert "  q1: a" in user
    assert "General comment: Shorter please" in user
    assert '"revisionNotes"' in request.system_blocks[0].text


def test_revision_request_without_exclusions():
    plan = _plan()
    request = build_revision_request(
        briefing=BRIEFING,
        lod=get_lod("standard"),
        documents=DOCS,
        plan=plan,
        review_state=ReviewState.initial(plan),
    )

    user = request.messages[0]["content"]
    assert "Excluded cards" not in user
    assert "Question answers: (none)" in user


def test_finalizer_request_has_no_documents():
    plan = _plan()
    review = set_question_answer(ReviewState.initial(plan), plan, "q1", "b")
    review = toggle_card_included(review, 3)

    request = build_finalizer_request(
        briefing=BRIEFING,
        lod=get_lod("standard"),
        plan=plan,
        review_state=review,
        filtered_plan=filter_plan(plan, review),
    )

    assert len(request.system_blocks) == 1
    assert request.file_refs == []
    user = request.messages[0]["content"]
    assert '  q1: b → "Walk through each example."' in user
    assert '"Card title 3"' not in user
    assert '"Card title 2"' in user


def test_producer_request_batch_context_and_strict_band():
    plan = _plan(2, questions=False)
    request = build_producer_request(
        briefing=BRIEFING,
        lod=get_lod("executive"),
        cards=plan.cards,
        documents=DOCS,
        max_tokens=1234,
        batch_context="IMPORTANT: You are writing cards 1–2 of a 20-card deck.",
    )

    user = request.messages[0]["content"]
    assert request.max_tokens == 1234
    assert request.temperature is None
    assert "Word count range per card: 70–100 words (STRICT" in user
    assert "IMPORTANT: You are writing cards 1–2 of a 20-card deck." in user
    assert "Card 1: Card title 1" in user
    assert "## Section 1 (from document: doc-1)" in user
    assert "Card count" not in user
    assert 'wordCount="' not in request.system_blocks[1].text


def test_system_payload_caches_only_long_blocks():
    payload = build_system_payload([SystemBlock("short", cache=True), SystemBlock("x" * 5000, cache=True), SystemBlock("")])

    assert len(payload) == 2
    assert "cache_control" not in payload[0]
    assert payload[1]["cache_control"] == {"type": "ephemeral"}


def test_message_payload_puts_files_in_first_user_turn():
    payload = build_message_payload(
        [{"role": "user", "content": "first"}, {"role": "assistant", "content": "ok"}, {"role": "user", "content": "last"}],
        [FileRef(file_id="file_1")],
    )

    assert payload[0]["content"][0] == {"type": "file", "file": {"file_id": "file_1"}}
    assert "cache_control" not in payload[0]["content"][1]
    assert payload[2]["content"][-1]["cache_control"] == {"type": "ephemeral"}
