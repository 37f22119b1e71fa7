from __future__ import annotations

from dataclasses import replace

import pytest

from autodeck.deck.core import (
    MAX_COMMENT_LENGTH,
    InvalidTransitionError,
    abort_status,
    can_revise,
    filter_plan,
    included_cards,
    resolved_answers,
    set_all_recommended,
    set_general_comment,
    set_question_answer,
    toggle_card_included,
    transition,
)
from autodeck.deck.models import Briefing, BriefingError, ReviewState, Session, SessionStatus
from autodeck.deck.runtime.contracts import parse_planner_response
from deck_fakes import plan_response


def _plan(count=4, questions=True):
    return parse_planner_response(plan_response(count, questions)).plan


def _session(status=SessionStatus.CONFIGURING, **changes):
    session = Session(
        collection_id="c1",
        briefing=Briefing(audience="Board", type="Pitch", objective="Approve budget"),
        lod="standard",
        ordered_doc_ids=("d1",),
    )
    return replace(session, status=status, **changes)


def test_briefing_validation():
    Briefing(audience="Board", type="Pitch", objective="Approve budget").validate()

    with pytest.raises(BriefingError) as excinfo:
        Briefing(audience="", type="Pitch", objective="Approve budget").validate()
    assert excinfo.value.field == "audience"

    with pytest.raises(BriefingError, match="exceeds 80"):
        Briefing(audience="Board", type="x" * 81, objective="Go").validate()
    with pytest.raises(BriefingError, match="between 5 and 50"):
        Briefing(audience="Board", type="Pitch", objective="Go", max_cards=60).validate()
    with pytest.raises(BriefingError, match="must not exceed"):
        Briefing(audience="Board", type="Pitch", objective="Go", min_cards=12, max_cards=8).validate()


def test_transition_table():
    planning = transition(_session(), SessionStatus.PLANNING)
    assert planning.status == SessionStatus.PLANNING

    with pytest.raises(InvalidTransitionError):
        transition(_session(), SessionStatus.PRODUCING)
    with pytest.raises(InvalidTransitionError):
        transition(_session(SessionStatus.CONFLICT), SessionStatus.REVIEWING)
    with pytest.raises(InvalidTransitionError):
        transition(_session(SessionStatus.COMPLETE), SessionStatus.PLANNING)

    reviewing = _session(SessionStatus.REVIEWING, plan=_plan())
    assert transition(reviewing, SessionStatus.REVIEWING).status == SessionStatus.REVIEWING
    assert transition(_session(SessionStatus.ERROR), SessionStatus.REVIEWING).status == SessionStatus.REVIEWING


def test_abort_status_targets():
    plan = _plan()
    assert abort_status(_session(SessionStatus.PLANNING)) == SessionStatus.CONFIGURING
    assert abort_status(_session(SessionStatus.PRODUCING, plan=plan)) == SessionStatus.REVIEWING
    assert abort_status(_session(SessionStatus.REVISING, plan=plan)) == SessionStatus.REVIEWING
    assert abort_status(_session(SessionStatus.REVIEWING, plan=plan)) is None
    assert abort_status(_session(SessionStatus.COMPLETE)) is None


def test_can_revise_respects_bound():
    plan = _plan()
    review = ReviewState.initial(plan)
    assert can_revise(_session(SessionStatus.REVIEWING, plan=plan, review_state=review), 5)
    assert not can_revise(_session(SessionStatus.REVIEWING, plan=plan, review_state=review, revision_count=5), 5)
    assert not can_revise(_session(SessionStatus.CONFLICT), 5)


def test_toggle_card_and_filter_plan():
    plan = _plan()
    review = toggle_card_included(ReviewState.initial(plan), 2)

    assert review.excluded_numbers() == [2]
    assert toggle_card_included(review, 99) == review
    filtered = filter_plan(plan, review)
    assert [card.number for card in filtered.cards] == [1, 3, 4]
    assert filtered.questions is None
    assert [card.number for card in included_cards(plan, toggle_card_included(review, 2))] == [1, 2, 3, 4]


def test_question_answers_ignore_unknown_ids():
    plan = _plan()
    review = ReviewState.initial(plan)

    assert set_question_answer(review, plan, "q9", "a") == review
    assert set_question_answer(review, plan, "q1", "z") == review
    answered = set_question_answer(review, plan, "q1", "a")
    assert answered.question_answers == {"q1": "a"}
    assert [(q.id, o.key) for q, o in resolved_answers(plan, answered)] == [("q1", "a")]
    assert set_all_recommended(answered, plan).question_answers == {"q1": "b"}


def test_general_comment_truncated():
    review = set_general_comment(ReviewState.initial(_plan()), "x" * (MAX_COMMENT_LENGTH + 50))
    assert len(review.general_comment) == MAX_COMMENT_LENGTH


def test_session_to_dict_shape():
    plan = _plan(2, questions=False)
    data = _session(SessionStatus.REVIEWING, plan=plan, review_state=ReviewState.initial(plan)).to_dict()

    assert data["status"] == "reviewing"
    assert data["plan"]["cards"][0]["keyDataPoints"] == ["fact 1"]
    assert data["review_state"]["card_states"] == {"1": {"included": True}, "2": {"included": True}}
    assert data["briefing"]["audience"] == "Board"
    assert data["conflicts"] is None
