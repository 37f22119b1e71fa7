"""
Pure deck session logic: state machine transitions and review-gate edits.

Nothing here touches the network or the store. Every function takes a snapshot
and returns a new one.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from .models import (
    CardReviewState,
    Plan,
    PlanCard,
    PlanQuestion,
    QuestionOption,
    ReviewState,
    Session,
    SessionStatus,
)

MAX_COMMENT_LENGTH = 2000

IN_FLIGHT_STATUSES = frozenset(
    {
        SessionStatus.PLANNING,
        SessionStatus.REVISING,
        SessionStatus.FINALIZING,
        SessionStatus.PRODUCING,
    }
)


class InvalidTransitionError(ValueError):
    """Raised when a status change is not in the transition table."""


class RevisionLimitReached(RuntimeError):
    """Raised when a revision is requested at the revision bound."""


class EmptySelection(RuntimeError):
    """Raised when a plan is approved with every card excluded."""


ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    SessionStatus.CONFIGURING: {SessionStatus.PLANNING},
    SessionStatus.PLANNING: {
        SessionStatus.CONFLICT,
        SessionStatus.REVIEWING,
        SessionStatus.ERROR,
        SessionStatus.CONFIGURING,
    },
    SessionStatus.CONFLICT: set(),
    SessionStatus.REVIEWING: {
        SessionStatus.REVISING,
        SessionStatus.FINALIZING,
        SessionStatus.PRODUCING,
    },
    SessionStatus.REVISING: {
        SessionStatus.CONFLICT,
        SessionStatus.REVIEWING,
        SessionStatus.ERROR,
        SessionStatus.CONFIGURING,
    },
    SessionStatus.FINALIZING: {
        SessionStatus.PRODUCING,
        SessionStatus.ERROR,
        SessionStatus.REVIEWING,
        SessionStatus.CONFIGURING,
    },
    SessionStatus.PRODUCING: {
        SessionStatus.COMPLETE,
        SessionStatus.ERROR,
        SessionStatus.REVIEWING,
        SessionStatus.CONFIGURING,
    },
    SessionStatus.COMPLETE: set(),
    SessionStatus.ERROR: {SessionStatus.REVIEWING},
}


def transition(session: Session, new_status: str, **changes: Any) -> Session:
    """Return a new snapshot in ``new_status`` with ``changes`` applied."""
    allowed = ALLOWED_TRANSITIONS.get(session.status, set())
    if new_status not in allowed and new_status != session.status:
        raise InvalidTransitionError(f"Invalid transition {session.status} -> {new_status}")
    return replace(session, status=new_status, **changes)


def abort_status(session: Session) -> str | None:
    """Status an abort falls back to, or None when abort leaves it alone."""
    if session.status not in IN_FLIGHT_STATUSES:
        return None
    if session.status == SessionStatus.PLANNING or session.plan is None:
        return SessionStatus.CONFIGURING
    return SessionStatus.REVIEWING


def can_revise(session: Session, max_revisions: int) -> bool:
    return (
        session.status == SessionStatus.REVIEWING
        and session.plan is not None
        and session.review_state is not None
        and session.revision_count < max_revisions
    )


# =============================================================================
# Review gate
# =============================================================================


def toggle_card_included(review_state: ReviewState, number: int) -> ReviewState:
    current = review_state.card_states.get(number)
    if current is None:
        return review_state
    card_states = dict(review_state.card_states)
    card_states[number] = CardReviewState(included=not current.included)
    return replace(review_state, card_states=card_states)


def set_question_answer(
    review_state: ReviewState,
    plan: Plan,
    question_id: str,
    option_key: str,
) -> ReviewState:
    question = find_question(plan, question_id)
    if question is None or question.option(option_key) is None:
        return review_state
    answers = dict(review_state.question_answers)
    answers[question_id] = option_key
    return replace(review_state, question_answers=answers)


def set_all_recommended(review_state: ReviewState, plan: Plan) -> ReviewState:
    answers = dict(review_state.question_answers)
    for question in plan.questions or []:
        if question.option(question.recommended_key) is not None:
            answers[question.id] = question.recommended_key
    return replace(review_state, question_answers=answers)


def set_general_comment(review_state: ReviewState, text: str) -> ReviewState:
    return replace(review_state, general_comment=text[:MAX_COMMENT_LENGTH])


def find_question(plan: Plan, question_id: str) -> PlanQuestion | None:
    for question in plan.questions or []:
        if question.id == question_id:
            return question
    return None


def included_cards(plan: Plan, review_state: ReviewState) -> list[PlanCard]:
    """Plan cards still checked in the review, in plan order."""
    return [
        card
        for card in plan.cards
        if review_state.card_states.get(card.number, CardReviewState()).included
    ]


def filter_plan(plan: Plan, review_state: ReviewState) -> Plan:
    """The plan restricted to included cards, with questions dropped."""
    return Plan(
        metadata=plan.metadata,
        cards=included_cards(plan, review_state),
        questions=None,
        revision_notes=plan.revision_notes,
    )


def resolved_answers(plan: Plan, review_state: ReviewState) -> list[tuple[PlanQuestion, QuestionOption]]:
    """Answered questions paired with the chosen option, in question order."""
    resolved: list[tuple[PlanQuestion, QuestionOption]] = []
    for question in plan.questions or []:
        key = review_state.question_answers.get(question.id)
        if not key:
            continue
        option = question.option(key)
        if option is not None:
            resolved.append((question, option))
    return resolved
