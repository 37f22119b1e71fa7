"""
Deck pipeline records: briefing, plan, review state, conflicts and session.

Plans and conflicts round-trip through the camelCase wire shape used by the
planner, finalizer and producer contracts (``to_wire``). Session snapshots are
immutable; every update produces a new value with ``dataclasses.replace``.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

BRIEFING_LIMITS: dict[str, int] = {
    "audience": 100,
    "type": 80,
    "objective": 150,
    "tone": 80,
    "focus": 120,
}
BRIEFING_CARD_RANGE = (5, 50)

DOCUMENT_STRATEGIES = ("dissolve", "preserve", "hybrid")
CONFLICT_SEVERITIES = ("high", "medium", "low")


class BriefingError(ValueError):
    """Raised when a briefing is missing a required field or breaks a limit."""

    def __init__(self, field_name: str, message: str):
        super().__init__(message)
        self.field = field_name


@dataclass(frozen=True)
class Briefing:
    audience: str
    type: str
    objective: str
    tone: str | None = None
    focus: str | None = None
    min_cards: int | None = None
    max_cards: int | None = None
    include_cover: bool = False
    include_section_titles: bool = False
    include_closing: bool = False

    def validate(self) -> None:
        for name in ("audience", "type", "objective"):
            if not str(getattr(self, name) or "").strip():
                raise BriefingError(name, f"Briefing field '{name}' is required.")
        for name, limit in BRIEFING_LIMITS.items():
            value = getattr(self, name)
            if value is not None and len(value) > limit:
                raise BriefingError(name, f"Briefing field '{name}' exceeds {limit} characters.")
        low, high = BRIEFING_CARD_RANGE
        for name in ("min_cards", "max_cards"):
            value = getattr(self, name)
            if value is not None and not low <= value <= high:
                raise BriefingError(name, f"Briefing field '{name}' must be between {low} and {high}.")
        if self.min_cards is not None and self.max_cards is not None and self.min_cards > self.max_cards:
            raise BriefingError("min_cards", "Briefing min_cards must not exceed max_cards.")

    def to_dict(self) -> dict[str, Any]:
        return {
            "audience": self.audience,
            "type": self.type,
            "objective": self.objective,
            "tone": self.tone,
            "focus": self.focus,
            "min_cards": self.min_cards,
            "max_cards": self.max_cards,
            "include_cover": self.include_cover,
            "include_section_titles": self.include_section_titles,
            "include_closing": self.include_closing,
        }


@dataclass(frozen=True)
class SourceDocument:
    """A resolved, enabled document as the stages see it."""

    id: str
    name: str
    content: str | None = None
    file_id: str | None = None

    @property
    def word_count(self) -> int:
        return len(self.content.split()) if self.content else 0


# =============================================================================
# Plan
# =============================================================================


@dataclass
class PlanSource:
    document: str
    heading: str | None = None
    fallback_description: str | None = None

    @property
    def reference(self) -> str:
        return self.heading or self.fallback_description or "unspecified section"

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {"document": self.document}
        if self.heading:
            data["heading"] = self.heading
        elif self.fallback_description:
            data["fallbackDescription"] = self.fallback_description
        return data


@dataclass
class CardGuidance:
    emphasis: str = ""
    tone: str = ""
    exclude: str = ""

    def to_wire(self) -> dict[str, str]:
        return {"emphasis": self.emphasis, "tone": self.tone, "exclude": self.exclude}


@dataclass
class PlanCard:
    number: int
    title: str
    description: str
    sources: list[PlanSource] = field(default_factory=list)
    word_target: int | None = None
    key_data_points: list[str] = field(default_factory=list)
    guidance: CardGuidance = field(default_factory=CardGuidance)
    cross_references: str | None = None

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "number": self.number,
            "title": self.title,
            "description": self.description,
            "sources": [source.to_wire() for source in self.sources],
        }
        if self.word_target is not None:
            data["wordTarget"] = self.word_target
        data["keyDataPoints"] = list(self.key_data_points)
        data["guidance"] = self.guidance.to_wire()
        data["crossReferences"] = self.cross_references
        return data


@dataclass
class PlanMetadata:
    category: str = ""
    lod: str = ""
    source_word_count: int = 0
    card_count: int = 0
    document_strategy: str = "dissolve"
    document_relationships: str = ""

    def to_wire(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "lod": self.lod,
            "sourceWordCount": self.source_word_count,
            "cardCount": self.card_count,
            "documentStrategy": self.document_strategy,
            "documentRelationships": self.document_relationships,
        }


@dataclass
class QuestionOption:
    key: str
    label: str
    producer_instruction: str

    def to_wire(self) -> dict[str, str]:
        return {"key": self.key, "label": self.label, "producerInstruction": self.producer_instruction}


@dataclass
class PlanQuestion:
    id: str
    question: str
    options: list[QuestionOption]
    recommended_key: str
    context: str | None = None

    def option(self, key: str) -> QuestionOption | None:
        for option in self.options:
            if option.key == key:
                return option
        return None

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "question": self.question,
            "options": [option.to_wire() for option in self.options],
            "recommendedKey": self.recommended_key,
        }
        if self.context:
            data["context"] = self.context
        return data


@dataclass
class Plan:
    metadata: PlanMetadata
    cards: list[PlanCard]
    questions: list[PlanQuestion] | None = None
    revision_notes: str | None = None

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "metadata": self.metadata.to_wire(),
            "cards": [card.to_wire() for card in self.cards],
        }
        if self.questions is not None:
            data["questions"] = [question.to_wire() for question in self.questions]
        if self.revision_notes:
            data["revisionNotes"] = self.revision_notes
        return data


# =============================================================================
# Review, conflicts, produced output
# =============================================================================


@dataclass(frozen=True)
class CardReviewState:
    included: bool = True


@dataclass(frozen=True)
class ReviewState:
    card_states: dict[int, CardReviewState]
    question_answers: dict[str, str] = field(default_factory=dict)
    general_comment: str = ""
    decision: str = "pending"

    @classmethod
    def initial(cls, plan: Plan) -> "ReviewState":
        return cls(card_states={card.number: CardReviewState(included=True) for card in plan.cards})

    def included_numbers(self) -> list[int]:
        return [number for number, state in self.card_states.items() if state.included]

    def excluded_numbers(self) -> list[int]:
        return sorted(number for number, state in self.card_states.items() if not state.included)

    def to_dict(self) -> dict[str, Any]:
        return {
            "card_states": {str(k): {"included": v.included} for k, v in self.card_states.items()},
            "question_answers": dict(self.question_answers),
            "general_comment": self.general_comment,
            "decision": self.decision,
        }


@dataclass
class ConflictSource:
    document: str
    section: str = ""

    def to_wire(self) -> dict[str, str]:
        return {"document": self.document, "section": self.section}


@dataclass
class ConflictItem:
    description: str
    source_a: ConflictSource
    source_b: ConflictSource
    severity: str = "medium"

    def to_wire(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "sourceA": self.source_a.to_wire(),
            "sourceB": self.source_b.to_wire(),
            "severity": self.severity,
        }


@dataclass(frozen=True)
class ProducedCard:
    number: int
    title: str
    content: str
    word_count: int

    def to_wire(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "title": self.title,
            "content": self.content,
            "wordCount": self.word_count,
        }


# =============================================================================
# Session
# =============================================================================


class SessionStatus:
    CONFIGURING = "configuring"
    PLANNING = "planning"
    CONFLICT = "conflict"
    REVIEWING = "reviewing"
    REVISING = "revising"
    FINALIZING = "finalizing"
    PRODUCING = "producing"
    COMPLETE = "complete"
    ERROR = "error"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Session:
    collection_id: str
    briefing: Briefing
    lod: str
    ordered_doc_ids: tuple[str, ...]
    status: str = SessionStatus.CONFIGURING
    plan: Plan | None = None
    conflicts: tuple[ConflictItem, ...] | None = None
    review_state: ReviewState | None = None
    produced_cards: tuple[ProducedCard, ...] = ()
    revision_count: int = 0
    error: str | None = None
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: int = field(default_factory=_now_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "collection_id": self.collection_id,
            "briefing": self.briefing.to_dict(),
            "lod": self.lod,
            "ordered_doc_ids": list(self.ordered_doc_ids),
            "status": self.status,
            "plan": self.plan.to_wire() if self.plan is not None else None,
            "conflicts": [c.to_wire() for c in self.conflicts] if self.conflicts is not None else None,
            "review_state": self.review_state.to_dict() if self.review_state is not None else None,
            "produced_cards": [card.to_wire() for card in self.produced_cards],
            "revision_count": self.revision_count,
            "error": self.error,
            "created_at": self.created_at,
        }
