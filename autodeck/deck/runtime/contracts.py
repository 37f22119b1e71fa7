"""
Strict JSON contracts for planner, finalizer and producer responses.

Parsers never raise: every failure becomes an outcome with ``status="error"``
and a descriptive message that the session stores verbatim.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from ..models import (
    CONFLICT_SEVERITIES,
    DOCUMENT_STRATEGIES,
    CardGuidance,
    ConflictItem,
    ConflictSource,
    Plan,
    PlanCard,
    PlanMetadata,
    PlanQuestion,
    PlanSource,
    ProducedCard,
    QuestionOption,
)

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?\s*```")


class ContractValidationError(RuntimeError):
    """Raised on malformed or incomplete stage responses."""


@dataclass
class PlannerOutcome:
    status: str
    plan: Plan | None = None
    conflicts: list[ConflictItem] = field(default_factory=list)
    error: str | None = None


@dataclass
class ProducerOutcome:
    status: str
    cards: list[ProducedCard] = field(default_factory=list)
    error: str | None = None


def _strip_fence(raw: str) -> str:
    text = raw.strip()
    match = _FENCE_RE.search(text)
    if match:
        text = match.group(1).strip()
    return text


def extract_json(raw: str) -> str:
    """Strip a code fence, then keep the outermost object."""
    text = _strip_fence(raw)
    first = text.find("{")
    last = text.rfind("}")
    if first != -1 and last > first:
        text = text[first : last + 1]
    return text


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _pick(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def _as_int(value: Any, field_name: str, default: int = 0) -> int:
    if value in (None, ""):
        return default
    if isinstance(value, bool):
        raise ContractValidationError(f"{field_name} must be a number")
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError) as exc:
        raise ContractValidationError(f"{field_name} must be a number, got {value!r}") from exc


def _as_object(value: Any, field_name: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ContractValidationError(f"{field_name} entries must be objects")
    return value


def _parse_conflict(entry: Any) -> ConflictItem:
    data = _as_object(entry, "conflicts")
    source_a = data.get("sourceA") or data.get("source_a") or {}
    source_b = data.get("sourceB") or data.get("source_b") or {}
    if not isinstance(source_a, dict) or not isinstance(source_b, dict):
        raise ContractValidationError("conflict sources must be objects")
    severity = data.get("severity")
    return ConflictItem(
        description=_text(data.get("description")),
        source_a=ConflictSource(_text(source_a.get("document")), _text(source_a.get("section"))),
        source_b=ConflictSource(_text(source_b.get("document")), _text(source_b.get("section"))),
        severity=severity if severity in CONFLICT_SEVERITIES else "medium",
    )


def _parse_metadata(meta: dict[str, Any], card_total: int) -> PlanMetadata:
    strategy = _pick(meta, "documentStrategy", "document_strategy")
    return PlanMetadata(
        category=_text(meta.get("category")),
        lod=_text(meta.get("lod")),
        source_word_count=_as_int(_pick(meta, "sourceWordCount", "source_word_count"), "sourceWordCount"),
        card_count=_as_int(_pick(meta, "cardCount", "card_count"), "cardCount", default=card_total),
        document_strategy=strategy if strategy in DOCUMENT_STRATEGIES else "dissolve",
        document_relationships=_text(_pick(meta, "documentRelationships", "document_relationships")),
    )


def _parse_source(entry: Any) -> PlanSource:
    data = _as_object(entry, "sources")
    # legacy plans reference a "section" instead of a heading
    heading = _pick(data, "heading", "section")
    fallback = _pick(data, "fallbackDescription", "fallback_description")
    return PlanSource(
        document=_text(data.get("document")),
        heading=_text(heading) if heading is not None else None,
        fallback_description=_text(fallback) if heading is None and fallback is not None else None,
    )


def _parse_guidance(value: Any) -> CardGuidance:
    if isinstance(value, dict):
        return CardGuidance(
            emphasis=_text(value.get("emphasis")),
            tone=_text(value.get("tone")),
            exclude=_text(value.get("exclude")),
        )
    # legacy plain-string guidance
    return CardGuidance(emphasis=_text(value))


def _parse_card(entry: Any) -> PlanCard:
    data = _as_object(entry, "cards")
    sources = data.get("sources")
    key_points = _pick(data, "keyDataPoints", "key_data_points")
    word_target = _pick(data, "wordTarget", "word_target")
    cross_refs = _pick(data, "crossReferences", "cross_references")
    return PlanCard(
        number=_as_int(data.get("number"), "card number"),
        title=_text(data.get("title")),
        description=_text(data.get("description")),
        sources=[_parse_source(s) for s in sources] if isinstance(sources, list) else [],
        word_target=_as_int(word_target, "wordTarget") if word_target is not None else None,
        key_data_points=[_text(p) for p in key_points] if isinstance(key_points, list) else [],
        guidance=_parse_guidance(data.get("guidance")),
        cross_references=_text(cross_refs) if cross_refs is not None else None,
    )


def _parse_question(entry: Any) -> PlanQuestion:
    data = _as_object(entry, "questions")
    options = data.get("options")
    parsed_options: list[QuestionOption] = []
    if isinstance(options, list):
        for option in options:
            option_data = _as_object(option, "options")
            parsed_options.append(
                QuestionOption(
                    key=_text(option_data.get("key")),
                    label=_text(option_data.get("label")),
                    producer_instruction=_text(
                        _pick(option_data, "producerInstruction", "producer_instruction")
                    ),
                )
            )
    context = data.get("context")
    return PlanQuestion(
        id=_text(data.get("id")),
        question=_text(data.get("question")),
        options=parsed_options,
        recommended_key=_text(_pick(data, "recommendedKey", "recommended_key")),
        context=_text(context) if context else None,
    )


def _parse_planner_payload(data: Any) -> PlannerOutcome:
    if not isinstance(data, dict):
        raise ContractValidationError("response is not a JSON object")
    status = data.get("status")

    if status == "conflict":
        conflicts = data.get("conflicts")
        if not isinstance(conflicts, list) or not conflicts:
            return PlannerOutcome(
                status="error",
                error="Planner returned conflict status but no conflicts array.",
            )
        return PlannerOutcome(status="conflict", conflicts=[_parse_conflict(c) for c in conflicts])

    if status == "ok":
        meta = data.get("metadata")
        cards = data.get("cards")
        if not isinstance(meta, dict) or not isinstance(cards, list):
            return PlannerOutcome(status="error", error="Planner response missing metadata or cards array.")
        if not cards:
            return PlannerOutcome(status="error", error="Planner returned ok status but no cards.")
        questions = data.get("questions")
        notes = _pick(data, "revisionNotes", "revision_notes")
        plan = Plan(
            metadata=_parse_metadata(meta, len(cards)),
            cards=[_parse_card(c) for c in cards],
            questions=[_parse_question(q) for q in questions] if isinstance(questions, list) and questions else None,
            revision_notes=_text(notes) if notes is not None else None,
        )
        return PlannerOutcome(status="ok", plan=plan)

    return PlannerOutcome(status="error", error=f"Unexpected planner status: {status}")


def parse_planner_response(raw: str) -> PlannerOutcome:
    try:
        data = json.loads(extract_json(raw))
        return _parse_planner_payload(data)
    except (json.JSONDecodeError, ContractValidationError) as exc:
        return PlannerOutcome(status="error", error=f"Failed to parse planner response: {exc}")


def parse_finalizer_response(raw: str) -> PlannerOutcome:
    """Planner contract with any leftover questions stripped."""
    outcome = parse_planner_response(raw)
    if outcome.status == "ok" and outcome.plan is not None:
        outcome.plan.questions = None
    return outcome


def parse_producer_response(raw: str) -> ProducerOutcome:
    """Accepts `{status, cards}` or a bare array of cards."""
    try:
        text = _strip_fence(raw)
        if not (text.startswith("[") and text.endswith("]")):
            text = extract_json(text)
        data = json.loads(text)
        cards = data if isinstance(data, list) else data.get("cards") if isinstance(data, dict) else None
        if not isinstance(cards, list) or not cards:
            return ProducerOutcome(status="error", error="Producer response missing cards array.")
        produced: list[ProducedCard] = []
        for entry in cards:
            card = _as_object(entry, "cards")
            produced.append(
                ProducedCard(
                    number=_as_int(card.get("number"), "card number"),
                    title=_text(card.get("title")),
                    content=_text(card.get("content")),
                    word_count=_as_int(_pick(card, "wordCount", "word_count"), "wordCount"),
                )
            )
        return ProducerOutcome(status="ok", cards=produced)
    except (json.JSONDecodeError, ContractValidationError) as exc:
        return ProducerOutcome(status="error", error=f"Failed to parse producer response: {exc}")
