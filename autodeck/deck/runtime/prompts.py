"""
Request builders for the planner, finalizer and producer roles.
"""

from __future__ import annotations

import json

from ..core import resolved_answers
from ..lod import LodLevel
from ..models import Briefing, Plan, PlanCard, ReviewState, SourceDocument
from .generation import FileRef, GenerationRequest, SystemBlock

PLANNER_MAX_TOKENS = 16384
PLANNER_TEMPERATURE = 0.1

SOURCE_CONSTRAINT = (
    "ABSOLUTE CONSTRAINT: All content must originate exclusively from the provided source "
    "documents. Do not infer, extrapolate, assume, or add any information, context, examples, "
    "definitions, or claims that are not explicitly present in the sources."
)

PLANNER_ROLE = """You are a senior information architect who breaks source documents down into plans for visual decks of cards.

Your plan is handed to a separate content writer. The writer:
- Sees only your plan, never your reasoning
- Has to find the exact source sections from your references
- Needs unambiguous guidance to write the right content
- Works under strict per-card word limits

Be precise enough that the writer never has to guess.

Reference ONLY material that exists in the provided source documents. Do not invent topics, infer data, or propose content the sources do not contain.

Respond with a single valid JSON object and nothing else."""

PLANNER_INSTRUCTIONS = """Work through these steps in order:

1. CONFLICT CHECK (always first):
   Look for contradictory data, claims or positions across the documents. A conflict means two sources state incompatible facts about the same thing (for example two different values for one metric). Differences in emphasis, perspective or scope are not conflicts.
   If you find conflicts, output ONLY the conflict report described below and stop.

2. DOCUMENT RELATIONSHIPS:
   Decide how the documents relate and pick a document strategy:
   - "dissolve": the sources cover one broad topic, so blend them freely across cards.
   - "preserve": the sources are distinct sub-topics, so keep document boundaries.
   - "hybrid": merge the overlapping parts and keep the distinct parts separate.

3. CONTENT INVENTORY (before choosing a card count):
   - List every major topic and section across the documents and which documents cover it.
   - Topics covered by several documents are merge candidates: plan ONE card for them, never several.
   - Topics that are sub-points of a larger topic belong under the parent card.

4. CARD COUNT:
   Choose the number of cards from the source volume and structure, the natural topic boundaries, the briefing (audience, objective, presentation type) and the per-card word range. Never split a cohesive idea across cards.
   Plan at least 3 and at most 40 content cards. Cover, section title and closing cards do not count toward this limit. If the material would need more than 40, consolidate smaller topics.

5. CARD PLANNING. For each card give:
   - title: at most 5 words, specific to the card (no generic "Overview" or "Introduction")
   - description: one sentence on what the card covers
   - wordTarget: a word count inside the LOD range, higher for dense material, lower for a single focused point
   - sources: where the content lives. Use the EXACT heading text from the document; if there is no usable heading, give a fallbackDescription of the location instead
   - keyDataPoints: 2-5 VERBATIM quotes, figures or statistics that must appear in the card, copied character for character
   - guidance: an object with emphasis (what to lead with), tone (for example "analytical" or "urgent") and exclude (nearby content that belongs to another card)
   - crossReferences: how the card relates to other cards (for example "Builds on Card 2"), or null

   Cards are written in batches of up to 12. Each batch sees the whole plan but writes only its own cards, so keep every card's guidance self-contained.

6. DEDUPLICATION (after planning every card):
   Check every pair of cards. No two cards may cover the same topic, statistic or argument. Consolidate overlaps, or draw clear boundaries in guidance.exclude, and note cross-references that help the writer avoid repetition.

7. DECISION QUESTIONS (3-8 questions):
   Identify the decisions where the user's choice would materially change the written content: ambiguities in the briefing, borderline scope, structure or tone alternatives for key cards, tensions between briefing fields.
   Each question needs 2-4 mutually exclusive options, a recommended option, and for every option a producerInstruction: a VERBATIM directive that is pasted into the writer's prompt (for example "Lead Card 3 with the Q2 revenue figures, not the market share data", never "focus more on financials").
   Do not ask whether to include a card, about basic formatting, or about topics the sources do not cover."""

REVISION_INSTRUCTIONS = """This is a REVISION. You produced a plan earlier and the user has reviewed it.

Revision rules:
- Apply all user feedback: the general comment and every answered question
- Fold answered questions into the guidance of the affected cards; they are settled decisions
- Keep the card number of every card you retain
- Do NOT bring back excluded cards unless the general comment explicitly asks for them
- New cards get new numbers after the current highest number
- Ask new questions only about decisions the revision itself introduces; never re-ask answered questions
- Add a "revisionNotes" field describing what changed and why"""

FINALIZER_INSTRUCTIONS = """You receive a card plan that the user has reviewed. The user has:
1. Excluded some cards (they are already removed; do not bring them back)
2. Answered multiple-choice decision questions
3. Possibly written general feedback

Produce the FINALIZED plan:
- Merge each resolved directive into the guidance (emphasis, tone or exclude) of the card or cards it affects. Adjust ordering, crossReferences or structure if the directive requires it.
- Apply the general feedback, if any.
- Re-run the deduplication check across the plan.
- Output the plan with NO questions array.

The writer never sees the questions or answers, so every card's guidance must carry the decisions that affect it.

You are restructuring a plan, not writing content. Do not invent topics or cards.

Respond with a single valid JSON object and nothing else."""

PRODUCER_ROLE = """You are a presentation content writer. You receive a card plan with source references and key data points, and you write the content of each card.

Rules:
- Write exactly the cards in the plan: do not reorder, skip or add cards.
- Every sentence must be traceable to the source documents.
- Never add background, industry norms, definitions, implications, predictions, outside comparisons or commentary that the sources do not contain.
- Every listed keyDataPoint must appear verbatim in the card.
- If a source reference cannot be found, write "[SOURCE NOT FOUND]" for it and move on.
- If the sources are too thin for the planned word count, write what they support and add "[INSUFFICIENT SOURCE MATERIAL]".

Respond with a single valid JSON object and nothing else."""

PRODUCER_PROCESS = """For each card in the plan, in order:

1. LOCATE SOURCES: find the referenced sections by heading text or fallback description, using the closest match when a heading differs slightly.

2. EXTRACT KEY DATA: identify the passages you will rely on and make sure every keyDataPoint is included verbatim.

3. WRITE: using only those passages and the card guidance,
   - lead with the emphasis the guidance names and match its tone
   - leave out what the guidance excludes
   - stay inside the word range and count your words
   - make implied relationships explicit (cause and effect, sequence, hierarchy, comparison)
   - keep phrasing concise with no filler

4. CROSS-CARD DEDUPLICATION: before finishing a card, remove any statistic, fact or argument already used in an earlier card, replacing it with a short back-reference or other evidence from the sources. Use crossReferences to relate cards without repeating them."""

HEADING_RULES = """
   Heading hierarchy (strict):
   - Do NOT start with a # card title heading, write only the body
   - Use ## for main sections and ### for subsections when the word count allows
   - Never skip heading levels and never use #
   - Number headings only when the content is inherently sequential (steps, phases, ranked items)"""

FORMATTING_RULES: dict[str, str] = {
    "executive": """5. FORMAT (Executive level, strict):
   - Bold only 1-2 key metrics or terms
   - At most one ## heading
   - No tables, no ###, no blockquotes
   - A tight paragraph or 2-3 bullets, nothing more
   - Never add data, facts or claims that are not in the sources""",
    "standard": """5. FORMAT (Standard level):
   - Bullets for non-sequential items, numbered lists for ordered steps or rankings
   - Tables only when comparing 3 or more items across several dimensions
   - Bold for key terms and metrics
   - Pick the format that fits the data instead of flattening everything into paragraphs
   - Never add data, facts or claims that are not in the sources""",
    "detailed": """5. FORMAT (Detailed level, full markdown range):
   - Bullets for non-sequential items, numbered lists for ordered steps or rankings
   - Tables for multi-dimensional comparisons or structured data
   - Bold for key terms and metrics, blockquotes for notable quotes
   - Pick the format that fits the data instead of flattening everything into paragraphs
   - Never add data, facts or claims that are not in the sources""",
}

PLAN_SCHEMA = """{
  "status": "ok",
  "metadata": {
    "category": "string (the presentation type from the briefing)",
    "lod": "string",
    "sourceWordCount": number,
    "cardCount": number,
    "documentStrategy": "dissolve | preserve | hybrid",
    "documentRelationships": "string"
  },
  "cards": [
    {
      "number": number,
      "title": "string (5 words max)",
      "description": "string (one sentence)",
      "sources": [
        {"document": "doc id", "heading": "EXACT heading text", "fallbackDescription": "only when there is no heading"}
      ],
      "wordTarget": number,
      "keyDataPoints": ["verbatim quote or figure"],
      "guidance": {"emphasis": "string", "tone": "string", "exclude": "string"},
      "crossReferences": "string | null"
    }
  ]QUESTIONS_FIELD
}"""

QUESTIONS_FIELD = """,
  "questions": [
    {
      "id": "q1",
      "question": "string",
      "options": [
        {"key": "a", "label": "string", "producerInstruction": "verbatim directive for the writer"}
      ],
      "recommendedKey": "a",
      "context": "optional one sentence on why this matters"
    }
  ]"""

CONFLICT_SCHEMA = """{
  "status": "conflict",
  "conflicts": [
    {
      "description": "what contradicts what",
      "sourceA": {"document": "doc id", "section": "section name"},
      "sourceB": {"document": "doc id", "section": "section name"},
      "severity": "high | medium | low"
    }
  ]
}"""

PLAN_RULES = """Rules:
- No extra fields, no missing required fields.
- keyDataPoints are VERBATIM source text, never paraphrased.
- Every source has either "heading" or "fallbackDescription", never both.
- guidance is the object shown above, not a plain string."""

PRODUCER_SCHEMA = """Output format: respond with EXACTLY this JSON structure:

{
  "status": "ok",
  "cards": [
    {"number": number, "title": "same title as the plan", "content": "markdown body without a # heading", "wordCount": number}
  ]
}

Do not add fields, omit cards or change titles. Every wordCount MUST fall inside the word range."""


def expert_priming(subject: str | None) -> str:
    if not subject or not subject.strip():
        return ""
    return (
        f"You are a domain expert on the following subject: {subject.strip()}. Use accurate "
        "terminology and professional judgment to organize and present the source material. Do NOT "
        "add facts, claims, data, or context from your own knowledge; work only with what the "
        "source documents provide."
    )


def _primed(role: str, subject: str | None) -> str:
    priming = expert_priming(subject)
    return f"{priming}\n\n{role}" if priming else role


def planner_output_schema(is_revision: bool) -> str:
    plan_schema = PLAN_SCHEMA.replace("QUESTIONS_FIELD", QUESTIONS_FIELD)
    if is_revision:
        plan_schema = plan_schema[: plan_schema.rfind("}")].rstrip() + ',\n  "revisionNotes": "what changed and why"\n}'
    return (
        "Output format: respond with EXACTLY one of these JSON structures.\n\n"
        f"CONFLICT RESPONSE:\n{CONFLICT_SCHEMA}\n\n"
        f"PLAN RESPONSE:\n{plan_schema}\n\n"
        f"{PLAN_RULES}\n"
        "- questions holds 3-8 questions with 2-4 options each.\n"
        "- producerInstruction is a specific directive, not vague advice."
    )


def finalizer_output_schema() -> str:
    return (
        "Output format: respond with EXACTLY this JSON structure:\n\n"
        f"{PLAN_SCHEMA.replace('QUESTIONS_FIELD', '')}\n\n"
        f"{PLAN_RULES}\n"
        "- Do NOT include a questions array.\n"
        "- Every resolved decision must appear in the guidance of the cards it affects."
    )


def briefing_context(briefing: Briefing, include_structure: bool = True) -> str:
    lines = [
        f"Audience: {briefing.audience}",
        f"Presentation type: {briefing.type}",
        f"Objective: {briefing.objective}",
    ]
    if briefing.tone:
        lines.append(f"Tone: {briefing.tone}")
    if briefing.focus:
        lines.append(f"Focus: {briefing.focus}")
    if not include_structure:
        return "\n".join(lines)
    if briefing.min_cards is not None and briefing.max_cards is not None:
        lines.append(f"Card count: between {briefing.min_cards} and {briefing.max_cards} cards")
    elif briefing.min_cards is not None:
        lines.append(f"Card count: at least {briefing.min_cards} cards")
    elif briefing.max_cards is not None:
        lines.append(f"Card count: at most {briefing.max_cards} cards")
    structure: list[str] = []
    if briefing.include_cover:
        structure.append("Include a cover card (title slide with deck overview)")
    if briefing.include_section_titles:
        structure.append("Include section title cards (divider cards for main sections)")
    if briefing.include_closing:
        structure.append("Include a closing card (takeaway or conclusion slide)")
    if structure:
        lines.append("Deck structure:\n" + "\n".join(f"- {item}" for item in structure))
    return "\n".join(lines)


def lod_lines(lod: LodLevel, strict: bool = False) -> str:
    band = f"Word count range per card: {lod.word_count_min}–{lod.word_count_max} words"
    if strict:
        band += " (STRICT: every card must fall within this range)"
    return f"Level of Detail: {lod.label}\n{band}"


def document_block(documents: list[SourceDocument], with_word_count: bool = True) -> SystemBlock | None:
    """Cached system block wrapping inline documents in <document> tags."""
    inline = [doc for doc in documents if doc.content]
    if not inline:
        return None
    parts: list[str] = []
    for doc in inline:
        attrs = f'id="{doc.id}" name="{doc.name}"'
        if with_word_count:
            attrs += f' wordCount="{doc.word_count}"'
        parts.append(f"<document {attrs}>\n{doc.content}\n</document>")
    text = (
        "Source documents are provided in <document> tags. Reference them by their id attribute.\n\n"
        + "\n\n".join(parts)
    )
    return SystemBlock(text=text, cache=True)


def file_refs(documents: list[SourceDocument]) -> list[FileRef]:
    return [FileRef(file_id=doc.file_id, name=doc.name) for doc in documents if not doc.content and doc.file_id]


def _plan_json(plan: Plan) -> str:
    return json.dumps(plan.to_wire(), indent=2, ensure_ascii=False)


# =============================================================================
# Planner
# =============================================================================


def build_planner_request(
    *,
    briefing: Briefing,
    lod: LodLevel,
    documents: list[SourceDocument],
    subject: str | None = None,
    max_tokens: int = PLANNER_MAX_TOKENS,
    temperature: float = PLANNER_TEMPERATURE,
) -> GenerationRequest:
    system = [
        SystemBlock(
            text="\n".join(
                [_primed(PLANNER_ROLE, subject), "", PLANNER_INSTRUCTIONS, "", planner_output_schema(False)]
            )
        )
    ]
    docs = document_block(documents)
    if docs is not None:
        system.append(docs)

    total_words = sum(doc.word_count for doc in documents)
    listing = "\n".join(
        f"  {idx}. {doc.name} ({doc.id}, {doc.word_count} words)" for idx, doc in enumerate(documents, start=1)
    )
    user = (
        f"{briefing_context(briefing)}\n\n"
        f"{lod_lines(lod)}\n\n"
        "Source metadata:\n"
        f"- Total word count: {total_words}\n"
        f"- Document count: {len(documents)}\n"
        "- Documents (in the user's priority order, respect this sequence):\n"
        f"{listing}\n\n"
        f"{SOURCE_CONSTRAINT}\n\n"
        "Produce the card plan now."
    )
    return GenerationRequest(
        system_blocks=system,
        messages=[{"role": "user", "content": user}],
        max_tokens=max_tokens,
        temperature=temperature,
        file_refs=file_refs(documents),
    )


def build_revision_request(
    *,
    briefing: Briefing,
    lod: LodLevel,
    documents: list[SourceDocument],
    plan: Plan,
    review_state: ReviewState,
    subject: str | None = None,
    max_tokens: int = PLANNER_MAX_TOKENS,
    temperature: float = PLANNER_TEMPERATURE,
) -> GenerationRequest:
    system = [
        SystemBlock(
            text="\n".join(
                [
                    _primed(PLANNER_ROLE, subject),
                    "",
                    PLANNER_INSTRUCTIONS,
                    "",
                    REVISION_INSTRUCTIONS,
                    "",
                    planner_output_schema(True),
                ]
            )
        )
    ]
    docs = document_block(documents)
    if docs is not None:
        system.append(docs)

    answers = [(question.id, option.key) for question, option in resolved_answers(plan, review_state)]
    if answers:
        answer_text = "Question answers (resolved decisions, fold them into card guidance):\n" + "\n".join(
            f"  {qid}: {key}" for qid, key in answers
        )
    else:
        answer_text = "Question answers: (none)"
    excluded = review_state.excluded_numbers()
    excluded_text = (
        f"\nExcluded cards (do NOT reintroduce): {', '.join(str(n) for n in excluded)}" if excluded else ""
    )
    comment = review_state.general_comment.strip() or "(none)"
    user = (
        "This is a REVISION of the previous plan.\n\n"
        f"Previous plan:\n{_plan_json(plan)}\n\n"
        "User feedback:\n"
        f"General comment: {comment}\n"
        f"{answer_text}{excluded_text}\n\n"
        f"{briefing_context(briefing)}\n\n"
        f"{lod_lines(lod)}\n\n"
        "Revise the plan based on the feedback above."
    )
    return GenerationRequest(
        system_blocks=system,
        messages=[{"role": "user", "content": user}],
        max_tokens=max_tokens,
        temperature=temperature,
        file_refs=file_refs(documents),
    )


# =============================================================================
# Finalizer
# =============================================================================


def build_finalizer_request(
    *,
    briefing: Briefing,
    lod: LodLevel,
    plan: Plan,
    review_state: ReviewState,
    filtered_plan: Plan,
    subject: str | None = None,
    max_tokens: int = PLANNER_MAX_TOKENS,
    temperature: float = PLANNER_TEMPERATURE,
) -> GenerationRequest:
    """Finalizer call; restructures the plan only, so no source documents."""
    system = [
        SystemBlock(
            text="\n".join([_primed(FINALIZER_INSTRUCTIONS, subject), "", finalizer_output_schema()])
        )
    ]
    resolved = [
        f'  {question.id}: {option.key} → "{option.producer_instruction}"'
        for question, option in resolved_answers(plan, review_state)
    ]
    if resolved:
        resolved_text = "Resolved decisions (merge each directive into the relevant card guidance):\n" + "\n".join(
            resolved
        )
    else:
        resolved_text = "Resolved decisions: (none)"
    user = (
        f"{briefing_context(briefing)}\n\n"
        f"{lod_lines(lod)}\n\n"
        f"Draft plan to finalize:\n{_plan_json(filtered_plan)}\n\n"
        f"{resolved_text}\n\n"
        f"General feedback: {review_state.general_comment.strip() or '(none)'}\n\n"
        "Finalize this plan now. Output the same JSON plan structure with every decision merged into "
        "card guidance. Do NOT include a questions array."
    )
    return GenerationRequest(
        system_blocks=system,
        messages=[{"role": "user", "content": user}],
        max_tokens=max_tokens,
        temperature=temperature,
    )


# =============================================================================
# Producer
# =============================================================================


def format_plan_for_producer(cards: list[PlanCard]) -> str:
    """Render plan cards as narrative text for the writer."""
    rendered: list[str] = []
    for card in cards:
        sources = "\n".join(f"    - {s.reference} (from document: {s.document})" for s in card.sources)
        key_data = "\n".join(f'    - "{point}"' for point in card.key_data_points)
        word_target = f"\n  Word target: ~{card.word_target} words" if card.word_target else ""
        rendered.append(
            f"Card {card.number}: {card.title}\n"
            f"  Description: {card.description}{word_target}\n"
            f"  Sources:\n{sources or '    (none listed)'}\n"
            f"  Key data points to include:\n{key_data or '    (none specified)'}\n"
            "  Guidance:\n"
            f"    Emphasis: {card.guidance.emphasis}\n"
            f"    Tone: {card.guidance.tone}\n"
            f"    Exclude: {card.guidance.exclude}\n"
            f"  Cross-references: {card.cross_references or 'none'}"
        )
    return "\n\n".join(rendered)


def build_producer_request(
    *,
    briefing: Briefing,
    lod: LodLevel,
    cards: list[PlanCard],
    documents: list[SourceDocument],
    max_tokens: int,
    subject: str | None = None,
    batch_context: str | None = None,
) -> GenerationRequest:
    instructions = "\n".join(
        [
            PRODUCER_PROCESS,
            "",
            FORMATTING_RULES.get(lod.name, FORMATTING_RULES["standard"]) + HEADING_RULES,
            "",
            "6. OUTPUT in the exact JSON format below.",
        ]
    )
    system = [SystemBlock(text="\n".join([_primed(PRODUCER_ROLE, subject), "", instructions, "", PRODUCER_SCHEMA]))]
    docs = document_block(documents, with_word_count=False)
    if docs is not None:
        system.append(docs)

    context = f"\n{batch_context}\n" if batch_context else ""
    user = (
        f"{briefing_context(briefing, include_structure=False)}\n\n"
        f"{lod_lines(lod, strict=True)}\n"
        f"{context}\n"
        f"Card plan to execute:\n\n{format_plan_for_producer(cards)}\n\n"
        f"{SOURCE_CONSTRAINT}\n\n"
        "Write the content for each card now."
    )
    return GenerationRequest(
        system_blocks=system,
        messages=[{"role": "user", "content": user}],
        max_tokens=max_tokens,
        file_refs=file_refs(documents),
    )
