"""
Finalizer stage: merge resolved review decisions into card guidance.
"""

from __future__ import annotations

import logging

from ..core import filter_plan
from ..lod import LodLevel
from ..models import Briefing, Plan, ReviewState
from .cancellation import CancellationToken
from .contracts import PlannerOutcome, parse_finalizer_response
from .generation import TextGenerator, generate_recorded
from .prompts import PLANNER_MAX_TOKENS, PLANNER_TEMPERATURE, build_finalizer_request
from .telemetry import UsageRecorder

logger = logging.getLogger(__name__)


def needs_finalizer(plan: Plan, review_state: ReviewState) -> bool:
    """True when there is an answered question or a non-blank comment to merge."""
    answered = bool(plan.questions) and any(review_state.question_answers.values())
    return answered or bool(review_state.general_comment.strip())


class FinalizerStage:
    def __init__(
        self,
        generator: TextGenerator,
        recorder: UsageRecorder | None = None,
        max_tokens: int = PLANNER_MAX_TOKENS,
        temperature: float = PLANNER_TEMPERATURE,
    ):
        self.generator = generator
        self.recorder = recorder
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def finalize(
        self,
        *,
        session_id: str,
        briefing: Briefing,
        lod: LodLevel,
        plan: Plan,
        review_state: ReviewState,
        cancel: CancellationToken,
        subject: str | None = None,
    ) -> PlannerOutcome:
        """Return the finalized plan, skipping the call when nothing needs merging."""
        filtered = filter_plan(plan, review_state)
        if not needs_finalizer(plan, review_state):
            logger.debug("Finalizer skipped session=%s", session_id)
            return PlannerOutcome(status="ok", plan=filtered)

        request = build_finalizer_request(
            briefing=briefing,
            lod=lod,
            plan=plan,
            review_state=review_state,
            filtered_plan=filtered,
            subject=subject,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        result = await generate_recorded(
            self.generator,
            request,
            cancel,
            recorder=self.recorder,
            stage="finalizer",
            session_id=session_id,
        )
        outcome = parse_finalizer_response(result.text)
        if outcome.status == "conflict":
            return PlannerOutcome(status="error", error="Finalizer returned unexpected status: conflict")
        return outcome
