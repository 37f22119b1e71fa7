"""
Planner stage: briefing plus ordered documents in, plan or conflict report out.
"""

from __future__ import annotations

import logging

from ..lod import LodLevel
from ..models import Briefing, Plan, ReviewState, SourceDocument
from .cancellation import CancellationToken
from .contracts import PlannerOutcome, parse_planner_response
from .generation import TextGenerator, generate_recorded
from .prompts import (
    PLANNER_MAX_TOKENS,
    PLANNER_TEMPERATURE,
    build_planner_request,
    build_revision_request,
)
from .telemetry import UsageRecorder

logger = logging.getLogger(__name__)


class PlannerStage:
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

    async def plan(
        self,
        *,
        session_id: str,
        briefing: Briefing,
        lod: LodLevel,
        documents: list[SourceDocument],
        cancel: CancellationToken,
        subject: str | None = None,
    ) -> PlannerOutcome:
        request = build_planner_request(
            briefing=briefing,
            lod=lod,
            documents=documents,
            subject=subject,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        result = await generate_recorded(
            self.generator,
            request,
            cancel,
            recorder=self.recorder,
            stage="planner",
            session_id=session_id,
        )
        outcome = parse_planner_response(result.text)
        logger.info("Planner outcome session=%s status=%s", session_id, outcome.status)
        return outcome

    async def revise(
        self,
        *,
        session_id: str,
        briefing: Briefing,
        lod: LodLevel,
        documents: list[SourceDocument],
        plan: Plan,
        review_state: ReviewState,
        cancel: CancellationToken,
        subject: str | None = None,
    ) -> PlannerOutcome:
        request = build_revision_request(
            briefing=briefing,
            lod=lod,
            documents=documents,
            plan=plan,
            review_state=review_state,
            subject=subject,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        result = await generate_recorded(
            self.generator,
            request,
            cancel,
            recorder=self.recorder,
            stage="revision",
            session_id=session_id,
        )
        outcome = parse_planner_response(result.text)
        logger.info("Revision outcome session=%s status=%s", session_id, outcome.status)
        return outcome
