"""
Deck runtime: owns one session and drives plan, review, finalize and produce.

All stage errors are converted into session state. Cancelled operations return
without committing anything; abort() and reset() commit their own snapshot.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Callable, Protocol

from ...config import GenerationConfig, PipelineConfig
from ...store import Collection, DeckCard, Document
from ..core import (
    EmptySelection,
    RevisionLimitReached,
    abort_status,
    can_revise,
    included_cards,
    transition,
)
from ..core import set_all_recommended as _set_all_recommended
from ..core import set_general_comment as _set_general_comment
from ..core import set_question_answer as _set_question_answer
from ..core import toggle_card_included as _toggle_card_included
from ..lod import LodLevel, get_lod
from ..models import (
    Briefing,
    BriefingError,
    Plan,
    ReviewState,
    Session,
    SessionStatus,
    SourceDocument,
)
from .budget import BudgetExceeded, check_preflight
from .cancellation import CancellationToken, OperationCancelled
from .contracts import PlannerOutcome
from .events import Listener, SessionPublisher
from .finalizer import FinalizerStage, needs_finalizer
from .generation import TextGenerator
from .materializer import materialize_cards
from .notifications import LoggingNotifier, Notifier
from .planner import PlannerStage
from .producer import ProducerStage
from .telemetry import UsageRecorder

logger = logging.getLogger(__name__)

NOTICE_BUSY = "Another deck operation is already running. Wait for it to finish or abort it."
NOTICE_NO_DOCUMENTS = "Select at least one document with content before planning."
NOTICE_EMPTY_SELECTION = "Include at least one card before generating content."
NOTICE_NO_PLAN = "There is no plan to work on. Start planning first."


class DeckStore(Protocol):
    def get_collection(self, collection_id: str) -> Collection | None: ...

    def list_documents(self, collection_id: str) -> list[Document]: ...

    def list_card_titles(self, collection_id: str) -> list[str]: ...

    def append_cards(self, collection_id: str, cards: list[DeckCard]) -> int: ...


class DeckRuntime:
    """Single-session pipeline driver.

    At most one network-bearing operation runs at a time; a second one issued
    while the first is in flight is rejected with a notice.
    """

    def __init__(
        self,
        store: DeckStore,
        generator: TextGenerator,
        *,
        pipeline: PipelineConfig | None = None,
        generation: GenerationConfig | None = None,
        notifier: Notifier | None = None,
        recorder: UsageRecorder | None = None,
        publisher: SessionPublisher | None = None,
    ):
        self.store = store
        self.pipeline = pipeline or PipelineConfig()
        generation = generation or GenerationConfig()
        self.notifier = notifier or LoggingNotifier()
        self.publisher = publisher or SessionPublisher()
        self.planner = PlannerStage(
            generator,
            recorder,
            max_tokens=generation.planner_max_tokens,
            temperature=generation.planner_temperature,
        )
        self.finalizer = FinalizerStage(
            generator,
            recorder,
            max_tokens=generation.planner_max_tokens,
            temperature=generation.planner_temperature,
        )
        self.producer = ProducerStage(
            generator,
            recorder,
            single_batch_limit=self.pipeline.single_batch_limit,
            batch_size=self.pipeline.batch_size,
            max_output_tokens=self.pipeline.max_output_tokens,
        )
        self._session: Session | None = None
        self._documents: list[SourceDocument] = []
        self._subject: str | None = None
        self._lock = asyncio.Lock()
        self._cancel: CancellationToken | None = None

    # =========================================================================
    # Snapshot plumbing
    # =========================================================================

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.publisher.subscribe(listener)

    def _commit(self, session: Session) -> Session:
        self._session = session
        self.publisher.publish(session)
        return session

    def _notify(self, message: str, level: str = "info") -> None:
        try:
            self.notifier.notify(message, level)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Notifier failed: %s", exc)

    def _reject_if_busy(self) -> bool:
        if self._lock.locked():
            self._notify(NOTICE_BUSY, "warning")
            return True
        return False

    def _fail(self, session: Session, message: str) -> Session | None:
        logger.warning("Deck session %s failed: %s", session.id, message)
        self._notify(message, "error")
        return self._commit(transition(session, SessionStatus.ERROR, error=message))

    def _resolve_documents(self, collection_id: str, ordered_doc_ids: list[str]) -> list[SourceDocument]:
        """Enabled, resolvable documents in the caller's order; unknown ids are skipped."""
        by_id = {doc.id: doc for doc in self.store.list_documents(collection_id)}
        resolved: list[SourceDocument] = []
        seen: set[str] = set()
        for doc_id in ordered_doc_ids:
            doc = by_id.get(doc_id)
            if doc is None or doc_id in seen or not doc.enabled or not doc.is_resolvable:
                continue
            seen.add(doc_id)
            resolved.append(
                SourceDocument(id=doc.id, name=doc.name, content=doc.content or None, file_id=doc.file_id)
            )
        return resolved

    def _apply_planner_outcome(
        self,
        session: Session,
        outcome: PlannerOutcome,
        *,
        is_revision: bool,
    ) -> Session | None:
        revision_count = session.revision_count + (1 if is_revision else 0)
        if outcome.status == "ok" and outcome.plan is not None:
            return self._commit(
                transition(
                    session,
                    SessionStatus.REVIEWING,
                    plan=outcome.plan,
                    conflicts=None,
                    review_state=ReviewState.initial(outcome.plan),
                    revision_count=revision_count,
                    error=None,
                )
            )
        if outcome.status == "conflict":
            self._notify(
                f"The planner found {len(outcome.conflicts)} conflict(s) between your documents. "
                "Resolve them and start again.",
                "warning",
            )
            return self._commit(
                transition(
                    session,
                    SessionStatus.CONFLICT,
                    plan=None,
                    review_state=None,
                    conflicts=tuple(outcome.conflicts),
                    revision_count=revision_count,
                )
            )
        return self._fail(session, outcome.error or "Planner returned no usable response.")

    # =========================================================================
    # Network-bearing operations
    # =========================================================================

    async def start_planning(
        self,
        collection_id: str,
        briefing: Briefing,
        lod: str,
        ordered_doc_ids: list[str],
    ) -> Session | None:
        try:
            briefing.validate()
        except BriefingError as exc:
            self._notify(str(exc), "error")
            return self._session
        try:
            lod_level = get_lod(lod)
        except ValueError as exc:
            self._notify(str(exc), "error")
            return self._session
        if self._reject_if_busy():
            return self._session

        collection = self.store.get_collection(collection_id)
        if collection is None:
            self._notify(f"Collection not found: {collection_id}", "error")
            return self._session
        documents = self._resolve_documents(collection_id, ordered_doc_ids)
        if not documents:
            self._notify(NOTICE_NO_DOCUMENTS, "warning")
            return self._session

        async with self._lock:
            cancel = CancellationToken()
            self._cancel = cancel
            self._documents = documents
            self._subject = collection.subject
            session = Session(
                collection_id=collection_id,
                briefing=briefing,
                lod=lod_level.name,
                ordered_doc_ids=tuple(doc.id for doc in documents),
                status=SessionStatus.PLANNING,
            )
            self._commit(session)
            logger.info("Planning started session=%s documents=%d lod=%s", session.id, len(documents), lod)

            try:
                check_preflight(
                    (doc.content for doc in documents if doc.content),
                    self.pipeline.preflight_token_limit,
                )
            except BudgetExceeded as exc:
                logger.warning(
                    "Preflight rejected session=%s estimated=%d limit=%d",
                    session.id,
                    exc.estimated_tokens,
                    exc.limit,
                )
                return self._fail(session, str(exc))

            return await self._run_planner(session, lod_level, cancel)

    async def _run_planner(self, session: Session, lod: LodLevel, cancel: CancellationToken) -> Session | None:
        try:
            outcome = await self.planner.plan(
                session_id=session.id,
                briefing=session.briefing,
                lod=lod,
                documents=self._documents,
                cancel=cancel,
                subject=self._subject,
            )
        except OperationCancelled:
            return self._session
        except Exception as exc:  # noqa: BLE001
            if cancel.cancelled:
                return self._session
            return self._fail(session, f"Planning failed: {exc}")
        if cancel.cancelled:
            return self._session
        return self._apply_planner_outcome(session, outcome, is_revision=False)

    def _ensure_revisable(self, session: Session | None) -> Session:
        if session is None or session.plan is None or session.review_state is None:
            raise ValueError(NOTICE_NO_PLAN)
        if session.status == SessionStatus.REVIEWING and session.revision_count >= self.pipeline.max_revisions:
            raise RevisionLimitReached(f"Maximum of {self.pipeline.max_revisions} revisions reached.")
        if not can_revise(session, self.pipeline.max_revisions):
            raise ValueError(f"Cannot revise while the session is {session.status}.")
        return session

    async def revise_plan(self) -> Session | None:
        try:
            session = self._ensure_revisable(self._session)
        except (RevisionLimitReached, ValueError) as exc:
            self._notify(str(exc), "warning")
            return self._session
        if self._reject_if_busy():
            return session
        assert session.plan is not None and session.review_state is not None

        async with self._lock:
            cancel = CancellationToken()
            self._cancel = cancel
            plan = session.plan
            review_state = session.review_state
            revising = self._commit(
                transition(session, SessionStatus.REVISING, review_state=replace(review_state, decision="revise"))
            )
            try:
                outcome = await self.planner.revise(
                    session_id=session.id,
                    briefing=session.briefing,
                    lod=get_lod(session.lod),
                    documents=self._documents,
                    plan=plan,
                    review_state=review_state,
                    cancel=cancel,
                    subject=self._subject,
                )
            except OperationCancelled:
                return self._session
            except Exception as exc:  # noqa: BLE001
                if cancel.cancelled:
                    return self._session
                return self._fail(revising, f"Revision failed: {exc}")
            if cancel.cancelled:
                return self._session
            return self._apply_planner_outcome(revising, outcome, is_revision=True)

    def _ensure_approvable(self, session: Session | None) -> Session:
        if session is None or session.plan is None or session.review_state is None:
            raise ValueError(NOTICE_NO_PLAN)
        if session.status != SessionStatus.REVIEWING:
            raise ValueError(f"Cannot generate content while the session is {session.status}.")
        if not included_cards(session.plan, session.review_state):
            raise EmptySelection(NOTICE_EMPTY_SELECTION)
        return session

    async def approve_plan(self) -> Session | None:
        try:
            session = self._ensure_approvable(self._session)
        except EmptySelection as exc:
            self._notify(str(exc), "warning")
            assert self._session is not None
            return self._commit(transition(self._session, SessionStatus.REVIEWING))
        except ValueError as exc:
            self._notify(str(exc), "warning")
            return self._session
        if self._reject_if_busy():
            return session

        async with self._lock:
            cancel = CancellationToken()
            self._cancel = cancel
            return await self._finalize_and_produce(session, cancel)

    async def _finalize_and_produce(self, session: Session, cancel: CancellationToken) -> Session | None:
        assert session.plan is not None and session.review_state is not None
        plan = session.plan
        review_state = replace(session.review_state, decision="approved")
        lod = get_lod(session.lod)
        current = session
        try:
            if needs_finalizer(plan, review_state):
                current = self._commit(
                    transition(session, SessionStatus.FINALIZING, review_state=review_state)
                )
            outcome = await self.finalizer.finalize(
                session_id=session.id,
                briefing=session.briefing,
                lod=lod,
                plan=plan,
                review_state=review_state,
                cancel=cancel,
                subject=self._subject,
            )
            if cancel.cancelled:
                return self._session
            if outcome.status != "ok" or outcome.plan is None:
                return self._fail(current, f"Content generation failed: {outcome.error}")
            # Feeds the producer only; session.plan stays the reviewed plan so abort and retry return to it.
            finalized = outcome.plan

            current = self._commit(transition(current, SessionStatus.PRODUCING, review_state=review_state))
            produced = await self.producer.produce(
                session_id=session.id,
                briefing=session.briefing,
                lod=lod,
                cards=finalized.cards,
                documents=self._documents,
                cancel=cancel,
                subject=self._subject,
            )
            if cancel.cancelled:
                return self._session
            if produced.status != "ok":
                return self._fail(current, f"Content generation failed: {produced.error}")

            records = materialize_cards(
                produced.cards,
                self.store.list_card_titles(session.collection_id),
                lod,
                [doc.name for doc in self._documents],
                session.id,
            )
            self.store.append_cards(session.collection_id, records)
        except OperationCancelled:
            return self._session
        except Exception as exc:  # noqa: BLE001
            if cancel.cancelled:
                return self._session
            return self._fail(current, f"Content generation failed: {exc}")

        logger.info("Deck complete session=%s cards=%d", session.id, len(records))
        self._notify(f"{len(records)} cards generated successfully.", "success")
        return self._commit(
            transition(current, SessionStatus.COMPLETE, produced_cards=tuple(produced.cards))
        )

    # =========================================================================
    # Control operations
    # =========================================================================

    def abort(self) -> Session | None:
        """Cancel the in-flight call and fall back to a safe status."""
        if self._cancel is not None:
            self._cancel.cancel()
        session = self._session
        if session is None:
            return None
        target = abort_status(session)
        if target is None:
            return session
        review_state = session.review_state
        if review_state is not None and target == SessionStatus.REVIEWING:
            review_state = replace(review_state, decision="pending")
        logger.info("Aborted session=%s %s -> %s", session.id, session.status, target)
        return self._commit(transition(session, target, review_state=review_state, error=None))

    def reset(self) -> None:
        if self._cancel is not None:
            self._cancel.cancel()
        self._cancel = None
        self._documents = []
        self._subject = None
        self._session = None
        self.publisher.publish(None)

    def retry_from_review(self) -> Session | None:
        session = self._session
        if session is None or session.status != SessionStatus.ERROR or session.plan is None:
            self._notify("Nothing to retry: the session has no failed plan to return to.", "warning")
            return session
        review_state = session.review_state or ReviewState.initial(session.plan)
        return self._commit(
            transition(
                session,
                SessionStatus.REVIEWING,
                error=None,
                review_state=replace(review_state, decision="pending"),
            )
        )

    # =========================================================================
    # Review gate
    # =========================================================================

    def _edit_review(self, edit: Callable[[ReviewState, Plan], ReviewState]) -> Session | None:
        session = self._session
        if (
            session is None
            or session.status != SessionStatus.REVIEWING
            or session.plan is None
            or session.review_state is None
        ):
            return session
        updated = edit(session.review_state, session.plan)
        if updated == session.review_state:
            return session
        return self._commit(replace(session, review_state=updated))

    def toggle_card_included(self, number: int) -> Session | None:
        return self._edit_review(lambda review, plan: _toggle_card_included(review, number))

    def set_question_answer(self, question_id: str, option_key: str) -> Session | None:
        return self._edit_review(lambda review, plan: _set_question_answer(review, plan, question_id, option_key))

    def set_all_recommended(self) -> Session | None:
        return self._edit_review(lambda review, plan: _set_all_recommended(review, plan))

    def set_general_comment(self, text: str) -> Session | None:
        return self._edit_review(lambda review, plan: _set_general_comment(review, text))
