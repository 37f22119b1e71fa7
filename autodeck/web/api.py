"""
FastAPI transport layer for the deck runtime.
"""

from __future__ import annotations

import asyncio
import json
import os
import time
from pathlib import Path
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from ..config import AutodeckConfig
from ..deck.lod import LOD_LEVELS, MAX_CARDS_WARNING, count_words, estimate_card_count
from ..deck.models import Briefing, Session
from ..deck.runtime import DeckRuntime, LiteLLMGenerator, TextGenerator
from ..deck.runtime.telemetry import UsageLedger
from ..store import Store
from .events import SessionEventEmitter

LOD_PATTERN = "^(" + "|".join(LOD_LEVELS) + ")$"


class BriefingPayload(BaseModel):
    audience: str = ""
    type: str = ""
    objective: str = ""
    tone: Optional[str] = None
    focus: Optional[str] = None
    min_cards: Optional[int] = None
    max_cards: Optional[int] = None
    include_cover: bool = False
    include_section_titles: bool = False
    include_closing: bool = False

    def to_briefing(self) -> Briefing:
        return Briefing(**self.model_dump())


class StartSessionRequest(BaseModel):
    collection_id: str
    briefing: BriefingPayload
    lod: str = Field(default="standard", pattern=LOD_PATTERN)
    document_ids: Optional[list[str]] = None
    wait: bool = False


class AnswerRequest(BaseModel):
    question_id: str
    option_key: str


class CommentRequest(BaseModel):
    text: str = ""


class SessionNotifier:
    """Forwards runtime notices to the log and the session's SSE stream."""

    def __init__(self, emitter: SessionEventEmitter):
        self.emitter = emitter
        self.session_id: str | None = None
        self.messages: list[str] = []

    def notify(self, message: str, level: str = "info") -> None:
        self.messages.append(message)
        logger.log("WARNING" if level in {"warning", "error"} else "INFO", "deck notice level={} {}", level, message)
        if self.session_id is not None:
            self.emitter.publish(self.session_id, {"type": "notice", "level": level, "message": message})


class RuntimeRegistry:
    """One DeckRuntime per live session, sharing a store and generator."""

    def __init__(
        self,
        emitter: SessionEventEmitter,
        config: AutodeckConfig,
        store: Store,
        generator: TextGenerator,
    ):
        self._emitter = emitter
        self.config = config
        self.store = store
        self.generator = generator
        self.usage = UsageLedger()
        self._runtimes: dict[str, DeckRuntime] = {}
        self._notifiers: dict[str, SessionNotifier] = {}
        self._tasks: set[asyncio.Task] = set()

    def create_runtime(self) -> tuple[DeckRuntime, SessionNotifier]:
        notifier = SessionNotifier(self._emitter)
        runtime = DeckRuntime(
            self.store,
            self.generator,
            pipeline=self.config.pipeline,
            generation=self.config.generation,
            notifier=notifier,
            recorder=self.usage,
        )
        return runtime, notifier

    def register(self, session_id: str, runtime: DeckRuntime, notifier: SessionNotifier) -> None:
        notifier.session_id = session_id
        self._runtimes[session_id] = runtime
        self._notifiers[session_id] = notifier

        def on_change(session: Session | None) -> None:
            if session is None:
                self._emitter.publish(session_id, {"type": "reset"})
            else:
                self._emitter.publish(session_id, {"type": "session", "session": session.to_dict()})

        runtime.subscribe(on_change)

    def get(self, session_id: str) -> tuple[DeckRuntime, SessionNotifier]:
        runtime = self._runtimes.get(session_id)
        if runtime is None:
            raise HTTPException(status_code=404, detail="session not found")
        return runtime, self._notifiers[session_id]

    def spawn(self, coro: Any) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(_log_task_failure)
        return task

    def cleanup_session(self, session_id: str) -> None:
        self._runtimes.pop(session_id, None)
        self._notifiers.pop(session_id, None)
        self._emitter.close(session_id)


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.opt(exception=exc).error("deck operation crashed: {}", exc)


def _config_root() -> Path:
    forced_root = os.environ.get("AUTODECK_CONFIG_ROOT")
    if forced_root:
        return Path(forced_root).expanduser().resolve()
    return Path.cwd()


def _session_payload(runtime: DeckRuntime, notifier: SessionNotifier | None = None) -> dict[str, Any]:
    session = runtime.session
    payload: dict[str, Any] = {
        "session": session.to_dict() if session is not None else None,
        "busy": runtime.busy,
    }
    if notifier is not None:
        payload["notices"] = list(notifier.messages[-10:])
    return payload


def create_app(
    config: AutodeckConfig | None = None,
    store: Store | None = None,
    generator: TextGenerator | None = None,
) -> FastAPI:
    app = FastAPI(title="autodeck-web", version="0.1.0")
    config = config or AutodeckConfig.load(_config_root())
    store = store or Store(config.store.resolved_path)
    generator = generator or LiteLLMGenerator(config.generation)
    emitter = SessionEventEmitter()
    registry = RuntimeRegistry(emitter, config, store, generator)
    app.state.registry = registry

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/collections")
    async def list_collections() -> dict[str, Any]:
        return {
            "items": [
                {"id": c.id, "name": c.name, "subject": c.subject, "last_modified_at": c.last_modified_at}
                for c in store.list_collections()
            ]
        }

    @app.get("/api/collections/{collection_id}/cards")
    async def list_cards(collection_id: str) -> dict[str, Any]:
        if store.get_collection(collection_id) is None:
            raise HTTPException(status_code=404, detail="collection not found")
        return {
            "items": [
                {
                    "id": card.id,
                    "title": card.title,
                    "detail_level": card.detail_level,
                    "content": card.content,
                    "source_documents": card.source_documents,
                    "session_id": card.session_id,
                }
                for card in store.list_cards(collection_id)
            ]
        }

    @app.get("/api/collections/{collection_id}/estimate")
    async def estimate(
        collection_id: str,
        lod: str = Query(default="standard", pattern=LOD_PATTERN),
    ) -> dict[str, Any]:
        if store.get_collection(collection_id) is None:
            raise HTTPException(status_code=404, detail="collection not found")
        documents = [d for d in store.list_documents(collection_id) if d.enabled and d.content]
        total = sum(count_words(d.content or "") for d in documents)
        result = estimate_card_count(total, lod)
        return {
            "total_word_count": total,
            "lod": lod,
            "estimate": result.estimate,
            "min": result.min,
            "max": result.max,
            "exceeds_warning": result.estimate > MAX_CARDS_WARNING,
        }

    @app.post("/api/sessions")
    async def create_session(payload: StartSessionRequest) -> dict[str, Any]:
        request_started = time.perf_counter()
        runtime, notifier = registry.create_runtime()
        document_ids = payload.document_ids
        if document_ids is None:
            document_ids = [d.id for d in store.list_documents(payload.collection_id)]

        loop = asyncio.get_running_loop()
        first_snapshot: asyncio.Future = loop.create_future()

        def on_first(session: Session | None) -> None:
            if session is not None and not first_snapshot.done():
                first_snapshot.set_result(session)

        unsubscribe = runtime.subscribe(on_first)
        task = registry.spawn(
            runtime.start_planning(
                payload.collection_id,
                payload.briefing.to_briefing(),
                payload.lod,
                document_ids,
            )
        )
        await asyncio.wait({first_snapshot, task}, return_when=asyncio.FIRST_COMPLETED)
        unsubscribe()
        if not first_snapshot.done():
            detail = notifier.messages[-1] if notifier.messages else "could not start planning"
            raise HTTPException(status_code=400, detail=detail)

        session = first_snapshot.result()
        registry.register(session.id, runtime, notifier)
        if payload.wait:
            await task
        logger.info(
            "api.sessions created session_id={} collection_id={} lod={} total_s={:.3f}",
            session.id,
            payload.collection_id,
            payload.lod,
            time.perf_counter() - request_started,
        )
        return _session_payload(runtime, notifier)

    @app.get("/api/sessions/{session_id}")
    async def get_session(session_id: str) -> dict[str, Any]:
        runtime, notifier = registry.get(session_id)
        return _session_payload(runtime, notifier)

    async def _run_operation(session_id: str, operation: str, wait: bool) -> dict[str, Any]:
        runtime, notifier = registry.get(session_id)
        if runtime.busy:
            raise HTTPException(status_code=409, detail="another deck operation is in flight")
        started = time.perf_counter()
        coro = runtime.revise_plan() if operation == "revise" else runtime.approve_plan()
        task = registry.spawn(coro)
        if wait:
            await task
        else:
            await asyncio.sleep(0)
        logger.info(
            "api.sessions {} session_id={} wait={} elapsed_s={:.3f}",
            operation,
            session_id,
            wait,
            time.perf_counter() - started,
        )
        return _session_payload(runtime, notifier)

    @app.post("/api/sessions/{session_id}/revise")
    async def revise(session_id: str, wait: bool = Query(default=False)) -> dict[str, Any]:
        return await _run_operation(session_id, "revise", wait)

    @app.post("/api/sessions/{session_id}/approve")
    async def approve(session_id: str, wait: bool = Query(default=False)) -> dict[str, Any]:
        return await _run_operation(session_id, "approve", wait)

    @app.post("/api/sessions/{session_id}/abort")
    async def abort(session_id: str) -> dict[str, Any]:
        runtime, notifier = registry.get(session_id)
        runtime.abort()
        logger.info("api.sessions abort session_id={}", session_id)
        return _session_payload(runtime, notifier)

    @app.post("/api/sessions/{session_id}/retry")
    async def retry(session_id: str) -> dict[str, Any]:
        runtime, notifier = registry.get(session_id)
        runtime.retry_from_review()
        return _session_payload(runtime, notifier)

    @app.delete("/api/sessions/{session_id}")
    async def reset(session_id: str) -> dict[str, Any]:
        runtime, _ = registry.get(session_id)
        runtime.reset()
        registry.cleanup_session(session_id)
        logger.info("api.sessions reset session_id={}", session_id)
        return {"deleted": True}

    @app.post("/api/sessions/{session_id}/cards/{number}/toggle")
    async def toggle_card(session_id: str, number: int) -> dict[str, Any]:
        runtime, notifier = registry.get(session_id)
        runtime.toggle_card_included(number)
        return _session_payload(runtime, notifier)

    @app.post("/api/sessions/{session_id}/answers")
    async def set_answer(session_id: str, payload: AnswerRequest) -> dict[str, Any]:
        runtime, notifier = registry.get(session_id)
        runtime.set_question_answer(payload.question_id, payload.option_key)
        return _session_payload(runtime, notifier)

    @app.post("/api/sessions/{session_id}/answers/recommended")
    async def set_recommended(session_id: str) -> dict[str, Any]:
        runtime, notifier = registry.get(session_id)
        runtime.set_all_recommended()
        return _session_payload(runtime, notifier)

    @app.post("/api/sessions/{session_id}/comment")
    async def set_comment(session_id: str, payload: CommentRequest) -> dict[str, Any]:
        runtime, notifier = registry.get(session_id)
        runtime.set_general_comment(payload.text)
        return _session_payload(runtime, notifier)

    @app.get("/api/sessions/{session_id}/usage")
    async def usage(session_id: str) -> dict[str, Any]:
        registry.get(session_id)
        totals = registry.usage.totals(session_id)
        return {
            "input_tokens": totals.input_tokens,
            "output_tokens": totals.output_tokens,
            "cache_read_tokens": totals.cache_read_tokens,
            "cache_write_tokens": totals.cache_write_tokens,
            "cost_usd": registry.usage.total_cost_usd(session_id),
        }

    @app.get("/api/sessions/{session_id}/events")
    async def stream_events(session_id: str) -> EventSourceResponse:
        registry.get(session_id)

        async def event_generator() -> Any:
            async for event in emitter.listen(session_id):
                etype = str(event.get("type", "message"))
                data = {k: v for k, v in event.items() if k != "type"}
                yield {
                    "event": etype,
                    "data": json.dumps(data),
                }

        return EventSourceResponse(event_generator())

    return app
