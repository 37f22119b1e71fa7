"""
Text-generation boundary: request/result types and the LiteLLM adapter.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from ...config import GenerationConfig
from .budget import estimate_tokens, message_budget
from .cancellation import CancellationToken
from .telemetry import UsageCounters, UsageRecord, UsageRecorder, extract_usage

logger = logging.getLogger(__name__)
logging.getLogger("LiteLLM").setLevel(logging.WARNING)

# Anthropic ignores cache breakpoints on short prefixes
MIN_CACHE_CHARS = 4000
FILES_API_BETA = "files-api-2025-04-14"


@dataclass
class SystemBlock:
    text: str
    cache: bool = False


@dataclass
class FileRef:
    file_id: str
    name: str = ""


@dataclass
class GenerationRequest:
    system_blocks: list[SystemBlock]
    messages: list[dict[str, str]]
    max_tokens: int
    temperature: float | None = None
    file_refs: list[FileRef] = field(default_factory=list)


@dataclass
class GenerationResult:
    text: str
    usage: UsageCounters = field(default_factory=UsageCounters)
    provider: str = ""
    model: str = ""


class TextGenerator(Protocol):
    async def generate(self, request: GenerationRequest, cancel: CancellationToken) -> GenerationResult: ...


async def generate_recorded(
    generator: TextGenerator,
    request: GenerationRequest,
    cancel: CancellationToken,
    *,
    recorder: UsageRecorder | None = None,
    stage: str = "",
    session_id: str | None = None,
) -> GenerationResult:
    """Run one generation call and hand its usage to ``recorder``.

    Usage is recorded even when the token fired while the call was finishing,
    since the tokens were spent; the cancellation is raised afterwards.
    """
    result = await generator.generate(request, cancel)
    if recorder is not None:
        try:
            recorder.record(
                UsageRecord(
                    provider=result.provider,
                    model=result.model,
                    usage=result.usage,
                    stage=stage,
                    session_id=session_id,
                )
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Usage recorder failed for stage=%s: %s", stage, exc)
    cancel.raise_if_cancelled()
    return result


def build_system_payload(blocks: list[SystemBlock]) -> list[dict[str, Any]]:
    payload: list[dict[str, Any]] = []
    for block in blocks:
        if not block.text:
            continue
        part: dict[str, Any] = {"type": "text", "text": block.text}
        if block.cache and len(block.text) >= MIN_CACHE_CHARS:
            part["cache_control"] = {"type": "ephemeral"}
        payload.append(part)
    return payload


def build_message_payload(messages: list[dict[str, str]], file_refs: list[FileRef]) -> list[dict[str, Any]]:
    """Convert plain turns to content blocks.

    File references become document blocks at the start of the first user
    turn; the last user turn carries a cache breakpoint.
    """
    payload: list[dict[str, Any]] = []
    first_user_seen = False
    last_user_index = max(
        (idx for idx, message in enumerate(messages) if message.get("role") == "user"),
        default=-1,
    )
    for idx, message in enumerate(messages):
        role = message.get("role", "user")
        content: list[dict[str, Any]] = []
        if role == "user" and not first_user_seen:
            first_user_seen = True
            for ref in file_refs:
                content.append({"type": "file", "file": {"file_id": ref.file_id}})
        text_part: dict[str, Any] = {"type": "text", "text": message.get("content", "")}
        if idx == last_user_index:
            text_part["cache_control"] = {"type": "ephemeral"}
        content.append(text_part)
        payload.append({"role": role, "content": content})
    return payload


def _response_text(response: Any) -> str:
    choices = getattr(response, "choices", None) or []
    parts: list[str] = []
    for choice in choices:
        message = getattr(choice, "message", None)
        text = getattr(message, "content", None)
        if isinstance(text, str) and text:
            parts.append(text)
    return "".join(parts)


class LiteLLMGenerator:
    """TextGenerator backed by ``litellm.acompletion``."""

    def __init__(self, config: GenerationConfig):
        self.config = config

    @property
    def model(self) -> str:
        if "/" in self.config.model or not self.config.provider:
            return self.config.model
        return f"{self.config.provider}/{self.config.model}"

    async def generate(self, request: GenerationRequest, cancel: CancellationToken) -> GenerationResult:
        import litellm

        litellm.drop_params = True
        messages: list[dict[str, Any]] = []
        system = build_system_payload(request.system_blocks)
        if system:
            messages.append({"role": "system", "content": system})
        messages.extend(build_message_payload(request.messages, request.file_refs))

        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": request.max_tokens,
        }
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        if request.file_refs:
            kwargs["extra_headers"] = {"anthropic-beta": FILES_API_BETA}

        available = message_budget([block.text for block in request.system_blocks], request.max_tokens)
        needed = sum(estimate_tokens(message.get("content", "")) for message in request.messages)
        if needed > available:
            logger.warning("Messages need ~%d tokens but only %d fit the context window", needed, available)
        logger.debug(
            "Generation call model=%s max_tokens=%d files=%d",
            self.model,
            request.max_tokens,
            len(request.file_refs),
        )
        try:
            response = await cancel.race(
                litellm.acompletion(**kwargs),
                timeout=self.config.request_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise RuntimeError(
                f"Generation request timed out after {self.config.request_timeout_seconds}s"
            ) from exc

        text = _response_text(response)
        if not text.strip():
            raise RuntimeError("Empty response from generation service")
        return GenerationResult(
            text=text,
            usage=extract_usage(response),
            provider=self.config.provider,
            model=self.config.model,
        )
