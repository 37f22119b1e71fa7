"""
Autodeck CLI - build card decks from document collections.

Commands:
    init         - Write a sample autodeck.yml and create the store
    collections  - Create and list collections
    docs         - Add, list, enable and disable documents
    deck         - Estimate card counts and run the plan/review/produce pipeline
    web          - Run the HTTP API server
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from pathlib import Path

import click
from dotenv import load_dotenv

# Load .env file from current directory
load_dotenv()
load_dotenv(Path.cwd() / ".env")

from . import __version__
from .config import CONFIG_FILENAME, AutodeckConfig, ensure_autodeck_dir
from .deck.lod import LOD_LEVELS, MAX_CARDS_WARNING, count_words, estimate_card_count
from .deck.models import Briefing, BriefingError, Session, SessionStatus
from .deck.runtime import DeckRuntime, LiteLLMGenerator
from .deck.runtime.notifications import CollectingNotifier, LoggingNotifier
from .deck.runtime.telemetry import UsageLedger
from .store import Collection, Store


SAMPLE_CONFIG = """\
# Autodeck Configuration

# Text generation (LiteLLM model string)
# API keys are read from environment (ANTHROPIC_API_KEY, OPENAI_API_KEY, etc.)
# See: https://docs.litellm.ai/docs/providers
generation:
  provider: anthropic
  model: claude-sonnet-4-6
  planner_max_tokens: 16384
  planner_temperature: 0.1
  request_timeout_seconds: 300

# Pipeline limits
pipeline:
  max_revisions: 5             # Plan revisions allowed per session
  single_batch_limit: 15       # Above this many cards, production is batched
  batch_size: 12               # Cards per production batch
  max_output_tokens: 64000     # Ceiling for a single production call
  preflight_token_limit: 180000

# Document/card store (defaults to ~/.autodeck/autodeck.db)
# store:
#   db_path: ./autodeck.db
"""


@click.group()
@click.version_option(version=__version__)
def main():
    """Autodeck - plan, review and produce card decks from your documents."""
    pass


def _load_context() -> tuple[AutodeckConfig, Store]:
    config = AutodeckConfig.load(Path.cwd())
    store = Store(config.store.resolved_path)
    return config, store


def _require_collection(store: Store, name_or_id: str) -> Collection:
    collection = store.find_collection(name_or_id)
    if collection is None:
        raise click.ClickException(f"Collection not found: {name_or_id}")
    return collection


@main.command()
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize Autodeck in the current directory."""
    root = Path.cwd()
    click.echo(f"Initializing Autodeck in: {root}")

    autodeck_dir = ensure_autodeck_dir()
    click.echo(f"  State dir: {autodeck_dir}")

    config_path = root / CONFIG_FILENAME
    if not config_path.exists() or force:
        config_path.write_text(SAMPLE_CONFIG)
        click.echo(f"  Created: {config_path}")
    else:
        click.echo(f"  Skipped: {config_path} (already exists)")

    _, store = _load_context()
    click.echo(f"  Database: {store.db_path}")


# =============================================================================
# Collections and documents
# =============================================================================


@main.group(name="collections")
def collections_group() -> None:
    """Collection management."""


@collections_group.command("create")
@click.argument("name")
@click.option("--subject", default=None, help="Subject used for expert priming")
def collections_create(name: str, subject: str | None) -> None:
    """Create a collection."""
    _, store = _load_context()
    collection = store.create_collection(name, subject=subject)
    click.echo(f"Created collection: {collection.name} ({collection.id})")


@collections_group.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def collections_list(as_json: bool) -> None:
    """List collections."""
    _, store = _load_context()
    collections = store.list_collections()
    if as_json:
        click.echo(json.dumps([c.__dict__ for c in collections], indent=2))
        return
    if not collections:
        click.echo("No collections yet.")
        click.echo("Run: autodeck collections create <name>")
        return
    click.echo("Name\tSubject\tDocuments\tCards\tID")
    for collection in collections:
        click.echo(
            f"{collection.name}\t{collection.subject or '-'}\t"
            f"{len(store.list_documents(collection.id))}\t"
            f"{len(store.list_card_titles(collection.id))}\t{collection.id}"
        )


@main.group(name="docs")
def docs_group() -> None:
    """Document management."""


@docs_group.command("add")
@click.argument("collection")
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--disabled", is_flag=True, help="Add documents without enabling them")
def docs_add(collection: str, paths: tuple[Path, ...], disabled: bool) -> None:
    """Add text documents to a collection."""
    _, store = _load_context()
    target = _require_collection(store, collection)
    for path in paths:
        content = path.read_text(encoding="utf-8")
        try:
            document = store.add_document(target.id, path.name, content=content, enabled=not disabled)
        except ValueError as exc:
            raise click.ClickException(f"{path}: {exc}") from exc
        click.echo(f"  Added: {document.name} ({count_words(content)} words) {document.id}")


@docs_group.command("list")
@click.argument("collection")
def docs_list(collection: str) -> None:
    """List documents in a collection."""
    _, store = _load_context()
    target = _require_collection(store, collection)
    documents = store.list_documents(target.id)
    if not documents:
        click.echo("No documents in this collection.")
        return
    click.echo("Enabled\tName\tWords\tID")
    for document in documents:
        words = count_words(document.content) if document.content else 0
        click.echo(f"{'yes' if document.enabled else 'no'}\t{document.name}\t{words}\t{document.id}")


def _set_enabled(document_id: str, enabled: bool) -> None:
    _, store = _load_context()
    try:
        document = store.set_document_enabled(document_id, enabled)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"{'Enabled' if enabled else 'Disabled'}: {document.name}")


@docs_group.command("enable")
@click.argument("document_id")
def docs_enable(document_id: str) -> None:
    """Enable a document for planning."""
    _set_enabled(document_id, True)


@docs_group.command("disable")
@click.argument("document_id")
def docs_disable(document_id: str) -> None:
    """Exclude a document from planning."""
    _set_enabled(document_id, False)


# =============================================================================
# Deck pipeline
# =============================================================================


@main.group(name="deck")
def deck_group() -> None:
    """Deck planning and production."""


@deck_group.command("estimate")
@click.argument("collection")
@click.option("--lod", type=click.Choice(list(LOD_LEVELS)), default="standard", show_default=True)
def deck_estimate(collection: str, lod: str) -> None:
    """Estimate how many cards the enabled documents support."""
    _, store = _load_context()
    target = _require_collection(store, collection)
    total = sum(count_words(d.content) for d in store.list_documents(target.id) if d.enabled and d.content)
    result = estimate_card_count(total, lod)
    click.echo(f"Source words: {total}")
    click.echo(f"Level of detail: {LOD_LEVELS[lod].label}")
    click.echo(f"Estimated cards: {result.estimate} (range {result.min}-{result.max})")
    if result.estimate > MAX_CARDS_WARNING:
        click.echo(f"⚠️  More than {MAX_CARDS_WARNING} cards; consider a lower level of detail or fewer documents.")


def _print_plan(session: Session) -> None:
    plan = session.plan
    if plan is None:
        return
    review = session.review_state
    click.echo(f"\nPlan ({len(plan.cards)} cards, strategy: {plan.metadata.document_strategy})")
    click.echo(f"{'─' * 60}")
    for card in plan.cards:
        state = review.card_states.get(card.number) if review else None
        marker = "x" if state is None or state.included else " "
        click.echo(f"  [{marker}] {card.number}. {card.title}")
        click.echo(f"        {card.description}")
    if plan.questions:
        click.echo("\nQuestions:")
        for question in plan.questions:
            answer = review.question_answers.get(question.id) if review else None
            click.echo(f"  {question.id}: {question.question}")
            for option in question.options:
                flags = []
                if option.key == question.recommended_key:
                    flags.append("recommended")
                if option.key == answer:
                    flags.append("selected")
                suffix = f" ({', '.join(flags)})" if flags else ""
                click.echo(f"      {option.key}) {option.label}{suffix}")


def _print_conflicts(session: Session) -> None:
    click.echo(f"\nConflicts found between documents ({len(session.conflicts or ())}):")
    for conflict in session.conflicts or ():
        click.echo(f"  [{conflict.severity}] {conflict.description}")
        click.echo(f"      {conflict.source_a.document}: {conflict.source_a.section}")
        click.echo(f"      {conflict.source_b.document}: {conflict.source_b.section}")


@deck_group.command("run")
@click.argument("collection")
@click.option("--audience", required=True, help="Who the deck is for")
@click.option("--type", "deck_type", required=True, help="Kind of deck (e.g. training, briefing)")
@click.option("--objective", required=True, help="What the deck should achieve")
@click.option("--tone", default=None)
@click.option("--focus", default=None)
@click.option("--min-cards", type=int, default=None)
@click.option("--max-cards", type=int, default=None)
@click.option("--cover", is_flag=True, help="Include a cover card")
@click.option("--section-titles", is_flag=True, help="Include section title cards")
@click.option("--closing", is_flag=True, help="Include a closing card")
@click.option("--lod", type=click.Choice(list(LOD_LEVELS)), default="standard", show_default=True)
@click.option("--exclude", "excluded", type=int, multiple=True, help="Card number to leave out (repeatable)")
@click.option("--recommended", is_flag=True, help="Answer every planner question with its recommendation")
@click.option("--comment", default=None, help="General comment for the finalizer")
@click.option("--approve", is_flag=True, help="Generate card content after planning")
def deck_run(
    collection: str,
    audience: str,
    deck_type: str,
    objective: str,
    tone: str | None,
    focus: str | None,
    min_cards: int | None,
    max_cards: int | None,
    cover: bool,
    section_titles: bool,
    closing: bool,
    lod: str,
    excluded: tuple[int, ...],
    recommended: bool,
    comment: str | None,
    approve: bool,
) -> None:
    """Plan a deck for COLLECTION and optionally produce its cards."""
    config, store = _load_context()
    target = _require_collection(store, collection)
    briefing = Briefing(
        audience=audience,
        type=deck_type,
        objective=objective,
        tone=tone,
        focus=focus,
        min_cards=min_cards,
        max_cards=max_cards,
        include_cover=cover,
        include_section_titles=section_titles,
        include_closing=closing,
    )
    try:
        briefing.validate()
    except BriefingError as exc:
        raise click.ClickException(str(exc)) from exc

    notifier = CollectingNotifier(forward=LoggingNotifier())
    usage = UsageLedger()
    runtime = DeckRuntime(
        store,
        LiteLLMGenerator(config.generation),
        pipeline=config.pipeline,
        generation=config.generation,
        notifier=notifier,
        recorder=usage,
    )
    document_ids = [d.id for d in store.list_documents(target.id)]

    async def _run() -> Session | None:
        session = await runtime.start_planning(target.id, briefing, lod, document_ids)
        if session is None or session.status != SessionStatus.REVIEWING:
            return session
        for number in excluded:
            runtime.toggle_card_included(number)
        if recommended:
            runtime.set_all_recommended()
        if comment:
            runtime.set_general_comment(comment)
        _print_plan(runtime.session or session)
        if not approve:
            return runtime.session
        click.echo("\nGenerating card content...")
        return await runtime.approve_plan()

    session = asyncio.run(_run())
    if session is None:
        message = notifier.messages[-1] if notifier.messages else "Planning did not start."
        raise click.ClickException(message)
    if session.status == SessionStatus.CONFLICT:
        _print_conflicts(session)
        sys.exit(1)
    if session.status == SessionStatus.ERROR:
        raise click.ClickException(session.error or "Deck generation failed.")
    if session.status == SessionStatus.COMPLETE:
        click.echo(f"✅ {len(session.produced_cards)} cards added to {target.name}")
    elif session.status == SessionStatus.REVIEWING and approve:
        for message in notifier.messages:
            click.echo(f"⚠️  {message}", err=True)
        sys.exit(1)
    click.echo(f"Session cost: ${usage.total_cost_usd(session.id):.4f}")


@deck_group.command("cards")
@click.argument("collection")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def deck_cards(collection: str, as_json: bool) -> None:
    """List the cards stored in a collection."""
    _, store = _load_context()
    target = _require_collection(store, collection)
    cards = store.list_cards(target.id)
    if as_json:
        click.echo(
            json.dumps(
                [
                    {
                        "id": card.id,
                        "title": card.title,
                        "detail_level": card.detail_level,
                        "content": card.content,
                        "source_documents": card.source_documents,
                    }
                    for card in cards
                ],
                indent=2,
            )
        )
        return
    if not cards:
        click.echo("No cards in this collection.")
        return
    for card in cards:
        click.echo(f"{card.title}\t{card.detail_level}\t{count_words(card.content)} words")


@main.command("web")
@click.option("--host", default=None, help="Bind address (default 127.0.0.1)")
@click.option("--port", default=None, type=int, help="Port (default 8430)")
@click.option("--config-root", "config_root", default=None, help=f"Directory containing {CONFIG_FILENAME}")
def run_web(host: str | None, port: int | None, config_root: str | None) -> None:
    """Run the autodeck API server (Ctrl+C to stop)."""
    from .web.server import DEFAULT_HOST, DEFAULT_PORT, run_server

    if config_root:
        os.environ["AUTODECK_CONFIG_ROOT"] = str(Path(config_root).expanduser().resolve())
    host = host or DEFAULT_HOST
    port = port or DEFAULT_PORT
    click.echo(f"Starting autodeck server at http://{host}:{port} (Ctrl+C to stop)")
    click.echo("Server logs: ~/.autodeck/server.log")
    try:
        run_server(host=host, port=port)
    except RuntimeError as exc:
        raise click.ClickException(str(exc)) from exc


if __name__ == "__main__":
    main()
