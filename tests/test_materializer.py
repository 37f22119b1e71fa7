from __future__ import annotations

from autodeck.deck.lod import get_lod
from autodeck.deck.models import ProducedCard
from autodeck.deck.runtime.materializer import materialize_cards


def test_materialize_builds_records_with_provenance():
    produced = [
        ProducedCard(number=1, title="Overview", content="Body one", word_count=2),
        ProducedCard(number=2, title="Risks", content="Body two", word_count=2),
    ]

    records = materialize_cards(produced, [], get_lod("executive"), ["a.md", "b.md"], "session-1")

    assert [record.title for record in records] == ["Overview", "Risks"]
    first = records[0]
    assert first.detail_level == "Executive"
    assert first.synthesis == {"Executive": "# Overview\n\nBody one"}
    assert first.content == "# Overview\n\nBody one"
    assert first.source_documents == ["a.md", "b.md"]
    assert first.session_id == "session-1"
    assert first.created_at == first.last_edited_at
    assert first.created_at.endswith("Z")
    assert len({record.id for record in records}) == 2


def test_materialize_avoids_existing_titles_case_insensitive():
    produced = [ProducedCard(number=1, title="Overview", content="Body", word_count=1)]

    records = materialize_cards(produced, ["overview", "Overview (2)"], get_lod("standard"), [], "s")

    assert records[0].title == "Overview (3)"
    assert records[0].synthesis == {"Standard": "# Overview\n\nBody"}


def test_materialize_titles_unique_within_run():
    produced = [
        ProducedCard(number=1, title="Summary", content="A", word_count=1),
        ProducedCard(number=2, title="Summary", content="B", word_count=1),
    ]

    records = materialize_cards(produced, [], get_lod("standard"), [], "s")

    titles = [record.title.lower() for record in records]
    assert len(set(titles)) == 2
    assert all(title.startswith("summary") for title in titles)
