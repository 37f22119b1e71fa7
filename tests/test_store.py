from __future__ import annotations

import sqlite3

import pytest

from autodeck.store import DeckCard, Store


def _card(title: str, session_id: str = "s1") -> DeckCard:
    return DeckCard(
        id=f"id-{title}",
        title=title,
        detail_level="Standard",
        synthesis={"Standard": f"# {title}\n\nBody"},
        created_at="2026-01-01T00:00:00Z",
        last_edited_at="2026-01-01T00:00:00Z",
        source_documents=["a.md"],
        session_id=session_id,
    )


def test_store_creates_schema(tmp_path):
    store = Store(db_path=tmp_path / "autodeck.db")
    conn = sqlite3.connect(store.db_path)
    tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    conn.close()

    assert {"schema_version", "collections", "documents", "cards"} <= tables


def test_collection_names_unique(tmp_path):
    store = Store(db_path=tmp_path / "autodeck.db")
    first = store.create_collection("Handbook", subject="HR")
    second = store.create_collection("handbook")

    assert first.name == "Handbook"
    assert second.name == "handbook (2)"
    assert store.find_collection("HANDBOOK").id == first.id
    assert store.find_collection(second.id).name == "handbook (2)"
    assert store.find_collection("missing") is None


def test_documents_keep_order_and_unique_names(tmp_path):
    store = Store(db_path=tmp_path / "autodeck.db")
    collection = store.create_collection("Docs")
    store.add_document(collection.id, "notes.md", content="alpha")
    store.add_document(collection.id, "Notes.md", content="beta")
    pdf = store.add_document(collection.id, "policy.pdf", file_id="file_1", enabled=False)

    documents = store.list_documents(collection.id)

    assert [doc.name for doc in documents] == ["notes.md", "Notes (2).md", "policy.pdf"]
    assert [doc.position for doc in documents] == [0, 1, 2]
    assert pdf.enabled is False
    assert pdf.is_resolvable and not pdf.is_inline
    assert store.set_document_enabled(pdf.id, True).enabled is True


def test_add_document_validation(tmp_path):
    store = Store(db_path=tmp_path / "autodeck.db")
    collection = store.create_collection("Docs")

    with pytest.raises(ValueError, match="inline content or a file reference"):
        store.add_document(collection.id, "empty.md")
    with pytest.raises(ValueError, match="Collection not found"):
        store.add_document("nope", "a.md", content="x")
    with pytest.raises(ValueError, match="Document not found"):
        store.set_document_enabled("nope", True)


def test_append_cards_round_trip(tmp_path):
    store = Store(db_path=tmp_path / "autodeck.db")
    collection = store.create_collection("Deck")
    before = store.get_collection(collection.id).last_modified_at

    assert store.append_cards(collection.id, []) == 0
    assert store.append_cards(collection.id, [_card("One"), _card("Two")]) == 2
    assert store.append_cards(collection.id, [_card("Three", session_id="s2")]) == 1

    cards = store.list_cards(collection.id)
    assert [card.title for card in cards] == ["One", "Two", "Three"]
    assert cards[0].content == "# One\n\nBody"
    assert cards[0].source_documents == ["a.md"]
    assert cards[2].session_id == "s2"
    assert store.list_card_titles(collection.id) == ["One", "Two", "Three"]
    assert store.get_collection(collection.id).last_modified_at >= before


def test_append_cards_unknown_collection_writes_nothing(tmp_path):
    store = Store(db_path=tmp_path / "autodeck.db")

    with pytest.raises(ValueError):
        store.append_cards("missing", [_card("One")])
    assert store.list_cards("missing") == []
