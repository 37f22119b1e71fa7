"""
SQLite storage for Autodeck collections, source documents and cards.

Schema:
- collections: Named groups of documents and cards (optionally with a subject)
- documents: Source documents, inline text or an external file reference
- cards: Written cards, appended by the deck pipeline
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator
from uuid import uuid4

from .config import get_autodeck_dir
from .naming import unique_name


DB_FILENAME = "autodeck.db"
CURRENT_SCHEMA_VERSION = 1

SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS collections (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    subject TEXT,
    created_at TEXT NOT NULL,
    last_modified_at TEXT NOT NULL
);

-- Either content (inline text) or file_id (provider file reference) is set
CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    collection_id TEXT NOT NULL,
    name TEXT NOT NULL,
    content TEXT,
    file_id TEXT,
    enabled INTEGER NOT NULL DEFAULT 1,
    position INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY (collection_id) REFERENCES collections(id)
);

CREATE TABLE IF NOT EXISTS cards (
    id TEXT PRIMARY KEY,
    collection_id TEXT NOT NULL,
    title TEXT NOT NULL,
    level INTEGER NOT NULL DEFAULT 1,
    detail_level TEXT NOT NULL,
    synthesis_json TEXT NOT NULL,
    source_documents_json TEXT,
    session_id TEXT,
    position INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    last_edited_at TEXT NOT NULL,
    FOREIGN KEY (collection_id) REFERENCES collections(id)
);

CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection_id, position);
CREATE INDEX IF NOT EXISTS idx_cards_collection ON cards(collection_id, position);
CREATE INDEX IF NOT EXISTS idx_cards_session ON cards(session_id);
"""


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class Collection:
    """Stored collection."""

    id: str
    name: str
    subject: str | None
    created_at: str
    last_modified_at: str


@dataclass
class Document:
    """Stored source document."""

    id: str
    collection_id: str
    name: str
    content: str | None
    file_id: str | None
    enabled: bool
    position: int
    created_at: str = ""

    @property
    def is_resolvable(self) -> bool:
        return bool(self.content) or bool(self.file_id)

    @property
    def is_inline(self) -> bool:
        return bool(self.content)


@dataclass
class DeckCard:
    """A persisted card record."""

    id: str
    title: str
    detail_level: str
    synthesis: dict[str, str]
    created_at: str
    last_edited_at: str
    source_documents: list[str] = field(default_factory=list)
    session_id: str | None = None
    level: int = 1

    @property
    def content(self) -> str:
        return self.synthesis.get(self.detail_level, "")


class Store:
    """SQLite storage manager for Autodeck."""

    def __init__(self, db_path: Path | None = None):
        if db_path is None:
            db_path = get_autodeck_dir() / DB_FILENAME
        self.db_path = db_path
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        """Ensure database schema exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(SCHEMA)
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if row is None:
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (CURRENT_SCHEMA_VERSION,))

    @contextmanager
    def _connect(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for database connection."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _now(self) -> str:
        return utc_now()

    # =========================================================================
    # Collections
    # =========================================================================

    def create_collection(self, name: str, subject: str | None = None) -> Collection:
        """Create a collection with a name unique among existing collections."""
        cid = str(uuid4())
        now = self._now()
        with self._connect() as conn:
            existing = [row[0] for row in conn.execute("SELECT name FROM collections").fetchall()]
            conn.execute(
                """
                INSERT INTO collections (id, name, subject, created_at, last_modified_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (cid, unique_name(name, existing), subject, now, now),
            )
            row = conn.execute("SELECT * FROM collections WHERE id = ?", (cid,)).fetchone()
            return Collection(**dict(row))

    def get_collection(self, collection_id: str) -> Collection | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM collections WHERE id = ?", (collection_id,)).fetchone()
            return Collection(**dict(row)) if row else None

    def find_collection(self, name_or_id: str) -> Collection | None:
        """Look up a collection by id, then by case-insensitive name."""
        found = self.get_collection(name_or_id)
        if found is not None:
            return found
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM collections WHERE lower(name) = lower(?)",
                (name_or_id,),
            ).fetchone()
            return Collection(**dict(row)) if row else None

    def list_collections(self) -> list[Collection]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM collections ORDER BY last_modified_at DESC").fetchall()
            return [Collection(**dict(row)) for row in rows]

    # =========================================================================
    # Documents
    # =========================================================================

    def _row_to_document(self, row: sqlite3.Row) -> Document:
        data = dict(row)
        data["enabled"] = bool(data["enabled"])
        return Document(**data)

    def add_document(
        self,
        collection_id: str,
        name: str,
        content: str | None = None,
        file_id: str | None = None,
        enabled: bool = True,
    ) -> Document:
        """Add a document; the name is made unique within the collection."""
        if not content and not file_id:
            raise ValueError("A document needs inline content or a file reference")
        did = str(uuid4())
        with self._connect() as conn:
            if conn.execute("SELECT 1 FROM collections WHERE id = ?", (collection_id,)).fetchone() is None:
                raise ValueError(f"Collection not found: {collection_id}")
            rows = conn.execute(
                "SELECT name, position FROM documents WHERE collection_id = ?",
                (collection_id,),
            ).fetchall()
            position = max((int(row["position"]) for row in rows), default=-1) + 1
            conn.execute(
                """
                INSERT INTO documents
                    (id, collection_id, name, content, file_id, enabled, position, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    did,
                    collection_id,
                    unique_name(name, [row["name"] for row in rows], is_file=True),
                    content,
                    file_id,
                    int(enabled),
                    position,
                    self._now(),
                ),
            )
            row = conn.execute("SELECT * FROM documents WHERE id = ?", (did,)).fetchone()
            return self._row_to_document(row)

    def list_documents(self, collection_id: str) -> list[Document]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM documents WHERE collection_id = ? ORDER BY position",
                (collection_id,),
            ).fetchall()
            return [self._row_to_document(row) for row in rows]

    def set_document_enabled(self, document_id: str, enabled: bool) -> Document:
        with self._connect() as conn:
            conn.execute("UPDATE documents SET enabled = ? WHERE id = ?", (int(enabled), document_id))
            row = conn.execute("SELECT * FROM documents WHERE id = ?", (document_id,)).fetchone()
            if row is None:
                raise ValueError(f"Document not found: {document_id}")
            return self._row_to_document(row)

    # =========================================================================
    # Cards
    # =========================================================================

    def _row_to_card(self, row: sqlite3.Row) -> DeckCard:
        data = dict(row)
        sources: list[str] = []
        if data.get("source_documents_json"):
            try:
                parsed = json.loads(data["source_documents_json"])
            except json.JSONDecodeError:
                parsed = []
            if isinstance(parsed, list):
                sources = [str(item) for item in parsed]
        return DeckCard(
            id=data["id"],
            title=data["title"],
            detail_level=data["detail_level"],
            synthesis=json.loads(data["synthesis_json"]),
            created_at=data["created_at"],
            last_edited_at=data["last_edited_at"],
            source_documents=sources,
            session_id=data.get("session_id"),
            level=int(data.get("level") or 1),
        )

    def list_cards(self, collection_id: str) -> list[DeckCard]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM cards WHERE collection_id = ? ORDER BY position",
                (collection_id,),
            ).fetchall()
            return [self._row_to_card(row) for row in rows]

    def list_card_titles(self, collection_id: str) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT title FROM cards WHERE collection_id = ? ORDER BY position",
                (collection_id,),
            ).fetchall()
            return [row[0] for row in rows]

    def append_cards(self, collection_id: str, cards: list[DeckCard]) -> int:
        """Append cards to a collection in a single transaction."""
        if not cards:
            return 0
        with self._connect() as conn:
            if conn.execute("SELECT 1 FROM collections WHERE id = ?", (collection_id,)).fetchone() is None:
                raise ValueError(f"Collection not found: {collection_id}")
            row = conn.execute(
                "SELECT MAX(position) FROM cards WHERE collection_id = ?",
                (collection_id,),
            ).fetchone()
            start = (row[0] if row[0] is not None else -1) + 1
            params: list[tuple[Any, ...]] = []
            for offset, card in enumerate(cards):
                params.append(
                    (
                        card.id,
                        collection_id,
                        card.title,
                        card.level,
                        card.detail_level,
                        json.dumps(card.synthesis),
                        json.dumps(card.source_documents),
                        card.session_id,
                        start + offset,
                        card.created_at,
                        card.last_edited_at,
                    )
                )
            conn.executemany(
                """
                INSERT INTO cards
                    (id, collection_id, title, level, detail_level, synthesis_json,
                     source_documents_json, session_id, position, created_at, last_edited_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                params,
            )
            conn.execute(
                "UPDATE collections SET last_modified_at = ? WHERE id = ?",
                (self._now(), collection_id),
            )
        return len(cards)
