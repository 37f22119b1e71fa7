"""
Turn produced card text into store records with collision-free titles.
"""

from __future__ import annotations

from uuid import uuid4

from ...naming import unique_name
from ...store import DeckCard, utc_now
from ..lod import LodLevel
from ..models import ProducedCard


def materialize_cards(
    produced: list[ProducedCard],
    existing_titles: list[str],
    lod: LodLevel,
    source_names: list[str],
    session_id: str,
) -> list[DeckCard]:
    """Build one DeckCard per produced card.

    Titles are made unique against the collection's existing titles and the
    other produced titles; each chosen title is reserved before the next.
    """
    taken = list(existing_titles)
    records: list[DeckCard] = []
    for index, card in enumerate(produced):
        others = [p.title for i, p in enumerate(produced) if i != index]
        title = unique_name(card.title, taken + others)
        taken.append(title)
        now = utc_now()
        records.append(
            DeckCard(
                id=str(uuid4()),
                title=title,
                level=1,
                detail_level=lod.detail_level,
                synthesis={lod.detail_level: f"# {card.title}\n\n{card.content}"},
                created_at=now,
                last_edited_at=now,
                source_documents=list(source_names),
                session_id=session_id,
            )
        )
    return records
