"""Deck package."""

from .lod import LOD_LEVELS, estimate_card_count
from .models import Briefing, BriefingError, Plan, ReviewState, Session, SessionStatus

__all__ = [
    "Briefing",
    "BriefingError",
    "LOD_LEVELS",
    "Plan",
    "ReviewState",
    "Session",
    "SessionStatus",
    "estimate_card_count",
]
