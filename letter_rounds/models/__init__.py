"""Data models for letter rounds."""

from .base import Base, CacheBase, TimestampMixin, DocumentModel, normalize_member_id
from .documents import StoredDocument, CacheEntry
from .round import ALPHABET, LEGACY_STATUSES, RoundStatus, LetterRound, aggregate_rating
from .environment import AssignmentMode, Environment, ActivityFilters, AppSettings
from .preferences import (
    MAIN_PREFERENCES_KEY,
    Idea,
    UserPreferences,
    AIProfile,
    SavedIdea,
)

__all__ = [
    # Base
    "Base",
    "CacheBase",
    "TimestampMixin",
    "DocumentModel",
    "normalize_member_id",
    # Storage tables
    "StoredDocument",
    "CacheEntry",
    # Rounds
    "ALPHABET",
    "LEGACY_STATUSES",
    "RoundStatus",
    "LetterRound",
    "aggregate_rating",
    # Environment
    "AssignmentMode",
    "Environment",
    "ActivityFilters",
    "AppSettings",
    # Preferences
    "MAIN_PREFERENCES_KEY",
    "Idea",
    "UserPreferences",
    "AIProfile",
    "SavedIdea",
]
