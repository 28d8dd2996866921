"""Per-participant preferences, ideas, AI profile and saved ideas."""

from datetime import datetime
from typing import Any

from pydantic import Field, field_validator

from .base import DocumentModel
from .round import ALPHABET

# Sentinel preferences key used when no participant identity is given
MAIN_PREFERENCES_KEY = "main"


class Idea(DocumentModel):
    """One generated activity suggestion."""

    id: str
    title: str
    description: str = ""
    why_it_fits: str = ""
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def rationale(self) -> str:
        return self.why_it_fits


class UserPreferences(DocumentModel):
    """Customization of one participant plus the per-letter idea cache.

    idea_cache maps a letter to the ideas previously generated for it.
    """

    language: str = "en"
    budget_tier: list[str] = Field(default_factory=list)
    duration_tier: list[str] = Field(default_factory=list)
    time_of_day: list[str] = Field(default_factory=list)
    styles: list[str] = Field(default_factory=list)
    no_gos: list[str] = Field(default_factory=list)
    radius_km: int | None = None
    indoor_outdoor: str | None = None
    kids_included: bool | None = None
    car_available: bool | None = None
    location: str | None = None
    completed_at: datetime | None = None
    idea_cache: dict[str, list[Idea]] = Field(default_factory=dict)

    @field_validator("idea_cache", mode="before")
    @classmethod
    def uppercase_letters(cls, v):
        if v is None:
            return {}
        return {str(k).upper(): ideas for k, ideas in v.items() if str(k).upper() in ALPHABET}

    def cached_ideas(self, letter: str) -> list[Idea] | None:
        return self.idea_cache.get(letter.upper())

    def with_cached_ideas(self, letter: str, ideas: list[Idea]) -> "UserPreferences":
        cache = dict(self.idea_cache)
        cache[letter.upper()] = list(ideas)
        return self.model_copy(update={"idea_cache": cache})


class AIProfile(DocumentModel):
    """Environment-wide signal used to bias suggestion generation."""

    liked_tags: dict[str, int] = Field(default_factory=dict)
    disliked_tags: dict[str, int] = Field(default_factory=dict)
    recent_tags: list[str] = Field(default_factory=list)
    updated_at: datetime | None = None


class SavedIdea(DocumentModel):
    """An idea a participant bookmarked outside the round flow."""

    id: str
    idea: Idea
    saved_by: str
    letter: str | None = None
    saved_at: datetime = Field(default_factory=datetime.utcnow)
