"""Suggestion Generator collaborators.

A generator turns an IdeaRequest into a lazy, finite, non-restartable
async stream of Idea records. Two implementations:

- ClaudeSuggestionGenerator streams JSON Lines from the Anthropic API and
  yields each idea as soon as its line is complete.
- StaticSuggestionGenerator serves a small built-in catalogue, used when
  no API key is configured.

Failures surface as exceptions from the stream; the idea coordinator is
responsible for degrading them to "zero ideas".
"""

import asyncio
import json
import logging
import random
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import AsyncIterator

from anthropic import AsyncAnthropic
from pydantic import BaseModel, Field, ValidationError

from .config import Settings
from .models import AIProfile, AppSettings, Idea, UserPreferences

logger = logging.getLogger(__name__)

# Path to the idea prompt
IDEAS_PROMPT_PATH = Path(__file__).parent / "prompts" / "ideas_prompt.txt"

IDEA_FIELDS = {"id", "title", "description", "whyItFits", "why_it_fits", "rationale", "tags", "metadata"}

DAYS_LABELS = {"weekday": "weekdays only", "weekend": "weekends only", "both": "any day"}


# =============================================================================
# Logging
# =============================================================================


def _log_ideas(message: str, level: str = "info"):
    """Log suggestion generation messages with a greppable prefix."""
    message = f"[IDEAS] {message}"
    if level == "debug":
        logger.debug(message)
    elif level == "warning":
        logger.warning(message)
    elif level == "error":
        logger.error(message)
    else:
        logger.info(message)


# =============================================================================
# Request & Parsing
# =============================================================================


class IdeaRequest(BaseModel):
    """Everything a generator may use to tailor ideas for one round."""

    environment_id: str
    letter: str
    proposer_id: str
    preferences: UserPreferences = Field(default_factory=UserPreferences)
    settings: AppSettings = Field(default_factory=AppSettings)
    ai_profile: AIProfile = Field(default_factory=AIProfile)
    location_hint: str | None = None
    current_proposal: str | None = None
    count: int = 5


def allowed_places(request: IdeaRequest) -> set[str]:
    """Indoor/outdoor kinds allowed by the environment filters and the proposer.

    Turning both filters off means no restriction.
    """
    filters = request.settings.activity_filters
    allowed = {kind for kind, enabled in (("indoor", filters.indoor), ("outdoor", filters.outdoor)) if enabled}
    if not allowed:
        allowed = {"indoor", "outdoor"}
    preferred = (request.preferences.indoor_outdoor or "").strip().lower()
    if preferred in allowed and len(allowed) > 1:
        allowed = {preferred}
    return allowed


def parse_idea_line(line: str, letter: str) -> Idea | None:
    """Parse one JSON Lines record into an Idea.

    Returns None for blank lines, code fences, malformed JSON, and ideas
    whose title does not start with *letter*.
    """
    line = line.strip().rstrip(",")
    if not line or not line.startswith("{"):
        return None
    try:
        raw = json.loads(line)
    except json.JSONDecodeError as e:
        _log_ideas(f"Skipping malformed line ({e}): {line[:80]}", "debug")
        return None
    if not isinstance(raw, dict):
        return None

    title = str(raw.get("title", "")).strip()
    if not title.upper().startswith(letter.upper()):
        _log_ideas(f"Dropping idea {title!r}: does not start with {letter}", "debug")
        return None

    metadata = dict(raw.get("metadata") or {})
    # Anything the model adds beyond the known fields is kept as metadata
    for key, value in raw.items():
        if key not in IDEA_FIELDS:
            metadata[key] = value

    try:
        return Idea(
            id=str(raw.get("id") or uuid.uuid4().hex),
            title=title,
            description=str(raw.get("description", "")),
            why_it_fits=str(raw.get("whyItFits") or raw.get("why_it_fits") or raw.get("rationale") or ""),
            tags=[str(t) for t in raw.get("tags") or []],
            metadata=metadata,
        )
    except ValidationError as e:
        _log_ideas(f"Skipping invalid idea: {e}", "debug")
        return None


def _join(values: list[str], empty: str = "no preference") -> str:
    return ", ".join(values) if values else empty


def load_prompt_template() -> str:
    """Load the idea prompt from file."""
    with open(IDEAS_PROMPT_PATH, "r", encoding="utf-8") as f:
        return f.read()


def build_prompt(request: IdeaRequest, template: str | None = None) -> str:
    """Fill the prompt template from preferences, settings and group history."""
    prefs = request.preferences
    profile = request.ai_profile
    liked = sorted(profile.liked_tags, key=lambda t: -profile.liked_tags[t])
    avoid = list(prefs.no_gos) + [t for t in profile.disliked_tags if t not in prefs.no_gos]
    places = allowed_places(request)

    current = ""
    if request.current_proposal:
        current = (
            f"The proposer is already considering \"{request.current_proposal}\"; "
            f"offer alternatives and refinements around it."
        )

    return (template or load_prompt_template()).format(
        count=request.count,
        letter=request.letter.upper(),
        language=prefs.language,
        styles=_join(prefs.styles),
        budget=_join(prefs.budget_tier),
        duration=_join(prefs.duration_tier),
        time_of_day=_join(prefs.time_of_day),
        indoor_outdoor=places.pop() if len(places) == 1 else "both",
        days=DAYS_LABELS[request.settings.time_preference],
        location=request.location_hint or prefs.location or "unknown",
        liked=_join(liked, "none yet"),
        recent=_join(profile.recent_tags, "nothing yet"),
        avoid=_join(avoid, "nothing"),
        current_proposal=current,
    ).strip()


# =============================================================================
# Generators
# =============================================================================


class SuggestionGenerator(ABC):
    """Produces a lazy stream of ideas for one request."""

    @abstractmethod
    def generate(self, request: IdeaRequest) -> AsyncIterator[Idea]:
        """Return an async iterator of ideas (consumable once)."""


class ClaudeSuggestionGenerator(SuggestionGenerator):
    """Streams ideas from Claude, one JSON object per line."""

    def __init__(
        self,
        api_key: str = "",
        model: str = "claude-sonnet-4-5-20250929",
        max_tokens: int = 2048,
        client: AsyncAnthropic | None = None,
    ) -> None:
        self._client = client or AsyncAnthropic(api_key=api_key)
        self._model = model
        self._max_tokens = max_tokens

    async def generate(self, request: IdeaRequest) -> AsyncIterator[Idea]:
        prompt = build_prompt(request)
        _log_ideas(
            f"Generating {request.count} ideas for {request.environment_id}/{request.letter} "
            f"(proposer {request.proposer_id})"
        )

        buffer = ""
        produced = 0
        async with self._client.messages.stream(
            model=self._model,
            max_tokens=self._max_tokens,
            messages=[{"role": "user", "content": prompt}],
        ) as stream:
            async for text in stream.text_stream:
                buffer += text
                while "\n" in buffer:
                    line, buffer = buffer.split("\n", 1)
                    idea = parse_idea_line(line, request.letter)
                    if idea is not None:
                        produced += 1
                        yield idea

        # Last line may arrive without a trailing newline
        idea = parse_idea_line(buffer, request.letter)
        if idea is not None:
            produced += 1
            yield idea

        _log_ideas(f"Done: {produced} ideas for {request.environment_id}/{request.letter}")


# Offline catalogue: (title, tags, indoor|outdoor|both) per letter
CATALOGUE: dict[str, list[tuple[str, list[str], str]]] = {
    "A": [("Aquarium", ["Nature", "Culture"], "indoor"), ("Archery", ["Sport", "Adventure"], "both"), ("Art-gallery", ["Culture", "Relax"], "indoor")],
    "B": [("Bowling", ["Sport", "Relax"], "indoor"), ("Brunch", ["Food", "Relax"], "both"), ("Boating", ["Nature", "Adventure"], "outdoor")],
    "C": [("Camping", ["Nature", "Adventure"], "outdoor"), ("Cocktails", ["Food", "Relax"], "indoor"), ("Cinema", ["Culture", "Relax"], "indoor")],
    "D": [("Darts", ["Sport", "Relax"], "indoor"), ("Dancing", ["Sport", "Creative"], "indoor"), ("Dinner", ["Food", "Relax"], "indoor")],
    "E": [("Escape-room", ["Adventure", "Creative"], "indoor"), ("Eating-out", ["Food", "Relax"], "both"), ("E-biking", ["Sport", "Nature"], "outdoor")],
    "F": [("Fondue", ["Food", "Home-only"], "indoor"), ("Fishing", ["Nature", "Relax"], "outdoor"), ("Flea-market", ["Culture", "Relax"], "both")],
    "G": [("Go-karting", ["Sport", "Adventure"], "both"), ("Gardening", ["Nature", "Home-only"], "outdoor"), ("Golf", ["Sport", "Nature"], "outdoor")],
    "H": [("Hiking", ["Nature", "Sport"], "outdoor"), ("Hammam", ["Relax"], "indoor"), ("High-ropes", ["Adventure", "Sport"], "outdoor")],
    "I": [("Improv", ["Culture", "Creative"], "indoor"), ("Inline-skating", ["Sport", "Nature"], "outdoor"), ("Island-hopping", ["Adventure", "Nature"], "outdoor")],
    "J": [("Jazz", ["Culture", "Relax"], "both"), ("Jogging", ["Sport", "Nature"], "outdoor"), ("Jigsaw", ["Creative", "Home-only"], "indoor")],
    "K": [("Kayaking", ["Nature", "Sport"], "outdoor"), ("Karaoke", ["Creative", "Relax"], "indoor"), ("Kite-flying", ["Nature", "Creative"], "outdoor")],
    "L": [("Laser-tag", ["Sport", "Adventure"], "indoor"), ("Lake-swim", ["Nature", "Sport"], "outdoor"), ("Lecture", ["Culture"], "indoor")],
    "M": [("Museum", ["Culture"], "indoor"), ("Minigolf", ["Sport", "Relax"], "both"), ("Massage", ["Relax"], "indoor")],
    "N": [("Night-walk", ["Nature", "Adventure"], "outdoor"), ("Noodle-making", ["Food", "Creative"], "indoor"), ("Nature-reserve", ["Nature"], "outdoor")],
    "O": [("Opera", ["Culture"], "indoor"), ("Orchard-picking", ["Nature", "Food"], "outdoor"), ("Observatory", ["Culture", "Adventure"], "both")],
    "P": [("Picnic", ["Food", "Nature"], "outdoor"), ("Pottery", ["Creative"], "indoor"), ("Planetarium", ["Culture", "Relax"], "indoor")],
    "Q": [("Quiz-night", ["Culture", "Relax"], "indoor"), ("Quad-tour", ["Adventure", "Nature"], "outdoor"), ("Quiche-baking", ["Food", "Home-only"], "indoor")],
    "R": [("Rowing", ["Sport", "Nature"], "outdoor"), ("Riding", ["Nature", "Adventure"], "outdoor"), ("Restaurant", ["Food"], "indoor")],
    "S": [("Sauna", ["Relax"], "indoor"), ("Surfing", ["Sport", "Adventure"], "outdoor"), ("Scavenger-hunt", ["Adventure", "Creative"], "both")],
    "T": [("Theatre", ["Culture"], "indoor"), ("Tennis", ["Sport"], "both"), ("Thermal-spa", ["Relax"], "both")],
    "U": [("Ukulele-lesson", ["Creative", "Culture"], "indoor"), ("Urban-safari", ["Adventure", "Culture"], "outdoor"), ("Upcycling", ["Creative", "Home-only"], "indoor")],
    "V": [("Vineyard", ["Food", "Nature"], "outdoor"), ("Volleyball", ["Sport"], "both"), ("Vernissage", ["Culture"], "indoor")],
    "W": [("Wine-tasting", ["Food", "Culture"], "indoor"), ("Wellness", ["Relax"], "indoor"), ("Wakeboarding", ["Sport", "Adventure"], "outdoor")],
    "X": [("Xmas-market", ["Food", "Culture"], "outdoor"), ("Xbox-night", ["Home-only", "Relax"], "indoor"), ("XXL-burger", ["Food"], "indoor")],
    "Y": [("Yoga", ["Sport", "Relax"], "both"), ("Yacht-trip", ["Adventure", "Nature"], "outdoor"), ("Yurt-night", ["Nature", "Adventure"], "outdoor")],
    "Z": [("Zoo", ["Nature", "Culture"], "outdoor"), ("Zumba", ["Sport"], "indoor"), ("Zip-lining", ["Adventure", "Sport"], "outdoor")],
}


class StaticSuggestionGenerator(SuggestionGenerator):
    """Shuffled picks from the built-in catalogue.

    Entries are narrowed to the allowed indoor/outdoor kinds first and then
    stripped of excluded tags. A step that would leave nothing is skipped.
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    async def generate(self, request: IdeaRequest) -> AsyncIterator[Idea]:
        letter = request.letter.upper()
        entries = list(CATALOGUE.get(letter, []))

        places = allowed_places(request)
        placed = [entry for entry in entries if entry[2] == "both" or entry[2] in places]
        if placed:
            entries = placed

        excluded = {t.lower() for t in request.preferences.no_gos}
        allowed = [entry for entry in entries if not excluded.intersection(t.lower() for t in entry[1])]
        if allowed:
            entries = allowed
        self._rng.shuffle(entries)

        for index, (title, tags, place) in enumerate(entries[: request.count]):
            await asyncio.sleep(0)
            yield Idea(
                id=f"static-{letter}-{index}-{uuid.uuid4().hex[:8]}",
                title=title,
                description=f"{title.replace('-', ' ')} together",
                why_it_fits=f"A classic {letter} activity.",
                tags=list(tags),
                metadata={"source": "catalogue", "indoorOutdoor": place},
            )


def create_suggestion_generator(settings: Settings) -> SuggestionGenerator:
    """Anthropic-backed generator when configured, catalogue otherwise."""
    if settings.ai_enabled:
        return ClaudeSuggestionGenerator(
            api_key=settings.anthropic_api_key,
            model=settings.anthropic_model,
            max_tokens=settings.idea_max_tokens,
        )
    _log_ideas("No Anthropic API key configured, using the static catalogue", "warning")
    return StaticSuggestionGenerator()
