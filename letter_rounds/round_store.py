"""Round Store: read-through / write-through persistence over two tiers.

Reads try the remote store first and refresh the local cache on success;
on failure (or when the remote has nothing) the cached value is served.
Writes update the cache first, then attempt the remote write. A failed
remote write is logged and never rolled back locally; the next successful
save reconciles the remote copy.

The store does not validate round transitions, that is the state
machine's job.
"""

import logging
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from . import assignment
from .adapters.cache import CacheAdapter
from .adapters.remote_store import (
    AI_PROFILE,
    CURRENT,
    ENVIRONMENT,
    PREFERENCES,
    ROUNDS,
    SAVED_IDEAS,
    SETTINGS,
    RemoteStore,
)
from .exceptions import validate_environment_id
from .models import (
    AIProfile,
    AppSettings,
    AssignmentMode,
    Environment,
    LetterRound,
    MAIN_PREFERENCES_KEY,
    SavedIdea,
    UserPreferences,
    normalize_member_id,
)

logger = logging.getLogger(__name__)


def _preferences_key(participant_id: str | None) -> str:
    return normalize_member_id(participant_id) if participant_id else MAIN_PREFERENCES_KEY


class RoundStore:
    """Single point of truth for rounds, settings, preferences and friends.

    Cache keys are ``"<environment_id>:<collection>[:<doc_id>]"``.
    """

    def __init__(self, cache: CacheAdapter, remote: RemoteStore) -> None:
        self._cache = cache
        self._remote = remote

    # ------------------------------------------------------------------
    # Tier plumbing
    # ------------------------------------------------------------------

    @staticmethod
    def _cache_key(environment_id: str, collection: str, doc_id: str | None = None) -> str:
        parts = [environment_id, collection]
        if doc_id is not None:
            parts.append(doc_id)
        return ":".join(parts)

    async def _read_through(
        self, cache_key: str, fetch: Callable[[], Awaitable[Any]], describe: str
    ) -> Any | None:
        """Remote first; empty or failed remote reads fall back to the cache."""
        try:
            value = await fetch()
        except Exception as e:
            logger.warning(f"Remote read failed for {describe}, serving cache: {e}")
            value = None
        if value:
            await self._cache.set(cache_key, value)
            return value
        return await self._cache.get(cache_key)

    async def _write_through(
        self, cache_key: str, value: Any, push: Callable[[], Awaitable[Any]], describe: str
    ) -> bool:
        """Cache first, then remote. Returns whether the remote write landed."""
        await self._cache.set(cache_key, value)
        try:
            await push()
            return True
        except Exception as e:
            logger.warning(f"Remote write failed for {describe}, kept in cache only: {e}")
            return False

    async def _get_document(self, environment_id: str, collection: str, doc_id: str) -> dict | None:
        environment_id = validate_environment_id(environment_id)
        return await self._read_through(
            self._cache_key(environment_id, collection, doc_id),
            lambda: self._remote.get(environment_id, collection, doc_id),
            f"{environment_id}/{collection}/{doc_id}",
        )

    async def _set_document(self, environment_id: str, collection: str, doc_id: str, data: dict) -> bool:
        environment_id = validate_environment_id(environment_id)
        return await self._write_through(
            self._cache_key(environment_id, collection, doc_id),
            data,
            lambda: self._remote.set(environment_id, collection, doc_id, data),
            f"{environment_id}/{collection}/{doc_id}",
        )

    # ------------------------------------------------------------------
    # Rounds
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_rounds(documents: list[dict]) -> list[LetterRound]:
        rounds = []
        for document in documents:
            try:
                rounds.append(LetterRound.from_document(document))
            except ValidationError as e:
                logger.warning(f"Skipping undecodable round document {document.get('letter')!r}: {e}")
        return sorted(rounds, key=lambda r: r.letter)

    async def get_rounds(self, environment_id: str) -> list[LetterRound]:
        """Return the rounds sorted by letter, with legacy statuses migrated.

        Never raises on connectivity problems; an empty list means nothing
        is known locally or remotely.
        """
        environment_id = validate_environment_id(environment_id)
        cache_key = self._cache_key(environment_id, ROUNDS)
        try:
            documents = await self._remote.get_all(environment_id, ROUNDS)
        except Exception as e:
            logger.warning(f"Remote read failed for {environment_id}/rounds, serving cache: {e}")
            documents = None

        if documents:
            rounds = self._parse_rounds(documents)
            await self._cache.set(cache_key, [r.to_document() for r in rounds])
            return rounds

        cached = await self._cache.get(cache_key)
        return self._parse_rounds(cached or [])

    async def save_rounds(self, environment_id: str, rounds: list[LetterRound]) -> bool:
        """Persist the full round set: cache synchronously, then one remote batch.

        Returns whether the remote batch committed. The cache write stands
        either way.
        """
        environment_id = validate_environment_id(environment_id)
        ordered = sorted(rounds, key=lambda r: r.letter)
        documents = {r.letter: r.to_document() for r in ordered}
        return await self._write_through(
            self._cache_key(environment_id, ROUNDS),
            list(documents.values()),
            lambda: self._remote.batch_set(environment_id, ROUNDS, documents),
            f"{environment_id}/rounds (batch of {len(documents)})",
        )

    async def get_round(self, environment_id: str, letter: str) -> LetterRound | None:
        letter = letter.strip().upper()
        rounds = await self.get_rounds(environment_id)
        return next((r for r in rounds if r.letter == letter), None)

    async def update_round(self, environment_id: str, round_: LetterRound) -> list[LetterRound]:
        """Replace one round by letter and save the whole set."""
        rounds = await self.get_rounds(environment_id)
        updated = [r for r in rounds if r.letter != round_.letter] + [round_]
        updated.sort(key=lambda r: r.letter)
        await self.save_rounds(environment_id, updated)
        return updated

    # ------------------------------------------------------------------
    # Environment lifecycle
    # ------------------------------------------------------------------

    async def initialize_environment(
        self,
        environment_id: str,
        members: list[str],
        starting_member: str,
        order: list[str] | None = None,
        *,
        mode: AssignmentMode = AssignmentMode.SEQUENTIAL,
        admin_email: str | None = None,
        name: str | None = None,
        member_names: dict[str, str] | None = None,
    ) -> list[LetterRound]:
        """Create the environment, its settings and all 26 rounds.

        Calling this again overwrites every round; guarding against
        re-invocation is the caller's job.

        Raises:
            InvalidEnvironmentId: If *environment_id* is malformed.
            InvalidMemberOrder: If members/starting member/order disagree.
        """
        environment_id = validate_environment_id(environment_id)
        rotation = assignment.resolve_member_order(members, starting_member, order)

        environment = Environment(
            id=environment_id,
            name=name,
            member_emails=members,
            member_names=member_names or {},
            member_order=rotation,
            admin_email=admin_email,
            mode=mode,
        )
        settings = (await self.get_settings(environment_id)).model_copy(
            update={"starting_person": rotation[0]}
        )
        rounds = assignment.build_rounds(rotation)

        await self.save_environment(environment)
        await self.save_settings(environment_id, settings)
        await self.save_rounds(environment_id, rounds)
        logger.info(
            f"Initialized environment {environment_id} "
            f"({len(environment.member_emails)} members, mode={mode.value})"
        )
        return rounds

    async def reset_rounds(
        self,
        environment_id: str,
        members: list[str],
        starting_member: str,
        order: list[str] | None = None,
    ) -> list[LetterRound]:
        """Regenerate all 26 rounds from scratch, discarding prior progress.

        The environment takes over *members* and the new rotation, and the
        draw history is cleared.
        """
        environment_id = validate_environment_id(environment_id)
        rotation = assignment.resolve_member_order(members, starting_member, order)
        rounds = assignment.build_rounds(rotation)
        await self.save_rounds(environment_id, rounds)

        environment = await self.get_environment(environment_id)
        if environment is not None:
            environment = Environment.model_validate({
                **environment.model_dump(),
                "member_emails": members,
                "member_order": rotation,
                "drawn_order": [],
            })
            await self.save_environment(environment)
        settings = await self.get_settings(environment_id)
        if settings.starting_person != rotation[0]:
            await self.save_settings(
                environment_id, settings.model_copy(update={"starting_person": rotation[0]})
            )

        logger.info(f"Reset all rounds of {environment_id}")
        return rounds

    async def get_environment(self, environment_id: str) -> Environment | None:
        data = await self._get_document(environment_id, ENVIRONMENT, CURRENT)
        return Environment.from_document(data) if data else None

    async def save_environment(self, environment: Environment) -> bool:
        return await self._set_document(environment.id, ENVIRONMENT, CURRENT, environment.to_document())

    # ------------------------------------------------------------------
    # Settings / preferences / AI profile
    # ------------------------------------------------------------------

    async def get_settings(self, environment_id: str) -> AppSettings:
        """Return the settings document, or defaults when none exists."""
        data = await self._get_document(environment_id, SETTINGS, CURRENT)
        return AppSettings.from_document(data) if data else AppSettings()

    async def save_settings(self, environment_id: str, settings: AppSettings) -> bool:
        return await self._set_document(environment_id, SETTINGS, CURRENT, settings.to_document())

    async def get_preferences(
        self, environment_id: str, participant_id: str | None = None
    ) -> UserPreferences:
        """Return a participant's preferences ("main" when no identity is given)."""
        data = await self._get_document(environment_id, PREFERENCES, _preferences_key(participant_id))
        return UserPreferences.from_document(data) if data else UserPreferences()

    async def save_preferences(
        self,
        environment_id: str,
        preferences: UserPreferences,
        participant_id: str | None = None,
    ) -> bool:
        return await self._set_document(
            environment_id, PREFERENCES, _preferences_key(participant_id), preferences.to_document()
        )

    async def get_ai_profile(self, environment_id: str) -> AIProfile:
        data = await self._get_document(environment_id, AI_PROFILE, CURRENT)
        return AIProfile.from_document(data) if data else AIProfile()

    async def save_ai_profile(self, environment_id: str, profile: AIProfile) -> bool:
        return await self._set_document(environment_id, AI_PROFILE, CURRENT, profile.to_document())

    # ------------------------------------------------------------------
    # Saved ideas
    # ------------------------------------------------------------------

    async def list_saved_ideas(self, environment_id: str) -> list[SavedIdea]:
        environment_id = validate_environment_id(environment_id)
        documents = await self._read_through(
            self._cache_key(environment_id, SAVED_IDEAS),
            lambda: self._remote.get_all(environment_id, SAVED_IDEAS),
            f"{environment_id}/savedIdeas",
        )
        ideas = [SavedIdea.from_document(d) for d in documents or []]
        return sorted(ideas, key=lambda s: s.saved_at)

    async def save_idea(self, environment_id: str, saved: SavedIdea) -> bool:
        environment_id = validate_environment_id(environment_id)
        current = [s.to_document() for s in await self.list_saved_ideas(environment_id)]
        document = saved.to_document()
        updated = [d for d in current if d.get("id") != saved.id] + [document]
        return await self._write_through(
            self._cache_key(environment_id, SAVED_IDEAS),
            updated,
            lambda: self._remote.set(environment_id, SAVED_IDEAS, saved.id, document),
            f"{environment_id}/savedIdeas/{saved.id}",
        )

    async def delete_saved_idea(self, environment_id: str, idea_id: str) -> bool:
        """Remove a bookmark. Returns ``True`` if it was known locally."""
        environment_id = validate_environment_id(environment_id)
        cache_key = self._cache_key(environment_id, SAVED_IDEAS)
        current = [s.to_document() for s in await self.list_saved_ideas(environment_id)]
        remaining = [d for d in current if d.get("id") != idea_id]
        await self._write_through(
            cache_key,
            remaining,
            lambda: self._remote.delete(environment_id, SAVED_IDEAS, idea_id),
            f"{environment_id}/savedIdeas/{idea_id} (delete)",
        )
        return len(remaining) != len(current)
