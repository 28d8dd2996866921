"""Idea Cache / Prefetch Coordinator.

Ideas are cached per (environment, proposer, letter) inside the proposer's
preferences document. A cache miss starts one background generation whose
results are appended to a visible list as they stream in; when the stream
ends the full list is written back to the preferences cache.

At most one generation runs per key (single-flight). A prefetch and an
explicit "generate" that race share the same IdeaFlight and therefore see
the same final list and the same cache write. Cache entries are only
replaced by an explicit regeneration.
"""

import asyncio
import logging
from typing import AsyncIterator, NamedTuple

from .models import Idea, UserPreferences, normalize_member_id
from .round_store import RoundStore
from .suggestion_service import IdeaRequest, SuggestionGenerator

logger = logging.getLogger(__name__)

FlightKey = tuple[str, str, str]


class IdeaFlight:
    """Shared handle on one in-progress generation.

    ``items`` grows as ideas arrive. ``stream()`` replays what already
    arrived and then follows live; ``result()`` waits for completion.
    """

    def __init__(self, key: FlightKey) -> None:
        self.key = key
        self.items: list[Idea] = []
        self.failed = False
        self._finished = asyncio.Event()
        self._changed = asyncio.Condition()

    @property
    def done(self) -> bool:
        return self._finished.is_set()

    async def publish(self, idea: Idea) -> None:
        async with self._changed:
            self.items.append(idea)
            self._changed.notify_all()

    async def finish(self, failed: bool = False) -> None:
        async with self._changed:
            self.failed = failed
            self._finished.set()
            self._changed.notify_all()

    async def stream(self) -> AsyncIterator[Idea]:
        """Yield every idea of this flight, in arrival order, until it ends."""
        index = 0
        while True:
            async with self._changed:
                await self._changed.wait_for(lambda: index < len(self.items) or self.done)
                batch = self.items[index:]
                finished = self.done
            for idea in batch:
                yield idea
            index += len(batch)
            if finished and index >= len(self.items):
                return

    async def result(self) -> list[Idea]:
        """Wait for the generation to end and return everything it produced."""
        await self._finished.wait()
        return list(self.items)


class IdeaView(NamedTuple):
    """What a round viewer gets: cached ideas, or a flight to follow."""

    letter: str
    proposer_id: str
    ideas: list[Idea] | None
    flight: IdeaFlight | None


class IdeaCoordinator:
    """Read-through cache and prefetcher over a Suggestion Generator."""

    def __init__(
        self,
        store: RoundStore,
        generator: SuggestionGenerator,
        ideas_per_request: int = 5,
    ) -> None:
        self._store = store
        self._generator = generator
        self._ideas_per_request = ideas_per_request
        self._flights: dict[FlightKey, IdeaFlight] = {}
        self._tasks: set[asyncio.Task] = set()
        self._preference_locks: dict[tuple[str, str], asyncio.Lock] = {}

    @staticmethod
    def _key(environment_id: str, proposer_id: str, letter: str) -> FlightKey:
        return (environment_id, normalize_member_id(proposer_id), letter.strip().upper())

    def in_flight(self, environment_id: str, proposer_id: str, letter: str) -> IdeaFlight | None:
        return self._flights.get(self._key(environment_id, proposer_id, letter))

    async def cached_ideas(self, environment_id: str, proposer_id: str, letter: str) -> list[Idea] | None:
        preferences = await self._store.get_preferences(environment_id, proposer_id)
        return preferences.cached_ideas(letter)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    async def view_round(
        self, environment_id: str, letter: str, location_hint: str | None = None
    ) -> IdeaView | None:
        """Round opened: serve cached ideas or start warming the cache.

        Returns None if the round does not exist.
        """
        round_ = await self._store.get_round(environment_id, letter)
        if round_ is None:
            return None
        proposer = round_.proposer_user_id
        cached = await self.cached_ideas(environment_id, proposer, round_.letter)
        if cached is not None:
            return IdeaView(round_.letter, proposer, cached, None)

        flight = self._start_or_join(
            environment_id, proposer, round_.letter,
            location_hint=location_hint, current_proposal=round_.proposal_text,
        )
        return IdeaView(round_.letter, proposer, None, flight)

    async def prefetch(
        self, environment_id: str, proposer_id: str, letter: str,
        location_hint: str | None = None,
    ) -> IdeaFlight | None:
        """Warm the cache in the background. None on a cache hit."""
        if await self.cached_ideas(environment_id, proposer_id, letter) is not None:
            return None
        return self._start_or_join(environment_id, proposer_id, letter, location_hint=location_hint)

    async def generate(
        self,
        environment_id: str,
        proposer_id: str,
        letter: str,
        *,
        regenerate: bool = False,
        preferences: UserPreferences | None = None,
        location_hint: str | None = None,
        current_proposal: str | None = None,
    ) -> list[Idea]:
        """Explicit "generate ideas" action.

        A cache hit returns immediately unless *regenerate* is set. Otherwise
        the caller joins the running flight for this key, or starts one, and
        waits for the full list.
        """
        if not regenerate:
            cached = await self.cached_ideas(environment_id, proposer_id, letter)
            if cached is not None:
                return cached
        flight = self._start_or_join(
            environment_id, proposer_id, letter,
            preferences=preferences, location_hint=location_hint,
            current_proposal=current_proposal,
        )
        return await flight.result()

    async def drain(self) -> None:
        """Wait for every background generation to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Single-flight machinery
    # ------------------------------------------------------------------

    def _start_or_join(
        self,
        environment_id: str,
        proposer_id: str,
        letter: str,
        preferences: UserPreferences | None = None,
        location_hint: str | None = None,
        current_proposal: str | None = None,
    ) -> IdeaFlight:
        # No await between lookup and registration: exactly one flight per key
        key = self._key(environment_id, proposer_id, letter)
        flight = self._flights.get(key)
        if flight is not None:
            return flight

        flight = IdeaFlight(key)
        self._flights[key] = flight
        task = asyncio.create_task(
            self._run(flight, preferences, location_hint, current_proposal),
            name=f"ideas-{environment_id}-{key[2]}-{key[1]}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return flight

    async def _run(
        self,
        flight: IdeaFlight,
        preferences: UserPreferences | None,
        location_hint: str | None,
        current_proposal: str | None,
    ) -> None:
        environment_id, proposer_id, letter = flight.key
        failed = False
        try:
            try:
                if preferences is None:
                    preferences = await self._store.get_preferences(environment_id, proposer_id)
                request = IdeaRequest(
                    environment_id=environment_id,
                    letter=letter,
                    proposer_id=proposer_id,
                    preferences=preferences,
                    settings=await self._store.get_settings(environment_id),
                    ai_profile=await self._store.get_ai_profile(environment_id),
                    location_hint=location_hint,
                    current_proposal=current_proposal,
                    count=self._ideas_per_request,
                )
                async for idea in self._generator.generate(request):
                    await flight.publish(idea)
            except Exception as e:
                failed = True
                logger.error(
                    f"Idea generation failed for {environment_id}/{letter} "
                    f"after {len(flight.items)} ideas: {type(e).__name__}: {e}"
                )

            if not failed and flight.items:
                try:
                    await self._write_cache(environment_id, proposer_id, letter, flight.items)
                except Exception as e:
                    logger.error(f"Could not cache ideas for {environment_id}/{letter}: {e}")
        finally:
            if self._flights.get(flight.key) is flight:
                del self._flights[flight.key]
            await flight.finish(failed)

    async def _write_cache(
        self, environment_id: str, proposer_id: str, letter: str, ideas: list[Idea]
    ) -> None:
        # Serialize read-modify-write of one preferences document
        lock = self._preference_locks.setdefault((environment_id, proposer_id), asyncio.Lock())
        async with lock:
            preferences = await self._store.get_preferences(environment_id, proposer_id)
            await self._store.save_preferences(
                environment_id, preferences.with_cached_ideas(letter, ideas), proposer_id
            )
        logger.info(f"Cached {len(ideas)} ideas for {environment_id}/{letter} ({proposer_id})")
