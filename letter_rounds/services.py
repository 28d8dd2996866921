"""Wiring of stores, engines and coordinators into one container."""

import logging
from dataclasses import dataclass, field

from sqlalchemy.engine import Engine

from .adapters import MemoryCache, MemoryRemoteStore, SqlCache, SqlRemoteStore
from .assignment import AssignmentEngine
from .config import Settings
from .database import (
    SessionFactory,
    create_db_engine,
    create_session_factory,
    dispose_engine,
    init_cache_db,
    init_remote_db,
)
from .debounce import Debouncer
from .idea_cache import IdeaCoordinator
from .round_store import RoundStore
from .state_machine import RoundStateMachine
from .suggestion_service import StaticSuggestionGenerator, SuggestionGenerator, create_suggestion_generator

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the HTTP layer talks to."""

    store: RoundStore
    assignment: AssignmentEngine
    rounds: RoundStateMachine
    ideas: IdeaCoordinator
    notes: Debouncer
    remote_session_factory: SessionFactory | None = None
    engines: list[Engine] = field(default_factory=list)

    async def close(self) -> None:
        """Flush pending writes, wait for idea generation, release connections."""
        await self.notes.flush()
        await self.ideas.drain()
        for engine in self.engines:
            dispose_engine(engine)
        logger.info("Services closed")


def _assemble(
    store: RoundStore,
    generator: SuggestionGenerator,
    ideas_per_request: int,
    debounce_seconds: float,
) -> dict:
    return {
        "store": store,
        "assignment": AssignmentEngine(store),
        "rounds": RoundStateMachine(store),
        "ideas": IdeaCoordinator(store, generator, ideas_per_request),
        "notes": Debouncer(debounce_seconds),
    }


def build_services(settings: Settings) -> Services:
    """Build the SQL-backed service graph from settings."""
    remote_engine = create_db_engine(settings.database_url)
    cache_engine = create_db_engine(settings.cache_url)
    init_remote_db(remote_engine)
    init_cache_db(cache_engine)

    remote_sessions = create_session_factory(remote_engine)
    store = RoundStore(
        SqlCache(create_session_factory(cache_engine)),
        SqlRemoteStore(remote_sessions),
    )
    return Services(
        **_assemble(
            store,
            create_suggestion_generator(settings),
            settings.ideas_per_request,
            settings.debounce_seconds,
        ),
        remote_session_factory=remote_sessions,
        engines=[remote_engine, cache_engine],
    )


def build_memory_services(
    generator: SuggestionGenerator | None = None,
    ideas_per_request: int = 5,
    debounce_seconds: float = 0.0,
) -> Services:
    """In-process service graph (no database), used for tests and demos."""
    store = RoundStore(MemoryCache(), MemoryRemoteStore())
    return Services(
        **_assemble(store, generator or StaticSuggestionGenerator(), ideas_per_request, debounce_seconds)
    )
