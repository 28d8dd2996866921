"""Assignment Engine: decides which participant proposes which letter.

Two modes:

- sequential: letter index mod rotation length. Pure and idempotent.
- random: letters are revealed one at a time by a draw. The proposer of a
  drawn letter is chosen by draw position, not by letter, so everybody
  keeps their turn slot whatever letter lands in it.

Reassignment only ever touches rounds that have not started yet.
"""

import asyncio
import logging
import random
from datetime import datetime
from typing import TYPE_CHECKING

from .exceptions import InvalidMemberOrder
from .models import (
    ALPHABET,
    AssignmentMode,
    LetterRound,
    RoundStatus,
    normalize_member_id,
)

if TYPE_CHECKING:
    from .round_store import RoundStore

logger = logging.getLogger(__name__)

# A new letter may only be drawn once the previous one got this far
DRAW_READY_STATUSES = (RoundStatus.PLANNED, RoundStatus.DONE)


# =============================================================================
# Sequential mode
# =============================================================================


def resolve_member_order(
    members: list[str], starting_member: str, order: list[str] | None = None
) -> list[str]:
    """Return the proposer rotation.

    An explicit *order* wins; otherwise the rotation is the starting member
    followed by the other members in list order.

    Raises:
        InvalidMemberOrder: If there are no members, the starting member is
            not one of them, or *order* names a non-member or leaves one out.
    """
    normalized = []
    for member in members:
        key = normalize_member_id(member)
        if key not in normalized:
            normalized.append(key)
    if not normalized:
        raise InvalidMemberOrder("An environment needs at least one member")

    if order:
        return check_rotation([normalize_member_id(m) for m in order], normalized)

    starting = normalize_member_id(starting_member)
    if starting not in normalized:
        raise InvalidMemberOrder(f"Starting member {starting!r} is not a member")
    return [starting] + [m for m in normalized if m != starting]


def check_rotation(rotation: list[str], members: list[str]) -> list[str]:
    """Validate that *rotation* covers exactly the *members*.

    Repeats are tolerated; non-members and left-out members are not.
    """
    if not rotation:
        raise InvalidMemberOrder("Proposer rotation must not be empty")
    strangers = [m for m in rotation if m not in members]
    if strangers:
        raise InvalidMemberOrder(f"Not members of the environment: {strangers}")
    missing = [m for m in members if m not in rotation]
    if missing:
        raise InvalidMemberOrder(f"Members missing from the rotation: {missing}")
    return rotation


def proposer_for_index(index: int, member_order: list[str]) -> str:
    """Proposer of the *index*-th slot in the rotation."""
    if not member_order:
        raise InvalidMemberOrder("Proposer rotation must not be empty")
    return member_order[index % len(member_order)]


def proposer_for_letter(letter: str, member_order: list[str]) -> str:
    """Sequential-mode proposer of *letter* (A -> slot 0, B -> slot 1, ...)."""
    return proposer_for_index(ALPHABET.index(letter.upper()), member_order)


def build_rounds(member_order: list[str], now: datetime | None = None) -> list[LetterRound]:
    """Generate the 26 NotStarted rounds with sequential assignment."""
    now = now or datetime.utcnow()
    return [
        LetterRound(
            letter=letter,
            proposer_user_id=proposer_for_index(index, member_order),
            status=RoundStatus.NOT_STARTED,
            created_at=now,
            updated_at=now,
        )
        for index, letter in enumerate(ALPHABET)
    ]


def reassign_upcoming_proposers(
    rounds: list[LetterRound],
    member_order: list[str],
    drawn_order: list[str] | None = None,
) -> list[LetterRound]:
    """Recompute proposers of NotStarted rounds only.

    With *drawn_order* (random mode) a drawn round's slot is its draw
    position and undrawn rounds are left alone; otherwise the slot is the
    letter index. Rounds already in progress or done are returned as-is.
    """
    result = []
    for round_ in rounds:
        if round_.status != RoundStatus.NOT_STARTED:
            result.append(round_)
            continue

        if drawn_order is None:
            proposer = proposer_for_letter(round_.letter, member_order)
        elif round_.letter in drawn_order:
            proposer = proposer_for_index(drawn_order.index(round_.letter), member_order)
        else:
            result.append(round_)
            continue

        if proposer != round_.proposer_user_id:
            round_ = round_.updated(proposer_user_id=proposer)
        result.append(round_)
    return result


# =============================================================================
# Random mode
# =============================================================================


def remaining_letters(drawn_order: list[str]) -> list[str]:
    """Alphabet minus the letters already drawn, in alphabetical order."""
    drawn = set(drawn_order)
    return [letter for letter in ALPHABET if letter not in drawn]


def can_draw(drawn_order: list[str], rounds: list[LetterRound]) -> bool:
    """Fairness gate for the next draw.

    Refused when every letter is drawn, or when the most recently drawn
    round is not yet Planned or Done. The first draw is always allowed.
    """
    if len(drawn_order) >= len(ALPHABET):
        return False
    if not drawn_order:
        return True
    last = next((r for r in rounds if r.letter == drawn_order[-1]), None)
    return last is not None and last.status in DRAW_READY_STATUSES


def draw_proposer(drawn_order: list[str], member_order: list[str]) -> str:
    """Proposer of the next drawn letter, by draw position."""
    return proposer_for_index(len(drawn_order), member_order)


class AssignmentEngine:
    """Executes draws and reassignments against the Round Store."""

    def __init__(self, store: "RoundStore", rng: random.Random | None = None) -> None:
        self._store = store
        self._rng = rng or random.Random()
        self._locks: dict[str, asyncio.Lock] = {}

    def _environment_lock(self, environment_id: str) -> asyncio.Lock:
        return self._locks.setdefault(environment_id, asyncio.Lock())

    async def can_draw_next(self, environment_id: str) -> bool:
        """Whether a random-mode draw would currently be accepted."""
        environment = await self._store.get_environment(environment_id)
        if environment is None or environment.mode != AssignmentMode.RANDOM:
            return False
        rounds = await self._store.get_rounds(environment_id)
        return can_draw(environment.drawn_order, rounds)

    async def draw_next_letter(self, environment_id: str) -> LetterRound | None:
        """Reveal the next letter in random mode.

        Returns the freshly assigned round, or ``None`` when the draw is
        refused (not random mode, all letters drawn, or fairness gate).

        The round write happens before the draw-history write; the latter
        is the commit point of the draw.
        """
        async with self._environment_lock(environment_id):
            environment = await self._store.get_environment(environment_id)
            if environment is None or environment.mode != AssignmentMode.RANDOM:
                logger.info(f"Draw refused for {environment_id}: not in random mode")
                return None

            rounds = await self._store.get_rounds(environment_id)
            if not can_draw(environment.drawn_order, rounds):
                logger.info(
                    f"Draw refused for {environment_id}: "
                    f"{len(environment.drawn_order)} drawn, gate closed"
                )
                return None

            letter = self._rng.choice(remaining_letters(environment.drawn_order))
            proposer = draw_proposer(environment.drawn_order, environment.rotation)

            existing = next((r for r in rounds if r.letter == letter), None)
            if existing is not None:
                drawn_round = existing.cleared(proposer)
            else:
                drawn_round = LetterRound(letter=letter, proposer_user_id=proposer)

            updated_rounds = [r for r in rounds if r.letter != letter] + [drawn_round]
            await self._store.save_rounds(environment_id, updated_rounds)

            environment = environment.model_copy(
                update={"drawn_order": environment.drawn_order + [letter]}
            )
            await self._store.save_environment(environment)

            logger.info(
                f"Drew {letter} for {environment_id} "
                f"(draw #{len(environment.drawn_order)}, proposer {proposer})"
            )
            return drawn_round

    async def reassign_upcoming_proposers(
        self, environment_id: str, member_order: list[str]
    ) -> list[LetterRound] | None:
        """Store a new rotation and re-derive proposers of NotStarted rounds.

        Returns the full updated round list, or ``None`` if the environment
        is unknown.

        Raises:
            InvalidMemberOrder: If the rotation is empty, names a non-member or
                leaves a member out.
        """
        async with self._environment_lock(environment_id):
            environment = await self._store.get_environment(environment_id)
            if environment is None:
                return None

            rotation = check_rotation(
                [normalize_member_id(m) for m in member_order], environment.member_emails
            )

            environment = environment.model_copy(update={"member_order": rotation})
            await self._store.save_environment(environment)

            rounds = await self._store.get_rounds(environment_id)
            drawn = environment.drawn_order if environment.mode == AssignmentMode.RANDOM else None
            updated = reassign_upcoming_proposers(rounds, rotation, drawn)
            await self._store.save_rounds(environment_id, updated)
            return updated
