"""Round State Machine: role-gated status transitions.

    NotStarted --(proposal typed)--> Draft --(proposal cleared)--> NotStarted
    NotStarted/Draft --(finalize: proposal + date)--> Planned
    Planned --(mark complete)--> Done
    any --(reset)--> NotStarted (all fields cleared)

Only the round's proposer drives the forward transitions. Resetting a Done
round that other participants already rated needs an administrator.
Ratings are orthogonal to status: anybody may rate a Done round.

Every function here returns the new round, or ``None`` when the action is
refused. Refusals never raise.
"""

import logging
from datetime import date
from typing import Callable

from . import ai_profile
from .models import Idea, LetterRound, RoundStatus, aggregate_rating, normalize_member_id
from .round_store import RoundStore

logger = logging.getLogger(__name__)

EDITABLE_STATUSES = (RoundStatus.NOT_STARTED, RoundStatus.DRAFT)
MIN_RATING = 1
MAX_RATING = 5


def _is_proposer(round_: LetterRound, actor: str) -> bool:
    return bool(actor) and normalize_member_id(actor) == normalize_member_id(round_.proposer_user_id)


# =============================================================================
# Pure transitions
# =============================================================================


def edit_proposal(
    round_: LetterRound, actor: str, text: str | None, tags: list[str] | None = None
) -> LetterRound | None:
    """Change the proposal text.

    NotStarted/Draft follow the text (non-empty -> Draft, empty ->
    NotStarted). A Planned round may be reworded but not emptied. Done
    rounds are frozen.
    """
    if not _is_proposer(round_, actor) or round_.status == RoundStatus.DONE:
        return None

    text = (text or "").strip()
    if round_.status == RoundStatus.PLANNED:
        if not text:
            return None
        status = RoundStatus.PLANNED
    else:
        status = RoundStatus.DRAFT if text else RoundStatus.NOT_STARTED

    if not text:
        idea_tags = []
    elif tags is not None:
        idea_tags = list(tags)
    else:
        idea_tags = round_.idea_tags
    return round_.updated(proposal_text=text or None, status=status, idea_tags=idea_tags)


def select_idea(round_: LetterRound, actor: str, idea: Idea) -> LetterRound | None:
    """Adopt a generated idea as the proposal."""
    return edit_proposal(round_, actor, idea.title, tags=idea.tags)


def set_date(round_: LetterRound, actor: str, target_date: date | None) -> LetterRound | None:
    """Set or clear the target date (a Planned round keeps a date)."""
    if not _is_proposer(round_, actor) or round_.status == RoundStatus.DONE:
        return None
    if target_date is None and round_.status == RoundStatus.PLANNED:
        return None
    return round_.updated(target_date=target_date)


def set_notes(round_: LetterRound, actor: str, notes: str | None) -> LetterRound | None:
    if not _is_proposer(round_, actor):
        return None
    return round_.updated(notes=notes or None)


def finalize(round_: LetterRound, actor: str) -> LetterRound | None:
    """Draft/NotStarted -> Planned; needs proposal text and a date.

    Finalizing an already Planned round is refused (no-op).
    """
    if not _is_proposer(round_, actor) or round_.status not in EDITABLE_STATUSES:
        return None
    if not round_.has_proposal or round_.target_date is None:
        return None
    return round_.updated(status=RoundStatus.PLANNED)


def mark_complete(round_: LetterRound, actor: str) -> LetterRound | None:
    """Planned -> Done."""
    if not _is_proposer(round_, actor) or round_.status != RoundStatus.PLANNED:
        return None
    return round_.updated(status=RoundStatus.DONE)


def reset(round_: LetterRound, actor: str, is_admin: bool = False) -> LetterRound | None:
    """Any state -> NotStarted with every field cleared.

    The proposer may undo their own round until somebody else confirmed the
    completed round with a rating; after that only an administrator can.
    """
    if not is_admin:
        if not _is_proposer(round_, actor):
            return None
        if round_.status == RoundStatus.DONE:
            proposer = normalize_member_id(round_.proposer_user_id)
            if any(normalize_member_id(p) != proposer for p in round_.ratings):
                return None
    return round_.cleared()


def rate(round_: LetterRound, actor: str, rating: int) -> LetterRound | None:
    """Record *actor*'s 1-5 rating and recompute the mean from scratch."""
    if not actor or round_.status != RoundStatus.DONE:
        return None
    if isinstance(rating, bool) or not isinstance(rating, int):
        return None
    if not MIN_RATING <= rating <= MAX_RATING:
        return None
    ratings = dict(round_.ratings)
    ratings[normalize_member_id(actor)] = rating
    return round_.updated(ratings=ratings, rating=aggregate_rating(ratings))


def set_retrospective(round_: LetterRound, actor: str, text: str | None) -> LetterRound | None:
    """Post-completion write-up; any participant, Done rounds only."""
    if not actor or round_.status != RoundStatus.DONE:
        return None
    return round_.updated(evaluation_text=(text or "").strip() or None)


def add_image(round_: LetterRound, actor: str, image_url: str) -> LetterRound | None:
    if not actor or round_.status != RoundStatus.DONE or not image_url:
        return None
    if image_url in round_.image_urls:
        return round_
    return round_.updated(image_urls=round_.image_urls + [image_url])


# =============================================================================
# Persisting state machine
# =============================================================================


class RoundStateMachine:
    """Applies transitions to stored rounds through the Round Store."""

    def __init__(self, store: RoundStore) -> None:
        self._store = store

    async def _apply(
        self,
        environment_id: str,
        letter: str,
        action: str,
        change: Callable[[LetterRound], LetterRound | None],
    ) -> LetterRound | None:
        round_ = await self._store.get_round(environment_id, letter)
        if round_ is None:
            logger.info(f"{action} refused: no round {letter!r} in {environment_id}")
            return None
        updated = change(round_)
        if updated is None:
            logger.info(f"{action} refused on {environment_id}/{round_.letter} ({round_.status.value})")
            return None
        if updated is not round_:
            await self._store.update_round(environment_id, updated)
        return updated

    async def edit_proposal(
        self, environment_id: str, letter: str, actor: str, text: str | None,
        tags: list[str] | None = None,
    ) -> LetterRound | None:
        return await self._apply(
            environment_id, letter, "edit_proposal",
            lambda r: edit_proposal(r, actor, text, tags),
        )

    async def select_idea(self, environment_id: str, letter: str, actor: str, idea: Idea) -> LetterRound | None:
        return await self._apply(environment_id, letter, "select_idea", lambda r: select_idea(r, actor, idea))

    async def set_date(
        self, environment_id: str, letter: str, actor: str, target_date: date | None
    ) -> LetterRound | None:
        return await self._apply(environment_id, letter, "set_date", lambda r: set_date(r, actor, target_date))

    async def set_notes(self, environment_id: str, letter: str, actor: str, notes: str | None) -> LetterRound | None:
        return await self._apply(environment_id, letter, "set_notes", lambda r: set_notes(r, actor, notes))

    async def finalize(self, environment_id: str, letter: str, actor: str) -> LetterRound | None:
        return await self._apply(environment_id, letter, "finalize", lambda r: finalize(r, actor))

    async def mark_complete(self, environment_id: str, letter: str, actor: str) -> LetterRound | None:
        updated = await self._apply(environment_id, letter, "mark_complete", lambda r: mark_complete(r, actor))
        if updated is not None and updated.idea_tags:
            profile = await self._store.get_ai_profile(environment_id)
            await self._store.save_ai_profile(
                environment_id, ai_profile.record_completion(profile, updated.idea_tags)
            )
        return updated

    async def reset(
        self, environment_id: str, letter: str, actor: str, is_admin: bool = False
    ) -> LetterRound | None:
        return await self._apply(environment_id, letter, "reset", lambda r: reset(r, actor, is_admin))

    async def rate(self, environment_id: str, letter: str, actor: str, rating: int) -> LetterRound | None:
        before = await self._store.get_round(environment_id, letter)
        previous = before.ratings.get(normalize_member_id(actor)) if before and actor else None
        updated = await self._apply(environment_id, letter, "rate", lambda r: rate(r, actor, rating))
        if updated is not None and updated.idea_tags:
            profile = await self._store.get_ai_profile(environment_id)
            changed = ai_profile.record_rating(profile, updated.idea_tags, previous, rating)
            if changed is not profile:
                await self._store.save_ai_profile(environment_id, changed)
        return updated

    async def set_retrospective(
        self, environment_id: str, letter: str, actor: str, text: str | None
    ) -> LetterRound | None:
        return await self._apply(
            environment_id, letter, "set_retrospective", lambda r: set_retrospective(r, actor, text)
        )

    async def add_image(self, environment_id: str, letter: str, actor: str, image_url: str) -> LetterRound | None:
        return await self._apply(environment_id, letter, "add_image", lambda r: add_image(r, actor, image_url))
