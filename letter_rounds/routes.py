"""HTTP endpoints for environments, rounds, draws and ideas.

The caller's identity comes from the trusted ``X-Participant-Id`` header.
Refused operations (the core returns None) map to 409 Conflict.
"""

import json
import logging
from datetime import date
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from .assignment import remaining_letters
from .database import check_database_health
from .models import (
    AppSettings,
    AssignmentMode,
    Environment,
    Idea,
    LetterRound,
    SavedIdea,
    UserPreferences,
)
from .services import Services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/environments", tags=["rounds"])


# =============================================================================
# Request Schemas
# =============================================================================


class InitializeRequest(BaseModel):
    members: list[str]
    starting_member: str
    order: list[str] | None = None
    mode: AssignmentMode = AssignmentMode.SEQUENTIAL
    admin_email: str | None = None
    name: str | None = None
    member_names: dict[str, str] = Field(default_factory=dict)


class ResetRequest(BaseModel):
    """Omitted fields are taken from the stored environment."""

    members: list[str] | None = None
    starting_member: str | None = None
    order: list[str] | None = None


class MemberOrderRequest(BaseModel):
    member_order: list[str]


class ProposalRequest(BaseModel):
    text: str | None = None
    tags: list[str] | None = None


class DateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    target_date: date | None = Field(default=None, alias="date")


class NotesRequest(BaseModel):
    notes: str | None = None


class RatingRequest(BaseModel):
    rating: int


class RetrospectiveRequest(BaseModel):
    text: str | None = None


class ImageRequest(BaseModel):
    image_url: str


class SelectIdeaRequest(BaseModel):
    idea: Idea


class GenerateIdeasRequest(BaseModel):
    regenerate: bool = False
    location_hint: str | None = None
    preferences: UserPreferences | None = None


class SaveIdeaRequest(BaseModel):
    idea: Idea
    letter: str | None = None


# =============================================================================
# Dependencies & helpers
# =============================================================================


def get_services(request: Request) -> Services:
    return request.app.state.services


def current_participant(x_participant_id: str | None = Header(default=None)) -> str:
    """Identity supplied by the session provider; trusted as-is."""
    if not x_participant_id or not x_participant_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-Participant-Id header")
    return x_participant_id.strip()


async def _require_environment(services: Services, env_id: str) -> Environment:
    environment = await services.store.get_environment(env_id)
    if environment is None:
        raise HTTPException(status_code=404, detail=f"Unknown environment {env_id}")
    return environment


async def _require_admin(services: Services, env_id: str, participant: str) -> Environment:
    environment = await _require_environment(services, env_id)
    if not environment.is_admin(participant):
        raise HTTPException(status_code=403, detail="Administrator only")
    return environment


async def require_round(
    env_id: str, letter: str, services: Services = Depends(get_services)
) -> LetterRound:
    """404 for letters the environment has no round for."""
    round_ = await services.store.get_round(env_id, letter)
    if round_ is None:
        raise HTTPException(status_code=404, detail=f"No round {letter} in {env_id}")
    return round_


def _round_or_conflict(round_: LetterRound | None, action: str) -> dict:
    if round_ is None:
        raise HTTPException(status_code=409, detail=f"{action} refused")
    return round_.to_document()


def _rounds_payload(rounds: list[LetterRound]) -> list[dict]:
    return [r.to_document() for r in rounds]


# =============================================================================
# Environment lifecycle
# =============================================================================


@router.post("/{env_id}/initialize", status_code=status.HTTP_201_CREATED)
async def initialize_environment(
    env_id: str,
    body: InitializeRequest,
    services: Services = Depends(get_services),
):
    """Create the environment with all 26 rounds (once)."""
    if await services.store.get_environment(env_id) is not None:
        raise HTTPException(status_code=409, detail="Environment already initialized")

    rounds = await services.store.initialize_environment(
        env_id,
        body.members,
        body.starting_member,
        body.order,
        mode=body.mode,
        admin_email=body.admin_email,
        name=body.name,
        member_names=body.member_names,
    )
    return {"environmentId": env_id, "rounds": _rounds_payload(rounds)}


@router.post("/{env_id}/reset")
async def reset_environment(
    env_id: str,
    body: ResetRequest | None = None,
    participant: str = Depends(current_participant),
    services: Services = Depends(get_services),
):
    """Discard all progress and regenerate the 26 rounds."""
    environment = await _require_admin(services, env_id, participant)
    body = body or ResetRequest()
    members = body.members or environment.member_emails
    order = body.order
    # New members or a new starting member restart the rotation from scratch
    if order is None and not body.members and not body.starting_member:
        order = environment.member_order
    starting = body.starting_member or (order or members)[0]

    rounds = await services.store.reset_rounds(env_id, members, starting, order)
    return {"rounds": _rounds_payload(rounds)}


@router.get("/{env_id}/rounds")
async def list_rounds(env_id: str, services: Services = Depends(get_services)):
    return {"rounds": _rounds_payload(await services.store.get_rounds(env_id))}


@router.put("/{env_id}/member-order")
async def update_member_order(
    env_id: str,
    body: MemberOrderRequest,
    participant: str = Depends(current_participant),
    services: Services = Depends(get_services),
):
    """Change the proposer rotation; only NotStarted rounds are reassigned."""
    await _require_admin(services, env_id, participant)
    rounds = await services.assignment.reassign_upcoming_proposers(env_id, body.member_order)
    if rounds is None:
        raise HTTPException(status_code=404, detail=f"Unknown environment {env_id}")
    return {"rounds": _rounds_payload(rounds)}


@router.get("/{env_id}/settings")
async def get_app_settings(env_id: str, services: Services = Depends(get_services)):
    return (await services.store.get_settings(env_id)).to_document()


@router.put("/{env_id}/settings")
async def update_app_settings(
    env_id: str,
    body: AppSettings,
    participant: str = Depends(current_participant),
    services: Services = Depends(get_services),
):
    await _require_admin(services, env_id, participant)
    await services.store.save_settings(env_id, body)
    return body.to_document()


@router.get("/{env_id}/preferences")
async def get_my_preferences(
    env_id: str,
    participant: str = Depends(current_participant),
    services: Services = Depends(get_services),
):
    return (await services.store.get_preferences(env_id, participant)).to_document()


@router.put("/{env_id}/preferences")
async def update_my_preferences(
    env_id: str,
    body: UserPreferences,
    participant: str = Depends(current_participant),
    services: Services = Depends(get_services),
):
    """Replace the caller's preferences; the idea cache is kept."""
    existing = await services.store.get_preferences(env_id, participant)
    preferences = body.model_copy(update={"idea_cache": existing.idea_cache})
    await services.store.save_preferences(env_id, preferences, participant)
    return preferences.to_document()


# =============================================================================
# Random-mode draws
# =============================================================================


@router.get("/{env_id}/draw")
async def draw_status(env_id: str, services: Services = Depends(get_services)):
    environment = await _require_environment(services, env_id)
    return {
        "mode": environment.mode.value,
        "canDraw": await services.assignment.can_draw_next(env_id),
        "drawnOrder": environment.drawn_order,
        "remaining": len(remaining_letters(environment.drawn_order)),
    }


@router.post("/{env_id}/draw")
async def draw_next_letter(
    env_id: str,
    participant: str = Depends(current_participant),
    services: Services = Depends(get_services),
):
    await _require_environment(services, env_id)
    round_ = await services.assignment.draw_next_letter(env_id)
    logger.info(f"Draw requested by {participant} in {env_id}")
    return _round_or_conflict(round_, "Draw")


# =============================================================================
# Round transitions
# =============================================================================


@router.post("/{env_id}/rounds/{letter}/proposal")
async def edit_proposal(
    env_id: str,
    letter: str,
    body: ProposalRequest,
    participant: str = Depends(current_participant),
    _round: LetterRound = Depends(require_round),
    services: Services = Depends(get_services),
):
    round_ = await services.rounds.edit_proposal(env_id, letter, participant, body.text, body.tags)
    return _round_or_conflict(round_, "Proposal edit")


@router.post("/{env_id}/rounds/{letter}/select-idea")
async def select_idea(
    env_id: str,
    letter: str,
    body: SelectIdeaRequest,
    participant: str = Depends(current_participant),
    _round: LetterRound = Depends(require_round),
    services: Services = Depends(get_services),
):
    round_ = await services.rounds.select_idea(env_id, letter, participant, body.idea)
    return _round_or_conflict(round_, "Idea selection")


@router.post("/{env_id}/rounds/{letter}/date")
async def set_date(
    env_id: str,
    letter: str,
    body: DateRequest,
    participant: str = Depends(current_participant),
    _round: LetterRound = Depends(require_round),
    services: Services = Depends(get_services),
):
    round_ = await services.rounds.set_date(env_id, letter, participant, body.target_date)
    return _round_or_conflict(round_, "Date change")


@router.patch("/{env_id}/rounds/{letter}/notes", status_code=status.HTTP_202_ACCEPTED)
async def edit_notes(
    env_id: str,
    letter: str,
    body: NotesRequest,
    participant: str = Depends(current_participant),
    _round: LetterRound = Depends(require_round),
    services: Services = Depends(get_services),
):
    """Debounced: only the last edit in the quiet window is written."""
    key = f"{env_id}:{letter.upper()}:notes"
    services.notes.schedule(
        key, lambda: services.rounds.set_notes(env_id, letter, participant, body.notes)
    )
    return {"status": "scheduled", "delaySeconds": services.notes.delay}


@router.post("/{env_id}/rounds/{letter}/finalize")
async def finalize(
    env_id: str,
    letter: str,
    participant: str = Depends(current_participant),
    _round: LetterRound = Depends(require_round),
    services: Services = Depends(get_services),
):
    round_ = await services.rounds.finalize(env_id, letter, participant)
    return _round_or_conflict(round_, "Finalize")


@router.post("/{env_id}/rounds/{letter}/complete")
async def mark_complete(
    env_id: str,
    letter: str,
    participant: str = Depends(current_participant),
    _round: LetterRound = Depends(require_round),
    services: Services = Depends(get_services),
):
    round_ = await services.rounds.mark_complete(env_id, letter, participant)
    return _round_or_conflict(round_, "Completion")


@router.post("/{env_id}/rounds/{letter}/reset")
async def reset_round(
    env_id: str,
    letter: str,
    participant: str = Depends(current_participant),
    _round: LetterRound = Depends(require_round),
    services: Services = Depends(get_services),
):
    environment = await services.store.get_environment(env_id)
    is_admin = environment is not None and environment.is_admin(participant)
    round_ = await services.rounds.reset(env_id, letter, participant, is_admin=is_admin)
    return _round_or_conflict(round_, "Reset")


@router.post("/{env_id}/rounds/{letter}/rating")
async def rate(
    env_id: str,
    letter: str,
    body: RatingRequest,
    participant: str = Depends(current_participant),
    _round: LetterRound = Depends(require_round),
    services: Services = Depends(get_services),
):
    round_ = await services.rounds.rate(env_id, letter, participant, body.rating)
    return _round_or_conflict(round_, "Rating")


@router.post("/{env_id}/rounds/{letter}/retrospective")
async def set_retrospective(
    env_id: str,
    letter: str,
    body: RetrospectiveRequest,
    participant: str = Depends(current_participant),
    _round: LetterRound = Depends(require_round),
    services: Services = Depends(get_services),
):
    round_ = await services.rounds.set_retrospective(env_id, letter, participant, body.text)
    return _round_or_conflict(round_, "Retrospective")


@router.post("/{env_id}/rounds/{letter}/images")
async def add_image(
    env_id: str,
    letter: str,
    body: ImageRequest,
    participant: str = Depends(current_participant),
    _round: LetterRound = Depends(require_round),
    services: Services = Depends(get_services),
):
    round_ = await services.rounds.add_image(env_id, letter, participant, body.image_url)
    return _round_or_conflict(round_, "Image upload")


# =============================================================================
# Ideas
# =============================================================================


def _ideas_payload(ideas: list[Idea]) -> list[dict]:
    return [idea.to_document() for idea in ideas]


@router.get("/{env_id}/rounds/{letter}/ideas")
async def view_ideas(
    env_id: str,
    letter: str,
    location_hint: str | None = None,
    services: Services = Depends(get_services),
):
    """Cached ideas, or whatever a running prefetch produced so far."""
    view = await services.ideas.view_round(env_id, letter, location_hint)
    if view is None:
        raise HTTPException(status_code=404, detail=f"No round {letter} in {env_id}")
    ideas = view.ideas if view.ideas is not None else list(view.flight.items)
    return {
        "letter": view.letter,
        "proposerId": view.proposer_id,
        "cached": view.ideas is not None,
        "pending": view.flight is not None and not view.flight.done,
        "ideas": _ideas_payload(ideas),
    }


@router.get("/{env_id}/rounds/{letter}/ideas/stream")
async def stream_ideas(
    env_id: str,
    letter: str,
    location_hint: str | None = None,
    services: Services = Depends(get_services),
):
    """Newline-delimited JSON, one idea per line, until generation ends."""
    view = await services.ideas.view_round(env_id, letter, location_hint)
    if view is None:
        raise HTTPException(status_code=404, detail=f"No round {letter} in {env_id}")

    async def lines() -> AsyncIterator[str]:
        if view.ideas is not None:
            for idea in view.ideas:
                yield json.dumps(idea.to_document()) + "\n"
            return
        async for idea in view.flight.stream():
            yield json.dumps(idea.to_document()) + "\n"

    return StreamingResponse(lines(), media_type="application/x-ndjson")


@router.post("/{env_id}/rounds/{letter}/ideas/generate")
async def generate_ideas(
    env_id: str,
    letter: str,
    body: GenerateIdeasRequest,
    services: Services = Depends(get_services),
):
    round_ = await services.store.get_round(env_id, letter)
    if round_ is None:
        raise HTTPException(status_code=404, detail=f"No round {letter} in {env_id}")
    ideas = await services.ideas.generate(
        env_id,
        round_.proposer_user_id,
        round_.letter,
        regenerate=body.regenerate,
        preferences=body.preferences,
        location_hint=body.location_hint,
        current_proposal=round_.proposal_text,
    )
    return {"letter": round_.letter, "ideas": _ideas_payload(ideas)}


@router.get("/{env_id}/saved-ideas")
async def list_saved_ideas(env_id: str, services: Services = Depends(get_services)):
    saved = await services.store.list_saved_ideas(env_id)
    return {"savedIdeas": [s.to_document() for s in saved]}


@router.post("/{env_id}/saved-ideas", status_code=status.HTTP_201_CREATED)
async def save_idea(
    env_id: str,
    body: SaveIdeaRequest,
    participant: str = Depends(current_participant),
    services: Services = Depends(get_services),
):
    saved = SavedIdea(
        id=body.idea.id,
        idea=body.idea,
        saved_by=participant,
        letter=body.letter.upper() if body.letter else None,
    )
    await services.store.save_idea(env_id, saved)
    return saved.to_document()


@router.delete("/{env_id}/saved-ideas/{idea_id}")
async def delete_saved_idea(
    env_id: str,
    idea_id: str,
    participant: str = Depends(current_participant),
    services: Services = Depends(get_services),
):
    if not await services.store.delete_saved_idea(env_id, idea_id):
        raise HTTPException(status_code=404, detail=f"No saved idea {idea_id}")
    return {"deleted": idea_id}


# =============================================================================
# Service endpoints
# =============================================================================

service_router = APIRouter(tags=["service"])


@service_router.get("/health")
async def health_check(services: Services = Depends(get_services)):
    """Health check endpoint.

    Verifies the remote store connection and returns status.
    """
    factory = services.remote_session_factory
    db_healthy = factory is None or check_database_health(factory)

    if db_healthy:
        return {
            "status": "healthy",
            "database": "connected",
        }
    else:
        return {
            "status": "unhealthy",
            "database": "disconnected",
        }


@service_router.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Letter Rounds",
        "status": "running",
        "version": "1.0.0",
    }
