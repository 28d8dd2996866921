"""Letter round model and the round status variant."""

import enum
import string
from datetime import date, datetime

from pydantic import Field, field_validator

from .base import DocumentModel

ALPHABET = string.ascii_uppercase


class RoundStatus(str, enum.Enum):
    """Lifecycle status of a letter round."""

    NOT_STARTED = "Not started"
    DRAFT = "Draft"
    PLANNED = "Planned"
    DONE = "Done"

    @classmethod
    def migrate(cls, value: "str | RoundStatus") -> "RoundStatus":
        """Map a stored status label onto the current variant.

        Retired labels are migrated forward ("Proposed" -> Draft,
        "Confirmed" -> Planned). Unknown labels raise ValueError.
        """
        if isinstance(value, RoundStatus):
            return value
        if value in LEGACY_STATUSES:
            return LEGACY_STATUSES[value]
        return cls(value)


LEGACY_STATUSES: dict[str, RoundStatus] = {
    "Proposed": RoundStatus.DRAFT,
    "Confirmed": RoundStatus.PLANNED,
}


def aggregate_rating(ratings: dict[str, int]) -> float | None:
    """Arithmetic mean of all individual ratings, or None if nobody rated."""
    if not ratings:
        return None
    return sum(ratings.values()) / len(ratings)


class LetterRound(DocumentModel):
    """One round per letter A-Z per environment.

    Stored document shape (camelCase, unset fields omitted)::

        {
            "letter": "A",
            "proposerUserId": "alice@example.com",
            "proposalText": "Aquarium",
            "date": "2026-11-02",
            "status": "Planned",
            "notes": "...",
            "evaluationText": "...",
            "imageUrls": [],
            "ratings": {"alice@example.com": 5},
            "rating": 5.0,
            "ideaTags": ["Culture"],
            "createdAt": "...",
            "updatedAt": "..."
        }
    """

    letter: str
    proposer_user_id: str
    proposal_text: str | None = None
    target_date: date | None = Field(default=None, alias="date")
    status: RoundStatus = RoundStatus.NOT_STARTED
    notes: str | None = None
    evaluation_text: str | None = None
    image_urls: list[str] = Field(default_factory=list)
    ratings: dict[str, int] = Field(default_factory=dict)
    rating: float | None = None
    idea_tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("letter", mode="before")
    @classmethod
    def check_letter(cls, v):
        letter = v.strip().upper() if isinstance(v, str) else ""
        if len(letter) != 1 or letter not in ALPHABET:
            raise ValueError(f"letter must be a single character A-Z, got {v!r}")
        return letter

    @field_validator("status", mode="before")
    @classmethod
    def migrate_status(cls, v):
        return RoundStatus.migrate(v)

    @field_validator("target_date", mode="before")
    @classmethod
    def truncate_datetime(cls, v):
        """Older documents stored a full ISO timestamp; keep the calendar date."""
        if isinstance(v, str) and "T" in v:
            return v.split("T", 1)[0]
        if isinstance(v, datetime):
            return v.date()
        return v

    @property
    def has_proposal(self) -> bool:
        return bool(self.proposal_text and self.proposal_text.strip())

    def updated(self, **changes) -> "LetterRound":
        """Return a copy with *changes* applied and updated_at stamped."""
        changes["updated_at"] = datetime.utcnow()
        return self.model_copy(update=changes)

    def cleared(self, proposer_user_id: str | None = None) -> "LetterRound":
        """Return a NotStarted copy with every user-entered field removed.

        The letter and creation time survive; the proposer is kept unless a
        new one is given.
        """
        return LetterRound(
            letter=self.letter,
            proposer_user_id=proposer_user_id or self.proposer_user_id,
            status=RoundStatus.NOT_STARTED,
            created_at=self.created_at,
        )

    def __repr__(self) -> str:
        return f"<LetterRound(letter='{self.letter}', status={self.status.value})>"
