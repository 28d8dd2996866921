"""Environment and app settings documents."""

import enum
from datetime import datetime

from pydantic import Field, field_validator

from .base import DocumentModel, normalize_member_id
from .round import ALPHABET


class AssignmentMode(str, enum.Enum):
    """How letters are bound to proposers."""

    SEQUENTIAL = "sequential"
    RANDOM = "random"


class Environment(DocumentModel):
    """Shared workspace of one group of participants.

    member_order is the proposer rotation; when unset the member list
    order is used. drawn_order is only meaningful in random mode.
    """

    id: str
    name: str | None = None
    member_emails: list[str] = Field(default_factory=list)
    member_names: dict[str, str] = Field(default_factory=dict)
    member_order: list[str] | None = None
    admin_email: str | None = None
    mode: AssignmentMode = AssignmentMode.SEQUENTIAL
    drawn_order: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("member_emails", mode="before")
    @classmethod
    def normalize_members(cls, v):
        if v is None:
            return []
        seen = []
        for member in v:
            key = normalize_member_id(member)
            if key not in seen:
                seen.append(key)
        return seen

    @field_validator("member_order", mode="before")
    @classmethod
    def normalize_order(cls, v):
        if v is None:
            return None
        return [normalize_member_id(m) for m in v]

    @field_validator("member_names", mode="before")
    @classmethod
    def normalize_names(cls, v):
        if v is None:
            return {}
        return {normalize_member_id(k): name for k, name in v.items()}

    @field_validator("admin_email", mode="before")
    @classmethod
    def normalize_admin(cls, v):
        return normalize_member_id(v) if v else None

    @field_validator("drawn_order", mode="before")
    @classmethod
    def check_drawn_order(cls, v):
        if v is None:
            return []
        letters = [str(letter).upper() for letter in v]
        for letter in letters:
            if len(letter) != 1 or letter not in ALPHABET:
                raise ValueError(f"drawn_order may only contain letters A-Z, got {letter!r}")
        if len(set(letters)) != len(letters):
            raise ValueError("drawn_order must not contain a letter twice")
        return letters

    @property
    def rotation(self) -> list[str]:
        """Effective proposer rotation."""
        return list(self.member_order or self.member_emails)

    @property
    def administrator(self) -> str | None:
        """Explicit admin, falling back to the first member."""
        if self.admin_email:
            return self.admin_email
        return self.member_emails[0] if self.member_emails else None

    def is_admin(self, member_id: str | None) -> bool:
        return bool(member_id) and normalize_member_id(member_id) == self.administrator

    def display_name(self, member_id: str) -> str:
        key = normalize_member_id(member_id)
        return self.member_names.get(key, key)


class ActivityFilters(DocumentModel):
    indoor: bool = True
    outdoor: bool = True


class AppSettings(DocumentModel):
    """Environment-wide settings ("settings/current" document)."""

    starting_person: str | None = None
    activity_filters: ActivityFilters = Field(default_factory=ActivityFilters)
    time_preference: str = "both"

    @field_validator("time_preference")
    @classmethod
    def check_time_preference(cls, v):
        if v not in ("weekday", "weekend", "both"):
            raise ValueError(f"time_preference must be weekday, weekend or both, got {v!r}")
        return v
