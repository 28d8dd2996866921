"""Folding round outcomes into the environment's AI profile."""

from datetime import datetime

from .models import AIProfile

MAX_RECENT_TAGS = 10
LIKED_THRESHOLD = 4
DISLIKED_THRESHOLD = 2


def record_completion(profile: AIProfile, tags: list[str]) -> AIProfile:
    """Push a completed round's tags onto recent_tags (newest first)."""
    if not tags:
        return profile
    recent = list(dict.fromkeys(list(tags) + profile.recent_tags))[:MAX_RECENT_TAGS]
    return profile.model_copy(update={"recent_tags": recent, "updated_at": datetime.utcnow()})


def _bucket(rating: int | None) -> str | None:
    if rating is None:
        return None
    if rating >= LIKED_THRESHOLD:
        return "liked_tags"
    if rating <= DISLIKED_THRESHOLD:
        return "disliked_tags"
    return None


def record_rating(
    profile: AIProfile, tags: list[str], previous: int | None, current: int
) -> AIProfile:
    """Count *tags* as liked/disliked for *current*, undoing *previous*.

    Re-submitting the same rating leaves the profile unchanged.
    """
    if not tags or _bucket(previous) == _bucket(current):
        return profile

    counts = {
        "liked_tags": dict(profile.liked_tags),
        "disliked_tags": dict(profile.disliked_tags),
    }
    old_bucket = _bucket(previous)
    if old_bucket:
        for tag in tags:
            remaining = counts[old_bucket].get(tag, 0) - 1
            if remaining > 0:
                counts[old_bucket][tag] = remaining
            else:
                counts[old_bucket].pop(tag, None)
    new_bucket = _bucket(current)
    if new_bucket:
        for tag in tags:
            counts[new_bucket][tag] = counts[new_bucket].get(tag, 0) + 1

    return profile.model_copy(update={**counts, "updated_at": datetime.utcnow()})
