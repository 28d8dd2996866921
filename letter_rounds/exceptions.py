"""Hard errors raised for programmer misuse.

Expected failure modes (connectivity, empty results, refused transitions)
never raise; these only signal calls that can never succeed.
"""


class LetterRoundsError(Exception):
    """Base class for all letter-rounds errors."""
    pass


class InvalidEnvironmentId(LetterRoundsError, ValueError):
    """Environment id is empty or not usable as a document path segment."""
    def __init__(self, environment_id):
        self.environment_id = environment_id
        super().__init__(f"Invalid environment id {environment_id!r}")


class InvalidMemberOrder(LetterRoundsError, ValueError):
    """Proposer rotation is empty or names somebody who is not a member."""
    pass


def validate_environment_id(environment_id) -> str:
    """Return *environment_id* unchanged, or raise InvalidEnvironmentId."""
    if not isinstance(environment_id, str) or not environment_id.strip():
        raise InvalidEnvironmentId(environment_id)
    if "/" in environment_id or any(ch.isspace() for ch in environment_id):
        raise InvalidEnvironmentId(environment_id)
    return environment_id
