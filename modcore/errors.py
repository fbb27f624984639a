"""Error taxonomy for the moderation core.

Every exception raised across component boundaries derives from
ModerationError so callers can catch the whole family in one place.
"""


class ModerationError(Exception):
    """Base class for moderation core errors."""


class AnalysisFailure(ModerationError):
    """Raised when text analysis fails; recovered with a fallback analysis."""


class StoreUnavailable(ModerationError):
    """Raised when the persistent store cannot complete an operation.

    Attributes:
        operation: Name of the store operation that failed.
    """

    def __init__(self, operation: str, detail: str = "") -> None:
        self.operation = operation
        message = f"Store operation {operation!r} failed"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class DuplicateVote(ModerationError):
    """Raised when a voter submits a second vote on the same content."""

    def __init__(self, content_id: str, voter_id: str) -> None:
        self.content_id = content_id
        self.voter_id = voter_id
        super().__init__(
            f"Voter {voter_id} has already provided feedback for content {content_id}"
        )


class RuleEvaluationError(ModerationError):
    """Raised when a rule or one of its conditions is malformed."""

    def __init__(self, rule_id: str, detail: str) -> None:
        self.rule_id = rule_id
        super().__init__(f"Rule {rule_id} could not be evaluated: {detail}")


class InsufficientVotes(ModerationError):
    """Raised when consensus is requested before the minimum vote count."""

    def __init__(self, content_id: str, votes: int, required: int) -> None:
        self.content_id = content_id
        self.votes = votes
        self.required = required
        super().__init__(
            f"Content {content_id} has {votes} votes, {required} required for consensus"
        )
