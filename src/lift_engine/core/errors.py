"""
Exception hierarchy for lift-engine.

ValidationFailed doubles as a ValueError so that model validation in
``__post_init__`` reads like ordinary dataclass validation.
"""


class LiftEngineError(Exception):
    """Base class for all lift-engine errors."""

    retryable: bool = False


class ValidationFailed(LiftEngineError, ValueError):
    """Configuration or input data is invalid.  Not retryable."""


class InvalidParameter(ValidationFailed):
    """A single parameter is out of its allowed range."""


class MaxNotFound(LiftEngineError):
    """No reference max exists for (user, lift, max kind)."""

    def __init__(self, user_id: str, lift_id: str, max_kind: str):
        self.user_id = user_id
        self.lift_id = lift_id
        self.max_kind = max_kind
        super().__init__(f"no {max_kind} recorded for lift '{lift_id}' (user '{user_id}')")


class TransactionFailed(LiftEngineError):
    """A progression transaction could not commit; it was fully rolled back."""

    retryable = True


class DeadlineExceeded(TransactionFailed):
    """The caller's deadline passed before the transaction committed."""


class DuplicateLogEntry(LiftEngineError):
    """The audit log already holds an entry with the same idempotency key."""


class NotEnrolled(LiftEngineError):
    """The user is not enrolled in any program."""


class UnknownProgression(LiftEngineError):
    """A progression id does not resolve to a configured progression."""
