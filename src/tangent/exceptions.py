"""Tangent exception hierarchy.

All Tangent-specific exceptions inherit from TangentError.
"""


class TangentError(Exception):
    """Base exception for all Tangent errors."""


class NotFoundError(TangentError):
    """Raised when an entity is absent or not owned by the caller.

    The two cases share one message so callers cannot probe for the
    existence of other users' data.
    """

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} not found: {entity_id}")


class InvalidStateError(TangentError):
    """Raised when an operation is not valid for a thread's current status."""

    def __init__(self, message: str, *, thread_id: str | None = None) -> None:
        self.thread_id = thread_id
        super().__init__(message)


class TangentValidationError(TangentError):
    """Raised when caller input is malformed.

    Named TangentValidationError (not ValidationError) to avoid
    collision with pydantic.ValidationError.
    """

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class DependencyFailureError(TangentError):
    """Raised when an external collaborator (summary generation) fails.

    Never fatal: callers recover by keeping the un-summarized record.
    """
