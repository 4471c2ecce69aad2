class DomainError(Exception):
    """Base class for failures the core reports to its callers."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(DomainError):
    """Malformed or missing input."""


class AuthenticationError(DomainError):
    """Missing, invalid or expired credential."""


class AuthorizationError(DomainError):
    """Caller's role or ownership does not allow the action."""


class NotFoundError(DomainError):
    """Entity does not exist."""


class ConflictError(DomainError):
    """A state-transition precondition does not hold."""


class RosterConflictError(ConflictError):
    """Join/leave rejected by the match roster (full, already joined, host leaving)."""
