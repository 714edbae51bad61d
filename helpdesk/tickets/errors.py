"""Domain errors raised by the ticket service."""


class TicketServiceError(RuntimeError):
    """Base error for ticket service issues."""


class TicketNotFoundError(TicketServiceError):
    """Raised when a ticket does not exist or the actor may not see it."""


class TicketAccessDeniedError(TicketServiceError):
    """Raised when the actor may see a ticket but not perform the action."""


class TicketValidationError(TicketServiceError):
    """Raised for input the service rejects after boundary validation."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class TicketConflictError(TicketServiceError):
    """Raised when a unique ticket number could not be allocated."""


class InvalidAssigneeError(TicketServiceError):
    """Raised when the assignment target does not exist or is inactive."""
