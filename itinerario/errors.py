class TaskValidationError(ValueError):
    """A required field for the requested operation is missing or invalid. Nothing was mutated."""
    status_code = 400


class TaskTransitionError(Exception):
    """The task's current status does not allow the requested transition."""
    status_code = 409


class UserAdminError(Exception):
    """Rejection from a privileged user-management call, carrying the HTTP status to reply with."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
