"""
Domain errors

Services raise these; main.py turns them into JSON responses with the
matching status code.
"""


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    status_code = 400


class AuthenticationError(AppError):
    status_code = 401


class ForbiddenError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class StateConflictError(AppError):
    """The operation is not allowed in the resource's current state."""
    status_code = 400


class InvalidStateError(StateConflictError):
    pass


class DuplicateResponseError(StateConflictError):
    pass


class IncompatibleBloodTypeError(StateConflictError):
    pass
