"""
Error taxonomy shared by the services and the API layer.

Every error carries a user-facing ``message``; the API maps the class to a
status code and returns the message as ``detail``.
"""


class LearningError(Exception):
    status_code = 400
    default_message = "Request could not be processed"

    def __init__(self, message: str = None, status_code: int = None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ValidationError(LearningError):
    """Malformed input shape."""
    status_code = 422
    default_message = "Invalid input"


class AuthorizationError(LearningError):
    """No session, wrong role, not enrolled or not the owner."""
    status_code = 403
    default_message = "Access denied"


class NotFoundError(LearningError):
    status_code = 404
    default_message = "Not found"


class StateError(LearningError):
    """The resource is not in a state that allows the operation."""
    status_code = 409
    default_message = "Operation not allowed in the current state"


class PersistenceError(LearningError):
    status_code = 503
    default_message = "Something went wrong while saving. Please try again."
