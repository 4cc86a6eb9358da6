"""
Service errors, one class per failure kind the HTTP layer distinguishes.
"""


class MutumError(Exception):
    """Base class for service errors"""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(MutumError):
    """Requested record does not exist"""

    status_code = 404


class ValidationError(MutumError):
    """Input rejected by a business rule"""

    status_code = 400


class AuthorizationError(MutumError):
    """Caller lacks the role required for the operation"""

    status_code = 403


class BackendError(MutumError):
    """The hosted store failed; the caller may retry manually"""

    status_code = 503

    def __init__(self, message: str, cause: Exception = None):
        super().__init__(message)
        self.cause = cause
