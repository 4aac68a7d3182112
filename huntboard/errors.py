"""
Error taxonomy for the hunt leaderboard server.

Every business-rule violation is raised as a HuntError subclass carrying the
HTTP status and the machine-checkable reason string the mobile client
branches on. The web layer turns these into JSON error responses.
"""


class HuntError(Exception):
    """Base class for errors that map onto a structured JSON response."""

    status = 500
    reason = "INTERNAL_ERROR"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.reason)
        self.message = message or self.reason

    def to_dict(self) -> dict:
        return {"error": self.reason, "message": self.message}


class Unauthenticated(HuntError):
    """Missing or unknown device token / admin session."""

    status = 401
    reason = "UNAUTHORIZED"


class WrongCredentials(HuntError):
    status = 401
    reason = "WRONG_CREDS"


class AlreadyFinalized(HuntError):
    """Device already made its final submission."""

    status = 403
    reason = "ALREADY_FINALIZED"


class AccountLimitReached(HuntError):
    status = 403
    reason = "ACCOUNT_LIMIT_REACHED"


class ValidationError(HuntError):
    status = 400
    reason = "VALIDATION_ERROR"


class Conflict(HuntError):
    status = 400
    reason = "ALREADY_EXISTS"


class NotFound(HuntError):
    status = 404
    reason = "NOT_FOUND"


class StorageError(HuntError):
    """Unexpected datastore failure, always reported as a generic 500."""

    status = 500
    reason = "INTERNAL_ERROR"

    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(message)
