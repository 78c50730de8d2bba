"""
Domain exceptions
"""

from typing import Optional


class ReelforgeError(Exception):
    """Base class for expected, caller-facing failures"""

    code = "REELFORGE_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        if code:
            self.code = code
        super().__init__(message)


class NotFoundError(ReelforgeError):
    """Unknown project, job or provider run reference"""

    code = "NOT_FOUND"


class PreconditionError(ReelforgeError):
    """The caller asked for a step whose inputs are not ready"""

    code = "PRECONDITION_FAILED"


class InvalidTransitionError(ReelforgeError):
    """A project or job state change the lifecycle does not allow"""

    code = "INVALID_TRANSITION"
