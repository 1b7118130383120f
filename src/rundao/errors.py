"""Domain error taxonomy.

Services raise these; the global handler in ``rundao.middleware.error_handler``
turns them into ``{"error": message}`` responses with the class status code.
"""

from __future__ import annotations


class RunDaoError(Exception):
    """Base class for all domain errors."""

    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(RunDaoError):
    """Malformed or out-of-range input, rejected before any state change."""

    status_code = 400


class ArithmeticInvariantError(RunDaoError):
    """Settlement split does not sum to 100% or the fee exceeds its cap."""

    status_code = 400


class AuthorizationError(RunDaoError):
    """The acting user lacks permission for the operation."""

    status_code = 403


class NotFoundError(RunDaoError):
    """A referenced entity does not exist."""

    status_code = 404


class StateConflictError(RunDaoError):
    """The operation is illegal in the entity's current state."""

    status_code = 409
