"""Error taxonomy shared by the services and the API layer.

Every error carries a stable ``code`` so the request boundary can turn it
into a structured client-visible response without inspecting messages.
"""

from __future__ import annotations

from typing import Any


class ExpenseEngineError(Exception):
    """Base class for all business errors raised by the engine."""

    code = "ERROR"

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)


class ValidationError(ExpenseEngineError):
    """Malformed or missing input."""

    code = "VALIDATION_ERROR"


class CircularRelationshipError(ValidationError):
    """A manager assignment would introduce a cycle in the reporting tree."""

    code = "CIRCULAR_RELATIONSHIP"


class AuthorizationError(ExpenseEngineError):
    """The actor is not allowed to perform the operation."""

    code = "FORBIDDEN"


class AuthenticationError(ExpenseEngineError):
    """No acting user could be resolved for the request."""

    code = "UNAUTHENTICATED"


class NotFoundError(ExpenseEngineError):
    """A referenced step, expense, rule, company or user does not exist."""

    code = "NOT_FOUND"


class StateConflictError(ExpenseEngineError):
    """The entity is not in a state that allows the operation."""

    code = "STATE_CONFLICT"


class AlreadyProcessedError(StateConflictError):
    """The approval step (or its expense) has already been decided."""

    code = "ALREADY_PROCESSED"


class NotCurrentStepError(StateConflictError):
    """The approval step is not the expense's current step."""

    code = "NOT_CURRENT_STEP"


class DivisionSafetyError(ExpenseEngineError):
    """A ratio was requested over an empty population.

    Internal only: the evaluator converts it to "not satisfied".
    """

    code = "DIVISION_SAFETY"


class UpstreamServiceError(ExpenseEngineError):
    """A third-party lookup failed and no cached value was available."""

    code = "UPSTREAM_UNAVAILABLE"
