"""Errors raised by the offer negotiation core.

Routes translate these into HTTP responses; see ``locompro.app.routes.errors``.
"""

from typing import Optional


class MarketplaceError(Exception):
    """Base class for every error the negotiation core raises on purpose."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(MarketplaceError):
    """Raised when an offer, buy request or chat does not exist."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class UnauthorizedError(MarketplaceError):
    """Raised when the actor does not hold the role the operation requires."""


class StateConflictError(MarketplaceError):
    """Raised when the offer (or buy request) is not in the state a transition needs."""

    def __init__(
        self,
        reason: str,
        current_status: Optional[str] = None,
        target_status: Optional[str] = None,
    ):
        self.current_status = current_status
        self.target_status = target_status
        self.reason = reason
        if current_status and target_status:
            message = f"Invalid transition from {current_status} to {target_status}: {reason}"
        else:
            message = reason
        super().__init__(message)


class OfferValidationError(MarketplaceError):
    """Raised for bad input: missing rejection reason, no images, non-positive price."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message)


class DependencyFailureError(MarketplaceError):
    """Raised when the database call itself failed (connection, disk, driver)."""

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: {cause}")
