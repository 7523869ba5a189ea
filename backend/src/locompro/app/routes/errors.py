"""Translate negotiation-core errors into HTTP responses."""

from fastapi import HTTPException, status

from locompro.services.errors import (
    DependencyFailureError,
    MarketplaceError,
    NotFoundError,
    OfferValidationError,
    StateConflictError,
    UnauthorizedError,
)

_STATUS_CODES: dict[type, int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    UnauthorizedError: status.HTTP_403_FORBIDDEN,
    StateConflictError: status.HTTP_409_CONFLICT,
    OfferValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    DependencyFailureError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def http_error(exc: MarketplaceError) -> HTTPException:
    """Build the HTTPException for ``exc``; unknown subclasses become 400."""
    for exc_type, code in _STATUS_CODES.items():
        if isinstance(exc, exc_type):
            break
    else:
        code = status.HTTP_400_BAD_REQUEST

    if isinstance(exc, DependencyFailureError):
        detail = "The marketplace is temporarily unavailable. Please try again."
    else:
        detail = exc.message
    return HTTPException(status_code=code, detail=detail)
