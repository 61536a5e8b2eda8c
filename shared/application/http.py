"""HTTP mapping for domain errors."""

from __future__ import annotations

import logging

from rest_framework import status  # type: ignore
from rest_framework.response import Response  # type: ignore

from shared.domain import exceptions as errors

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    errors.ValidationError: status.HTTP_400_BAD_REQUEST,
    errors.NotFoundError: status.HTTP_404_NOT_FOUND,
    errors.ConflictError: status.HTTP_409_CONFLICT,
    errors.InvalidStateError: status.HTTP_409_CONFLICT,
    errors.TransientError: status.HTTP_503_SERVICE_UNAVAILABLE,
    errors.WebhookAuthenticationError: status.HTTP_401_UNAUTHORIZED,
}


def status_code_for(error: errors.DomainError) -> int:
    for error_type in type(error).__mro__:
        if error_type in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[error_type]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_response(error: errors.DomainError) -> Response:
    """Render a domain error as ``{"success": false, "error": ...}``."""

    message = error.message
    if isinstance(error, errors.TransientError):
        message = f"{error.message}. Please try again."
    return Response({"success": False, "error": message}, status=status_code_for(error))
