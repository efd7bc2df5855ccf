"""Exceptions raised by grievance operations.

Each carries the HTTP status the API layer responds with.
"""

from fastapi import status


class GrievanceError(Exception):
    """Base exception for grievance operations."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "grievance_error"


class GrievanceValidationError(GrievanceError):
    """Submitted content is missing or malformed."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"


class InvalidStatusError(GrievanceError):
    """Status value unknown, or the case is not in the status the action needs."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_status"


class InvalidRatingError(GrievanceError):
    """Feedback rating outside 1..5."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_rating"


class UnsupportedActionError(GrievanceError):
    """Action identifier is not one of the known case actions."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "unsupported_action"


class AccessDeniedError(GrievanceError):
    """Actor may not perform this operation on this case."""

    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"


class GrievanceNotFoundError(GrievanceError):
    """Grievance (or one of its attachments) does not exist."""

    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class InvalidTransitionError(GrievanceError):
    """Case is closed and no longer accepts this action."""

    status_code = status.HTTP_409_CONFLICT
    code = "invalid_transition"


class FeedbackAlreadySubmittedError(GrievanceError):
    """Resolution feedback can only be recorded once."""

    status_code = status.HTTP_409_CONFLICT
    code = "feedback_already_submitted"


class CaseStoreError(GrievanceError):
    """Storage failed part way through an operation; the client should retry."""

    code = "store_error"
