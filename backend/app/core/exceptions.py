"""
Custom exception hierarchy for structured error handling.

WHY: Every lifecycle failure is a synchronous, locally recoverable error
returned to the caller. Custom exceptions provide:
1. One class per failure kind (not found, forbidden, bad transition, ...)
2. HTTP status code mapping for the API layer
3. Structured context for debugging without leaking sensitive data

None of these are retried internally. Notification dispatch failures are
not exceptions at all; they surface as a degraded flag on the result.
"""

from typing import Any, Dict, Optional


class AppException(Exception):
    """
    Base exception class for all application exceptions.

    All custom exceptions inherit from this class.
    """

    status_code: int = 500
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        """
        Initialize exception with message and context.

        Args:
            message: Human-readable error message
            status_code: HTTP status code (overrides class default)
            **context: Additional context for debugging (filtered in to_dict)
        """
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize exception to dictionary for JSON response.

        Returns:
            Dictionary with error details (sensitive fields filtered out)
        """
        # WHY: signature blobs and tokens must never be echoed back
        sensitive_fields = {"password", "token", "secret", "key", "signature"}
        filtered_context = {
            k: v for k, v in self.context.items() if k.lower() not in sensitive_fields
        }

        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": filtered_context if filtered_context else None,
        }


# ============================================================================
# Authentication & Authorization Exceptions
# ============================================================================


class AuthenticationError(AppException):
    """
    Raised when the bearer token cannot be resolved to an active user.

    HTTP Status: 401 Unauthorized
    """

    status_code = 401
    default_message = "Authentication failed"


class TokenExpiredError(AuthenticationError):
    default_message = "Token has expired"


class TokenInvalidError(AuthenticationError):
    default_message = "Token is invalid"


class AuthorizationError(AppException):
    """
    Raised when the actor lacks the role or ownership an operation needs.

    WHY: Maps the "Forbidden" failure kind. Distinguishing it from 401 lets
    callers tell "log in" apart from "not yours".

    HTTP Status: 403 Forbidden
    """

    status_code = 403
    default_message = "You do not have permission to perform this action"


class InsufficientPermissionsError(AuthorizationError):
    """
    Raised when a manager-only operation is attempted by a non-manager.

    HTTP Status: 403 Forbidden
    """

    default_message = "Insufficient permissions"


# ============================================================================
# Validation Exceptions
# ============================================================================


class ValidationError(AppException):
    """
    Raised when input is malformed or would produce invalid derived data.

    WHY: Also raised at the point of a line-item or credit mutation whose
    recalculated totals would be invalid (credits exceeding subtotal), so
    the offending write is rolled back instead of persisted.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Validation failed"


# ============================================================================
# Resource Exceptions
# ============================================================================


class ResourceNotFoundError(AppException):
    """
    Raised when a requested entity is missing or soft-deleted.

    HTTP Status: 404 Not Found
    """

    status_code = 404
    default_message = "Resource not found"


class ProjectRequestNotFoundError(ResourceNotFoundError):
    default_message = "Project request not found"


class ProposalNotFoundError(ResourceNotFoundError):
    default_message = "Proposal not found"


class ProposalServiceNotFoundError(ResourceNotFoundError):
    default_message = "Proposal service not found"


class CreditNotFoundError(ResourceNotFoundError):
    default_message = "Credit not found"


class StageNotFoundError(ResourceNotFoundError):
    default_message = "Project stage not found"


class AmendmentNotFoundError(ResourceNotFoundError):
    default_message = "Amendment request not found"


# ============================================================================
# Business Logic Exceptions
# ============================================================================


class BusinessRuleViolation(AppException):
    """
    Raised when a lifecycle rule is violated.

    WHY: The request was well-formed but cannot be applied to the entity
    in its current state.

    HTTP Status: 422 Unprocessable Entity
    """

    status_code = 422
    default_message = "Business rule violation"


class InvalidStateTransitionError(BusinessRuleViolation):
    """
    Raised when a status change is not an edge of the entity's state graph.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Invalid state transition"


class InvalidStateError(BusinessRuleViolation):
    """
    Raised when an operation is not valid in the entity's current state.

    Example: signing a DRAFT proposal, adding a service to a SENT proposal,
    or filing an amendment against a proposal that was never accepted.

    HTTP Status: 409 Conflict
    """

    status_code = 409
    default_message = "Operation not allowed in the current state"


class AlreadyReviewedError(BusinessRuleViolation):
    """
    Raised when reviewing an amendment or service approval that has
    already been decided.

    HTTP Status: 409 Conflict
    """

    status_code = 409
    default_message = "Already reviewed"


class AlreadyCompletedError(BusinessRuleViolation):
    """
    Raised when completing a stage that is already COMPLETED.

    HTTP Status: 409 Conflict
    """

    status_code = 409
    default_message = "Already completed"


class PrerequisiteNotMetError(BusinessRuleViolation):
    """
    Raised when a workflow step depends on another entity reaching a
    state it has not reached yet (e.g. completing an amendment whose
    proposal is not accepted).

    HTTP Status: 422 Unprocessable Entity
    """

    default_message = "Prerequisite not met"


# ============================================================================
# Infrastructure Exceptions
# ============================================================================


class DatabaseError(AppException):
    """
    Raised when a database operation fails unexpectedly.

    HTTP Status: 500 Internal Server Error
    """

    status_code = 500
    default_message = "Database operation failed"
