"""
QuizMarket Attempt Service
Custom exception classes for structured error handling
"""

from typing import Optional, Dict, Any
from fastapi import status


class AppException(Exception):
    """Base application exception with structured error information"""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses"""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
            "status_code": self.status_code
        }


# Authentication Exceptions
class AuthenticationException(AppException):
    """Raised when authentication fails"""

    def __init__(
        self,
        message: str = "Authentication failed",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_code="AUTHENTICATION_FAILED",
            details=details
        )


class InvalidCredentialsException(AuthenticationException):
    """Raised when login credentials are invalid"""

    def __init__(self, message: str = "Invalid email or password"):
        super().__init__(
            message=message,
            details={"field": "credentials"}
        )


class TokenExpiredException(AuthenticationException):
    """Raised when JWT token has expired"""

    def __init__(self, message: str = "Access token has expired"):
        super().__init__(
            message=message,
            details={"action": "login_required"}
        )


class TokenInvalidException(AuthenticationException):
    """Raised when JWT token is invalid"""

    def __init__(self, message: str = "Invalid access token"):
        super().__init__(
            message=message,
            details={"action": "login_required"}
        )


class AccountDisabledException(AuthenticationException):
    """Raised when user account is disabled"""

    def __init__(self, message: str = "User account is disabled"):
        super().__init__(
            message=message,
            details={"contact": "administrator"}
        )


# Authorization Exceptions
class AuthorizationException(AppException):
    """Raised when user lacks permission for an action"""

    def __init__(
        self,
        message: str = "Access denied",
        required_role: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        if details is None:
            details = {}

        if required_role:
            details["required_role"] = required_role

        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="ACCESS_DENIED",
            details=details
        )


class ResourceOwnershipException(AuthorizationException):
    """Raised when user doesn't own the requested resource"""

    def __init__(self, resource_type: str, resource_id: str):
        message = f"Unauthorized access to {resource_type}"
        super().__init__(
            message=message,
            details={
                "resource_type": resource_type,
                "resource_id": resource_id
            }
        )


class EnrollmentRequiredException(AuthorizationException):
    """Raised when user must be enrolled to take a quiz"""

    def __init__(self, quiz_id: str):
        super().__init__(
            message="You need to enroll in this quiz before attempting it.",
            details={"quiz_id": quiz_id, "reason": "enrollment_required"}
        )


class QuizNotAvailableException(AuthorizationException):
    """Raised when quiz is not open for attempts"""

    def __init__(self, reason: str, quiz_id: str):
        super().__init__(
            message=f"Quiz not available: {reason}",
            details={"quiz_id": quiz_id, "reason": reason}
        )


# Validation Exceptions
class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        value: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        if details is None:
            details = {}

        if field:
            details["field"] = field
        if value is not None:
            details["provided_value"] = str(value)

        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="VALIDATION_ERROR",
            details=details
        )


class UnknownQuestionException(ValidationException):
    """Raised when answers reference questions outside the attempt snapshot"""

    def __init__(self, question_ids: list):
        super().__init__(
            message="Answers reference questions that are not part of this attempt",
            field="answers",
            details={"unknown_question_ids": sorted(question_ids)}
        )


# Resource Exceptions
class NotFoundException(AppException):
    """Raised when requested resource is not found"""

    def __init__(
        self,
        message: str = "Resource not found",
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None
    ):
        details = {}
        if resource_type:
            details["resource_type"] = resource_type
        if resource_id:
            details["resource_id"] = resource_id

        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="NOT_FOUND",
            details=details
        )


class QuizNotFoundException(NotFoundException):
    """Raised when quiz is not found"""

    def __init__(self, quiz_id: str):
        super().__init__(
            message="Quiz not found",
            resource_type="quiz",
            resource_id=quiz_id
        )


class AttemptNotFoundException(NotFoundException):
    """Raised when quiz attempt is not found"""

    def __init__(self, attempt_id: str):
        super().__init__(
            message="Quiz attempt not found",
            resource_type="quiz_attempt",
            resource_id=attempt_id
        )


# Conflict Exceptions
class ConflictException(AppException):
    """Raised when operation conflicts with current state"""

    def __init__(
        self,
        message: str = "Conflict with current state",
        conflict_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        if details is None:
            details = {}

        if conflict_type:
            details["conflict_type"] = conflict_type

        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_code="CONFLICT",
            details=details
        )


class InvalidAttemptStateException(AppException):
    """Raised when an operation targets an attempt that is no longer in progress"""

    def __init__(self, attempt_id: str, current_status: str, action: str):
        super().__init__(
            message=f"Cannot {action} quiz attempt: attempt is {current_status}",
            status_code=status.HTTP_409_CONFLICT,
            error_code="INVALID_STATE",
            details={
                "attempt_id": attempt_id,
                "status": current_status,
                "action": action
            }
        )


class AttemptExpiredException(AppException):
    """Raised when a timed attempt has run past its timer"""

    def __init__(self, attempt_id: str, timer_seconds: int):
        super().__init__(
            message="This attempt has expired.",
            status_code=status.HTTP_410_GONE,
            error_code="ATTEMPT_EXPIRED",
            details={
                "attempt_id": attempt_id,
                "timer_seconds": timer_seconds
            }
        )


class MaxAttemptsExceededException(AppException):
    """Raised when maximum quiz attempts are exceeded"""

    def __init__(self, quiz_id: str, max_attempts: Optional[int], current_attempts: int):
        super().__init__(
            message="You have reached the maximum number of attempts for this quiz.",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="MAX_ATTEMPTS_EXCEEDED",
            details={
                "quiz_id": quiz_id,
                "max_attempts": max_attempts,
                "current_attempts": current_attempts
            }
        )


# Rate Limiting Exceptions
class RateLimitException(AppException):
    """Raised when rate limit is exceeded"""

    def __init__(
        self,
        message: str = "Too many quiz attempt requests. Please try again later.",
        retry_after: Optional[int] = None
    ):
        details = {}
        if retry_after:
            details["retry_after_seconds"] = retry_after

        super().__init__(
            message=message,
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            error_code="RATE_LIMIT_EXCEEDED",
            details=details
        )


# Export all exceptions
__all__ = [
    # Base
    "AppException",

    # Authentication
    "AuthenticationException",
    "InvalidCredentialsException",
    "TokenExpiredException",
    "TokenInvalidException",
    "AccountDisabledException",

    # Authorization
    "AuthorizationException",
    "ResourceOwnershipException",
    "EnrollmentRequiredException",
    "QuizNotAvailableException",

    # Validation
    "ValidationException",
    "UnknownQuestionException",

    # Resources
    "NotFoundException",
    "QuizNotFoundException",
    "AttemptNotFoundException",

    # Attempt lifecycle
    "ConflictException",
    "InvalidAttemptStateException",
    "AttemptExpiredException",
    "MaxAttemptsExceededException",

    # Rate Limiting
    "RateLimitException",
]
