"""
Error Code Taxonomy for the MotorLog notifier

Structured error codes for alerting, debugging and monitoring of the
reminder run and push delivery.

Error Code Format:
- E001-E099: Validation errors (bad input data)
- E100-E199: Push transport errors
- E200-E299: Database errors
- E300-E399: Parsing errors
- E400-E499: Reminder engine errors
- E500-E599: System errors (configuration, unhandled failures)
"""

from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    """High-level error categories for grouping and alerting."""

    VALIDATION = "validation"
    PUSH_TRANSPORT = "push_transport"
    DATABASE = "database"
    PARSING = "parsing"
    REMINDER_ENGINE = "reminder_engine"
    SYSTEM = "system"


class ErrorCode(str, Enum):
    """Structured error codes with consistent format."""

    # Validation Errors (E001-E099)
    E001_INVALID_TOKEN = "E001"  # Missing or invalid bearer token
    E002_MISSING_REQUIRED_FIELD = "E002"  # Required field missing in request
    E003_INVALID_SUBSCRIPTION = "E003"  # Push subscription object is malformed

    # Push Transport Errors (E100-E199)
    E100_PUSH_SUBSCRIPTION_GONE = "E100"  # Push service returned 404/410
    E101_PUSH_CONNECTION = "E101"  # Push service unreachable
    E102_PUSH_REJECTED = "E102"  # Push service rejected the message

    # Database Errors (E200-E299)
    E200_DB_QUERY_FAILED = "E200"  # Store read failed
    E201_DB_WRITE_FAILED = "E201"  # Store write failed
    E202_DB_SLOW_QUERY = "E202"  # Store call exceeded the slow-query threshold

    # Parsing Errors (E300-E399)
    E301_INVALID_TIMESTAMP = "E301"  # Stored timestamp could not be parsed

    # Reminder Engine Errors (E400-E499)
    E400_VEHICLE_SKIPPED = "E400"  # Vehicle could not be evaluated
    E401_VEHICLE_FAILED = "E401"  # Vehicle processing raised

    # System Errors (E500-E599)
    E500_INTERNAL_SERVER_ERROR = "E500"  # Unhandled internal error
    E501_MISSING_VAPID_KEYS = "E501"  # Transport credentials not configured


# Error metadata: maps error codes to categories and descriptions
ERROR_METADATA = {
    ErrorCode.E001_INVALID_TOKEN: {
        "category": ErrorCategory.VALIDATION,
        "description": "Missing or invalid bearer token",
        "severity": "warning",
        "alert": False,
    },
    ErrorCode.E002_MISSING_REQUIRED_FIELD: {
        "category": ErrorCategory.VALIDATION,
        "description": "Required field missing in request",
        "severity": "warning",
        "alert": False,
    },
    ErrorCode.E003_INVALID_SUBSCRIPTION: {
        "category": ErrorCategory.VALIDATION,
        "description": "Push subscription object is malformed",
        "severity": "warning",
        "alert": False,
    },
    ErrorCode.E100_PUSH_SUBSCRIPTION_GONE: {
        "category": ErrorCategory.PUSH_TRANSPORT,
        "description": "Push endpoint expired or unsubscribed",
        "severity": "info",
        "alert": False,  # Expected churn, endpoint gets pruned
    },
    ErrorCode.E101_PUSH_CONNECTION: {
        "category": ErrorCategory.PUSH_TRANSPORT,
        "description": "Push service connection failed",
        "severity": "warning",
        "alert": True,
    },
    ErrorCode.E102_PUSH_REJECTED: {
        "category": ErrorCategory.PUSH_TRANSPORT,
        "description": "Push service rejected the message",
        "severity": "warning",
        "alert": True,
    },
    ErrorCode.E200_DB_QUERY_FAILED: {
        "category": ErrorCategory.DATABASE,
        "description": "Database read failed",
        "severity": "error",
        "alert": True,
    },
    ErrorCode.E201_DB_WRITE_FAILED: {
        "category": ErrorCategory.DATABASE,
        "description": "Database write failed",
        "severity": "error",
        "alert": True,
    },
    ErrorCode.E202_DB_SLOW_QUERY: {
        "category": ErrorCategory.DATABASE,
        "description": "Database call slower than threshold",
        "severity": "warning",
        "alert": False,
    },
    ErrorCode.E301_INVALID_TIMESTAMP: {
        "category": ErrorCategory.PARSING,
        "description": "Invalid timestamp format",
        "severity": "warning",
        "alert": False,
    },
    ErrorCode.E400_VEHICLE_SKIPPED: {
        "category": ErrorCategory.REMINDER_ENGINE,
        "description": "Vehicle skipped (no odometer, reminders or subscriptions)",
        "severity": "info",
        "alert": False,
    },
    ErrorCode.E401_VEHICLE_FAILED: {
        "category": ErrorCategory.REMINDER_ENGINE,
        "description": "Vehicle processing failed",
        "severity": "error",
        "alert": True,
    },
    ErrorCode.E500_INTERNAL_SERVER_ERROR: {
        "category": ErrorCategory.SYSTEM,
        "description": "Unhandled internal error",
        "severity": "critical",
        "alert": True,
    },
    ErrorCode.E501_MISSING_VAPID_KEYS: {
        "category": ErrorCategory.SYSTEM,
        "description": "VAPID keys are not configured",
        "severity": "critical",
        "alert": True,
    },
}


def get_error_metadata(error_code: ErrorCode) -> dict:
    """Get metadata for an error code."""
    return ERROR_METADATA.get(
        error_code,
        {
            "category": ErrorCategory.SYSTEM,
            "description": "Unknown error",
            "severity": "error",
            "alert": True,
        },
    )


class StructuredError:
    """Structured error with code, category, and metadata."""

    def __init__(self, code: ErrorCode, message: str, exception: Optional[Exception] = None, **context):
        """
        Create a structured error.

        Args:
            code: Error code from ErrorCode enum
            message: Human-readable error message
            exception: Original exception (if applicable)
            **context: Additional context fields (vehicle_id, reminder_id, etc.)
        """
        self.code = code
        self.message = message
        self.exception = exception
        self.context = context
        self.metadata = get_error_metadata(code)

    def to_dict(self) -> dict:
        """Convert to dictionary for logging."""
        error_dict = {
            "code": self.code.value,
            "category": self.metadata["category"].value,
            "message": self.message,
            "severity": self.metadata["severity"],
            "alert": self.metadata["alert"],
        }

        if self.exception:
            error_dict["exception_type"] = type(self.exception).__name__
            error_dict["exception_message"] = str(self.exception)

        if self.context:
            error_dict["context"] = self.context

        return error_dict

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"
