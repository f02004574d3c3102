"""
Error Code Taxonomy for Charging Insights

Structured error codes for alerting, debugging and API error bodies.

Error Code Format:
- E001-E099: Validation errors (bad input data, bad query parameters)
- E200-E299: Database errors (connection, query failures)
- E300-E399: Parsing errors (CSV rows, timestamps, file names)
- E400-E499: Business logic errors (rebuild, profiles, aggregation)
"""

from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    """High-level error categories for grouping and alerting."""

    VALIDATION = "validation"
    DATABASE = "database"
    PARSING = "parsing"
    BUSINESS_LOGIC = "business_logic"
    SYSTEM = "system"


class ErrorCode(str, Enum):
    """Structured error codes with consistent format."""

    # Validation Errors (E001-E099)
    E003_OUT_OF_RANGE = "E003"  # Battery percentage outside [0, 100]
    E004_INVALID_QUERY_PARAMETER = "E004"  # Bad sort key, limit, metric or bucket name
    E005_UNKNOWN_EVENT_TYPE = "E005"  # Event type is neither connect nor disconnect

    # Database Errors (E200-E299)
    E200_DB_CONNECTION_FAILED = "E200"  # Database connection failed
    E201_DB_QUERY_FAILED = "E201"  # Query failed or timed out

    # Parsing Errors (E300-E399)
    E300_CSV_PARSE_FAILED = "E300"  # CSV row could not be parsed
    E301_INVALID_TIMESTAMP = "E301"  # Date or time not in a supported format
    E302_INVALID_UTC_OFFSET = "E302"  # Timezone offset not parseable
    E303_UNRECOGNIZED_FILENAME = "E303"  # User id cannot be derived from file name

    # Business Logic Errors (E400-E499)
    E400_USER_NOT_FOUND = "E400"  # No profile for the requested user
    E401_SESSION_REBUILD_FAILED = "E401"  # Session reconstruction failed for a subject
    E402_PROFILE_COMPUTATION_FAILED = "E402"  # Profile computation failed for a subject
    E403_AGGREGATION_FAILED = "E403"  # Read-time aggregation could not be computed


# Error metadata: maps error codes to categories and descriptions
ERROR_METADATA = {
    # Validation Errors
    ErrorCode.E003_OUT_OF_RANGE: {
        "category": ErrorCategory.VALIDATION,
        "description": "Value outside acceptable range",
        "severity": "warning",
        "alert": False,
    },
    ErrorCode.E004_INVALID_QUERY_PARAMETER: {
        "category": ErrorCategory.VALIDATION,
        "description": "Invalid query parameter",
        "severity": "info",
        "alert": False,
    },
    ErrorCode.E005_UNKNOWN_EVENT_TYPE: {
        "category": ErrorCategory.VALIDATION,
        "description": "Unknown charging event type",
        "severity": "warning",
        "alert": False,
    },
    # Database Errors
    ErrorCode.E200_DB_CONNECTION_FAILED: {
        "category": ErrorCategory.DATABASE,
        "description": "Database connection failed",
        "severity": "critical",
        "alert": True,
    },
    ErrorCode.E201_DB_QUERY_FAILED: {
        "category": ErrorCategory.DATABASE,
        "description": "Database query failed",
        "severity": "error",
        "alert": True,
    },
    # Parsing Errors
    ErrorCode.E300_CSV_PARSE_FAILED: {
        "category": ErrorCategory.PARSING,
        "description": "Failed to parse CSV row",
        "severity": "warning",
        "alert": False,  # Common with hand-exported files
    },
    ErrorCode.E301_INVALID_TIMESTAMP: {
        "category": ErrorCategory.PARSING,
        "description": "Invalid date or time format",
        "severity": "warning",
        "alert": False,
    },
    ErrorCode.E302_INVALID_UTC_OFFSET: {
        "category": ErrorCategory.PARSING,
        "description": "Invalid timezone offset",
        "severity": "warning",
        "alert": False,
    },
    ErrorCode.E303_UNRECOGNIZED_FILENAME: {
        "category": ErrorCategory.PARSING,
        "description": "File name does not carry a user id",
        "severity": "warning",
        "alert": False,
    },
    # Business Logic Errors
    ErrorCode.E400_USER_NOT_FOUND: {
        "category": ErrorCategory.BUSINESS_LOGIC,
        "description": "User not found",
        "severity": "info",
        "alert": False,
    },
    ErrorCode.E401_SESSION_REBUILD_FAILED: {
        "category": ErrorCategory.BUSINESS_LOGIC,
        "description": "Session reconstruction failed for a subject",
        "severity": "error",
        "alert": True,
    },
    ErrorCode.E402_PROFILE_COMPUTATION_FAILED: {
        "category": ErrorCategory.BUSINESS_LOGIC,
        "description": "Profile computation failed for a subject",
        "severity": "error",
        "alert": True,
    },
    ErrorCode.E403_AGGREGATION_FAILED: {
        "category": ErrorCategory.BUSINESS_LOGIC,
        "description": "Aggregation could not be computed",
        "severity": "error",
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
            **context: Additional context fields (user_id, operation, row_number, etc.)
        """
        self.code = code
        self.message = message
        self.exception = exception
        self.context = context
        self.metadata = get_error_metadata(code)

    def to_dict(self) -> dict:
        """Convert to dictionary for logging and API error bodies."""
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

    def to_response(self) -> dict:
        """API error body: ``error`` message plus the structured fields."""
        body = {"error": self.message}
        body.update(self.to_dict())
        return body
