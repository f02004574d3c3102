"""
Custom exceptions for Charging Insights.

This module provides a hierarchy of exceptions for better error handling
and more informative error messages throughout the application.
"""


class ChargingInsightsError(Exception):
    """Base exception for all Charging Insights errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class DatabaseError(ChargingInsightsError):
    """Database operation failed."""

    pass


class EventValidationError(ChargingInsightsError):
    """A raw charging event is malformed and must not enter reconstruction."""

    def __init__(self, message: str, field: str = None, value=None, row_number: int = None):
        details = {}
        if field:
            details['field'] = field
        if value is not None:
            details['value'] = value
        if row_number:
            details['row_number'] = row_number
        super().__init__(message, details)
        self.field = field
        self.value = value
        self.row_number = row_number


class CSVImportError(ChargingInsightsError):
    """CSV import operation failed."""

    def __init__(self, message: str, row_number: int = None, filename: str = None):
        details = {}
        if row_number:
            details['row_number'] = row_number
        if filename:
            details['filename'] = filename
        super().__init__(message, details)
        self.row_number = row_number
        self.filename = filename


class SessionReconstructionError(ChargingInsightsError):
    """Rebuilding sessions or the profile for one subject failed."""

    def __init__(self, message: str, user_id: str = None, group_id: str = None):
        details = {}
        if user_id:
            details['user_id'] = user_id
        if group_id:
            details['group_id'] = group_id
        super().__init__(message, details)
        self.user_id = user_id
        self.group_id = group_id


class AggregationError(ChargingInsightsError):
    """
    A read-time aggregation could not be computed.

    Distinct from an empty result: callers should surface this as a
    degraded response rather than "no data".
    """

    def __init__(self, message: str, operation: str = None):
        details = {}
        if operation:
            details['operation'] = operation
        super().__init__(message, details)
        self.operation = operation


class ConfigurationError(ChargingInsightsError):
    """Invalid or missing configuration."""

    def __init__(self, message: str, config_key: str = None):
        details = {}
        if config_key:
            details['config_key'] = config_key
        super().__init__(message, details)
        self.config_key = config_key
