"""
Custom exceptions for the MotorLog notifier.

This module provides a hierarchy of exceptions for better error handling
and more informative error messages throughout the application.
"""


class NotifierError(Exception):
    """Base exception for all notifier errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class DatabaseError(NotifierError):
    """Database operation failed."""

    pass


class ConfigurationError(NotifierError):
    """Invalid or missing configuration."""

    def __init__(self, message: str, config_key: str = None):
        details = {}
        if config_key:
            details['config_key'] = config_key
        super().__init__(message, details)
        self.config_key = config_key


class PushDeliveryError(NotifierError):
    """A push message could not be delivered to an endpoint."""

    def __init__(self, message: str, endpoint: str = None, status_code: int = None):
        details = {}
        if endpoint:
            details['endpoint'] = endpoint[:60]
        if status_code:
            details['status_code'] = status_code
        super().__init__(message, details)
        self.endpoint = endpoint
        self.status_code = status_code


class SubscriptionGoneError(PushDeliveryError):
    """The push service reports the endpoint no longer exists (404/410)."""

    def __init__(self, endpoint: str, status_code: int = 410):
        super().__init__("Push subscription is no longer valid", endpoint, status_code)
