"""
Custom exceptions for the event lifecycle engine.
"""

class EventEngineError(Exception):
    """Base exception for all event engine errors."""
    pass

class DataError(EventEngineError):
    """Raised when there are issues with event or analysis data."""
    pass

class ConfigError(EventEngineError):
    """Raised when there are configuration issues."""
    pass

class APIError(EventEngineError):
    """Raised when external API calls fail."""
    pass

class UpstreamFetchFailure(APIError):
    """Raised when the actuals provider fails or times out for a whole batch."""
    pass

class ValidationError(EventEngineError):
    """Raised when input validation fails."""
    pass

class InvalidTimestamp(ValidationError):
    """Raised when an event date or time of day is malformed."""
    pass

class UnparsableNumeric(ValidationError):
    """Raised when a release value cannot be read as a number."""
    pass
