"""
Error types
Fatal configuration problems and operational failures surfaced to callers
"""


class JavScoutError(RuntimeError):
    """Base class for errors raised by javscout."""


class ConfigurationError(JavScoutError):
    """A required setting is missing or blank."""

    def __init__(self, key: str, message: str = ""):
        self.key = key
        super().__init__(message or f"Required setting '{key}' is empty.")


class DetailFetchError(JavScoutError):
    """A detail page could not be fetched or parsed."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Detail page request failed ({url}): {reason}")


class CacheError(JavScoutError):
    """Local cache I/O failed or a record could not be stored."""
