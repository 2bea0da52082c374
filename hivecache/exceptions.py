"""
Custom exception hierarchy for hivecache.

Cache-layer faults never reach callers; these exceptions cover the failures
that do: missing files, lock timeouts, and invalid search input.
"""

from typing import Optional


class HiveCacheException(Exception):
    """Base exception for all hivecache errors"""
    error_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class FileAccessException(HiveCacheException):
    """Errors raised by the file access layer"""
    error_code = "FILE_ACCESS_ERROR"


class FileNotFoundException(FileAccessException):
    """Target file or directory does not exist"""
    error_code = "FILE_NOT_FOUND"


class LockTimeoutException(HiveCacheException):
    """Path lock could not be acquired in time"""
    error_code = "LOCK_TIMEOUT"


class ValidationException(HiveCacheException):
    """Input validation errors"""
    error_code = "VALIDATION_ERROR"


class SearchPatternException(ValidationException):
    """Search pattern does not compile"""
    error_code = "INVALID_PATTERN"


class CacheException(HiveCacheException):
    """Cache-related errors"""
    error_code = "CACHE_ERROR"
