"""Custom error types and error classification utilities."""

from typing import Optional, Dict, Any
from enum import Enum
from datetime import datetime, timezone
import asyncio
import re


class ErrorCategory(Enum):
    """Categories of errors for better handling."""
    NETWORK = "network"
    PROTOCOL = "protocol"
    AUTHENTICATION = "authentication"
    STORAGE = "storage"
    PARSING = "parsing"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


class VectorCacheError(Exception):
    """Base exception for cache layer errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        """Initialize error."""
        super().__init__(message)
        self.message = message
        self.category = category
        self.details = details or {}
        self.recoverable = recoverable
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/response."""
        return {
            "error": self.message,
            "type": type(self).__name__,
            "category": self.category.value,
            "details": self.details,
            "recoverable": self.recoverable,
            "timestamp": self.timestamp.isoformat(),
        }


class CacheUnavailableError(VectorCacheError):
    """Cache service unreachable, timing out, failing, or rejecting credentials."""

    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None):
        details = {}
        if url:
            details["url"] = url
        if status_code:
            details["status_code"] = status_code

        category = ErrorCategory.NETWORK
        if status_code in (401, 403):
            category = ErrorCategory.AUTHENTICATION

        super().__init__(
            message=message,
            category=category,
            details=details,
            recoverable=category is ErrorCategory.NETWORK,
        )
        self.status_code = status_code


class CacheProtocolError(VectorCacheError):
    """Request rejected by the cache service or response not understood."""

    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None):
        details = {}
        if url:
            details["url"] = url
        if status_code:
            details["status_code"] = status_code

        super().__init__(
            message=message,
            category=ErrorCategory.PROTOCOL,
            details=details,
            recoverable=False,  # Same request will be rejected again
        )
        self.status_code = status_code


class PrimaryUnavailableError(VectorCacheError):
    """Primary store failure. Always surfaced to the caller."""

    def __init__(self, message: str, operation: Optional[str] = None):
        details = {}
        if operation:
            details["operation"] = operation

        super().__init__(
            message=message,
            category=ErrorCategory.STORAGE,
            details=details,
            recoverable=True,
        )
        self.operation = operation


class WarmingError(VectorCacheError):
    """Cache warming could not produce or submit entries."""

    def __init__(self, message: str, scope: Optional[str] = None):
        details = {}
        if scope:
            details["scope"] = scope

        super().__init__(
            message=message,
            category=ErrorCategory.STORAGE,
            details=details,
            recoverable=True,
        )


class MetadataParseError(VectorCacheError):
    """Stored metadata is not a JSON object."""

    def __init__(self, message: str, document_id: Optional[str] = None):
        details = {}
        if document_id:
            details["document_id"] = document_id

        super().__init__(
            message=message,
            category=ErrorCategory.PARSING,
            details=details,
            recoverable=False,
        )


class ValidationError(VectorCacheError):
    """Input validation errors."""

    def __init__(self, message: str, field: Optional[str] = None, value: Optional[Any] = None):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)

        super().__init__(
            message=message,
            category=ErrorCategory.VALIDATION,
            details=details,
            recoverable=False,
        )


# Exception type name fragments mapped to a category
EXCEPTION_TYPE_CATEGORIES = {
    "httpx.TimeoutException": ErrorCategory.NETWORK,
    "httpx.ConnectError": ErrorCategory.NETWORK,
    "httpx.TransportError": ErrorCategory.NETWORK,
    "httpx.DecodingError": ErrorCategory.PROTOCOL,
    "sqlalchemy.exc.OperationalError": ErrorCategory.STORAGE,
    "sqlalchemy.exc.DBAPIError": ErrorCategory.STORAGE,
    "json.decoder.JSONDecodeError": ErrorCategory.PARSING,
    "ConnectionRefusedError": ErrorCategory.NETWORK,
    "ConnectionResetError": ErrorCategory.NETWORK,
}

AUTH_PATTERNS = [
    r"unauthori[sz]ed",
    r"authentication failed",
    r"forbidden",
    r"invalid.*credentials",
]


def categorize_error(error: BaseException) -> ErrorCategory:
    """Map an arbitrary exception onto the error taxonomy.

    Uses a multi-stage classification:
    1. Errors already in the taxonomy keep their category
    2. Timeouts are network errors
    3. Exception type and its bases against known patterns
    4. Message keywords
    """
    if isinstance(error, VectorCacheError):
        return error.category

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return ErrorCategory.NETWORK

    for cls in type(error).__mro__:
        error_type = f"{cls.__module__}.{cls.__name__}"
        for pattern, category in EXCEPTION_TYPE_CATEGORIES.items():
            if error_type == pattern or error_type.endswith("." + pattern.split(".")[-1]):
                return category

    error_str = str(error).lower()
    for pattern in AUTH_PATTERNS:
        if re.search(pattern, error_str):
            return ErrorCategory.AUTHENTICATION

    if any(keyword in error_str for keyword in ["connection", "timeout", "timed out", "unreachable", "refused"]):
        return ErrorCategory.NETWORK
    if any(keyword in error_str for keyword in ["parse", "decode", "malformed"]):
        return ErrorCategory.PARSING
    if any(keyword in error_str for keyword in ["database", "relation", "vector", "storage"]):
        return ErrorCategory.STORAGE

    return ErrorCategory.UNKNOWN
