"""Error models and exception hierarchy for the secure upload service."""

import datetime
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Any


# --- File Validation Exception Hierarchy ---

class FileValidationError(Exception):
    """Base exception for file validation errors."""
    pass


class FileSizeError(FileValidationError):
    """File is empty or exceeds maximum allowed size."""
    pass


# --- Error Handling Enums ---

class ErrorSeverity(Enum):
    """Enumeration for error severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Enumeration for error categories."""
    VALIDATION = "validation"
    STORAGE = "storage"
    CONFIGURATION = "configuration"
    SYSTEM = "system"


# --- Error Context and Result Models ---

@dataclass
class ErrorContext:
    """Captures contextual information about an error occurrence."""
    error_id: str
    timestamp: datetime.datetime
    request_id: Optional[str]
    user_agent: Optional[str]
    endpoint: Optional[str]
    stack_trace: Optional[str]
    request_data: Dict[str, Any]


@dataclass
class ErrorResult:
    """Complete error processing result with context and user-friendly messages."""
    error_code: str
    severity: ErrorSeverity
    category: ErrorCategory
    technical_message: str
    user_message: str
    suggested_actions: List[str]
    context: ErrorContext
    recoverable: bool


# --- Application Exception Hierarchy ---

class ApplicationError(Exception):
    """Base exception for application errors with enhanced metadata."""

    def __init__(
        self,
        message: str,
        error_code: str,
        severity: ErrorSeverity,
        user_message: Optional[str] = None,
        suggested_actions: Optional[List[str]] = None
    ):
        super().__init__(message)
        self.error_code = error_code
        self.severity = severity
        self.user_message = user_message or message
        self.suggested_actions = suggested_actions or []


class StorageError(ApplicationError):
    """Safe-store relocation or metadata persistence failed."""

    def __init__(self, message: str, error_code: str = "STORAGE_FAILED", **kwargs):
        super().__init__(message, error_code, kwargs.pop("severity", ErrorSeverity.HIGH), **kwargs)


class QuarantineError(StorageError):
    """A file that must be quarantined could not be isolated."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code="QUARANTINE_FAILED", severity=ErrorSeverity.CRITICAL, **kwargs)


class ConfigurationError(ApplicationError):
    """Configuration and environment errors."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, "CONFIGURATION_INVALID", ErrorSeverity.CRITICAL, **kwargs)
