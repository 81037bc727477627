"""Custom exceptions for auditchain.

Provides a hierarchy of exceptions for different error types.
All auditchain exceptions inherit from AuditChainException.
"""

from typing import Any, Dict, Optional


class AuditChainException(Exception):
    """Base exception for all auditchain errors.
    
    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """
    
    def __init__(
        self,
        message: str,
        code: str = "AUDITCHAIN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(AuditChainException):
    """Raised when configuration is invalid or missing."""
    
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="CONFIG_ERROR", details=details)


class ValidationError(AuditChainException):
    """Raised when input validation fails."""
    
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="VALIDATION_ERROR", details=details)


class StorageError(AuditChainException):
    """Raised when durable storage is unavailable or a write fails.
    
    A record whose append raised StorageError is not part of the chain.
    """
    
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="STORAGE_ERROR", details=details)


class LockTimeoutError(AuditChainException):
    """Raised when the append critical section cannot be entered in time."""
    
    def __init__(
        self,
        message: str,
        timeout: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        details["timeout_seconds"] = timeout
        super().__init__(message, code="LOCK_TIMEOUT", details=details)


class TipConflictError(AuditChainException):
    """Raised when a record was computed from a tip that is no longer current."""
    
    def __init__(
        self,
        message: str,
        expected_prev_hash: str,
        current_tip_hash: str,
        details: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        details["expected_prev_hash"] = expected_prev_hash
        details["current_tip_hash"] = current_tip_hash
        super().__init__(message, code="TIP_CONFLICT", details=details)


class AuditLogIntegrityError(AuditChainException):
    """Raised when a caller asks for a failed verification to be raised."""
    
    def __init__(self, message: str, violation: Optional[Any] = None):
        self.violation = violation
        details = violation.model_dump(mode="json") if violation is not None else {}
        super().__init__(message, code="INTEGRITY_VIOLATION", details=details)
