"""auditchain - Tamper-evident, hash-chained audit logging."""

__version__ = "0.1.0"
__author__ = "auditchain Team"

# Core exports
from auditchain.audit.schemas import AuditRecord, IntegrityViolation, VerificationResult

__all__ = [
    "AuditRecord",
    "IntegrityViolation",
    "VerificationResult",
]
