"""Audit schemas - type definitions for chained records and verification.
"""

import json
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auditchain.common.constants import AuditConstants
from auditchain.common.exceptions import AuditLogIntegrityError


class AuditRecord(BaseModel):
    """A single immutable, hash-chained audit record.

    The hash covers prev_hash, actor_id, action, the canonical payload,
    created_at and origin. The id is not part of the hash.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(
        default_factory=lambda: f"{AuditConstants.RECORD_ID_PREFIX}{uuid4().hex}",
        description="Unique record identifier, never reused"
    )
    actor_id: Optional[str] = Field(
        default=None,
        description="Acting user; absent for system events"
    )
    action: str = Field(
        ...,
        min_length=1,
        max_length=AuditConstants.ACTION_MAX_LENGTH,
        description="Short action label, e.g. login.failed"
    )
    payload: Dict[str, Any] = Field(
        default_factory=dict,
        description="String-keyed, JSON-serialisable event data"
    )
    created_at: str = Field(
        ...,
        description="UTC timestamp, second resolution (YYYY-MM-DDTHH:MM:SSZ)"
    )
    origin: Optional[str] = Field(
        default=None,
        description="Network origin of the request (client address)"
    )

    # Integrity
    prev_hash: str = Field(
        default=AuditConstants.GENESIS_HASH,
        description="Hash of the preceding record, empty for the first record"
    )
    hash: str = Field(
        ...,
        description="Digest over the canonical encoding of this record"
    )

    @field_validator("actor_id", "origin", mode="before")
    @classmethod
    def _empty_to_none(cls, value: Any) -> Any:
        if value == "":
            return None
        return value

    @property
    def is_genesis(self) -> bool:
        """Check if this record starts the chain."""
        return self.prev_hash == AuditConstants.GENESIS_HASH

    def to_jsonl(self) -> str:
        """Serialize record to JSONL format."""
        return json.dumps(self.model_dump(mode="json"), ensure_ascii=False)

    @classmethod
    def from_jsonl(cls, line: str) -> "AuditRecord":
        """Deserialize record from JSONL format."""
        return cls.model_validate(json.loads(line))


class ViolationReason(str, Enum):
    """Why verification stopped at a record."""
    PREV_HASH_MISMATCH = "prev_hash_mismatch"
    HASH_MISMATCH = "hash_mismatch"
    MALFORMED_RECORD = "malformed_record"


class IntegrityViolation(BaseModel):
    """The first record at which the chain fails verification.

    Reported, never corrected.
    """
    model_config = ConfigDict(frozen=True)

    at_record_id: Optional[str] = Field(
        default=None,
        description="Id of the failing record (None if it could not be parsed)"
    )
    position: int = Field(
        ...,
        ge=0,
        description="Zero-based position in append order"
    )
    expected_prev_hash: str = Field(
        ...,
        description="Hash the record should have chained to"
    )
    found_prev_hash: Optional[str] = Field(
        default=None,
        description="prev_hash actually stored in the record"
    )
    reason: ViolationReason = Field(
        ...,
        description="Which check failed"
    )
    source: Optional[str] = Field(
        default=None,
        description="file:line for file-backed chains"
    )

    def describe(self) -> str:
        """Human-readable one-line summary."""
        where = f" ({self.source})" if self.source else ""
        return (
            f"{self.reason.value} at position {self.position}{where}: "
            f"record={self.at_record_id} expected_prev_hash={self.expected_prev_hash!r} "
            f"found_prev_hash={self.found_prev_hash!r}"
        )


class VerificationResult(BaseModel):
    """Outcome of a full chain verification."""
    is_valid: bool = Field(
        ...,
        description="True if every record verified"
    )
    records_checked: int = Field(
        default=0,
        ge=0,
        description="Records that passed before verification stopped"
    )
    tip_hash: str = Field(
        default=AuditConstants.GENESIS_HASH,
        description="Hash of the last verified record"
    )
    violation: Optional[IntegrityViolation] = Field(
        default=None,
        description="First violation found (if any)"
    )

    @classmethod
    def valid(cls, records_checked: int, tip_hash: str) -> "VerificationResult":
        return cls(is_valid=True, records_checked=records_checked, tip_hash=tip_hash)

    @classmethod
    def failed(
        cls,
        violation: IntegrityViolation,
        records_checked: int,
        tip_hash: str,
    ) -> "VerificationResult":
        return cls(
            is_valid=False,
            records_checked=records_checked,
            tip_hash=tip_hash,
            violation=violation,
        )

    def raise_for_violation(self) -> "VerificationResult":
        """Raise AuditLogIntegrityError if verification failed.

        Returns:
            self, so calls can be chained

        Raises:
            AuditLogIntegrityError: If a violation was found
        """
        if self.violation is not None:
            raise AuditLogIntegrityError(
                f"Audit chain integrity violation: {self.violation.describe()}",
                violation=self.violation,
            )
        return self
