"""Unit tests for audit schemas."""

import json

import pytest
from pydantic import ValidationError as PydanticValidationError

from auditchain.audit.schemas import (
    AuditRecord,
    IntegrityViolation,
    VerificationResult,
    ViolationReason,
)
from auditchain.common.exceptions import AuditLogIntegrityError


def make_record(**overrides):
    fields = {
        "actor_id": "u1",
        "action": "login.success",
        "payload": {"method": "password"},
        "created_at": "2026-01-01T00:00:00Z",
        "origin": "10.0.0.1",
        "prev_hash": "",
        "hash": "a" * 64,
    }
    fields.update(overrides)
    return AuditRecord(**fields)


class TestAuditRecord:
    """Test AuditRecord model."""

    def test_id_generated(self):
        """Test ids are generated with the aud_ prefix and never repeat."""
        first, second = make_record(), make_record()
        assert first.id.startswith("aud_")
        assert len(first.id) == len("aud_") + 32
        assert first.id != second.id

    def test_frozen(self):
        """Test records cannot be mutated."""
        record = make_record()
        with pytest.raises(PydanticValidationError):
            record.action = "changed"

    def test_empty_optional_fields_normalised(self):
        """Test empty actor and origin become None."""
        record = make_record(actor_id="", origin="")
        assert record.actor_id is None
        assert record.origin is None

    def test_action_required(self):
        """Test an empty action is rejected."""
        with pytest.raises(PydanticValidationError):
            make_record(action="")

    def test_action_max_length(self):
        """Test actions longer than 255 characters are rejected."""
        make_record(action="a" * 255)
        with pytest.raises(PydanticValidationError):
            make_record(action="a" * 256)

    def test_is_genesis(self):
        """Test first-record detection."""
        assert make_record().is_genesis
        assert not make_record(prev_hash="b" * 64).is_genesis

    def test_jsonl_round_trip(self):
        """Test JSONL serialisation keeps every field."""
        record = make_record(payload={"name": "Zoë", "n": [1, 2]})
        line = record.to_jsonl()

        assert "\n" not in line
        assert json.loads(line)["hash"] == "a" * 64
        assert AuditRecord.from_jsonl(line) == record


class TestVerificationResult:
    """Test VerificationResult."""

    def test_valid(self):
        """Test a valid result does not raise."""
        result = VerificationResult.valid(3, "c" * 64)
        assert result.is_valid
        assert result.raise_for_violation() is result

    def test_failed_raises(self):
        """Test a failed result raises with the violation attached."""
        violation = IntegrityViolation(
            at_record_id="aud_x",
            position=2,
            expected_prev_hash="a" * 64,
            found_prev_hash="b" * 64,
            reason=ViolationReason.PREV_HASH_MISMATCH,
        )
        result = VerificationResult.failed(violation, 2, "a" * 64)

        with pytest.raises(AuditLogIntegrityError) as exc_info:
            result.raise_for_violation()

        assert exc_info.value.violation == violation
        assert exc_info.value.code == "INTEGRITY_VIOLATION"
        assert exc_info.value.details["position"] == 2
        assert exc_info.value.details["reason"] == "prev_hash_mismatch"

    def test_describe_mentions_source(self):
        """Test the summary includes the file location when known."""
        violation = IntegrityViolation(
            position=0,
            expected_prev_hash="",
            reason=ViolationReason.MALFORMED_RECORD,
            source="security.log:7",
        )
        assert "security.log:7" in violation.describe()
        assert "malformed_record" in violation.describe()
