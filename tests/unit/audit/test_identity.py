"""Unit tests for identity results."""

import pytest
from pydantic import ValidationError

from auditchain.audit.identity import Identity, IdentityErrorKind, IdentityResult


class TestIdentityResult:
    """Test identity outcomes passed to the audit core."""

    def test_ok(self):
        """Test a resolved actor."""
        result = IdentityResult.ok("alice", origin="10.0.0.7")

        assert result.is_ok
        assert result.actor_id == "alice"
        assert result.identity.origin == "10.0.0.7"
        assert result.error is None

    def test_fail_keeps_origin(self):
        """Test a failed authentication still carries the client address."""
        result = IdentityResult.fail(IdentityErrorKind.INVALID_TOKEN, origin="10.0.0.8")

        assert not result.is_ok
        assert result.actor_id is None
        assert result.error == IdentityErrorKind.INVALID_TOKEN
        assert result.origin == "10.0.0.8"

    def test_error_kinds(self):
        """Test the error kinds recorded in audit payloads."""
        assert [k.value for k in IdentityErrorKind] == [
            "missing_token", "invalid_token", "expired_token", "unauthorized",
        ]

    def test_empty_actor_rejected(self):
        """Test an identity needs a non-empty actor id."""
        with pytest.raises(ValidationError):
            Identity(actor_id="")

    def test_frozen(self):
        """Test identity results are immutable."""
        result = IdentityResult.ok("alice")
        with pytest.raises(ValidationError):
            result.origin = "elsewhere"
