"""Hash chain - digest computation and pairwise verification.

Each record's hash covers a structured JSON-array encoding of its fields:

    ["auditchain.v1", prev_hash, actor_id, action, payload, created_at, origin]

JSON string quoting makes the encoding injective, so moving bytes across a
field boundary always changes the digest. Absent optional fields encode as
null.
"""

import hashlib
import hmac
import json
import math
import re
from typing import Any, Mapping, Optional

from auditchain.audit.schemas import AuditRecord
from auditchain.common.constants import AuditConstants
from auditchain.common.exceptions import ConfigurationError, ValidationError


class HashChain:
    """Deterministic record hashing for a single algorithm."""

    def __init__(self, algorithm: str = AuditConstants.HASH_ALGORITHM):
        """Initialize hash chain.

        Args:
            algorithm: hashlib algorithm name with at least 256-bit output

        Raises:
            ConfigurationError: If the algorithm is unknown or too weak
        """
        try:
            sample = hashlib.new(algorithm)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(
                f"Unsupported hash algorithm: {algorithm}",
                details={"algorithm": algorithm},
            ) from e

        # Variable-length digests (shake_*) report digest_size 0
        if sample.digest_size < AuditConstants.MIN_DIGEST_BYTES:
            raise ConfigurationError(
                f"Hash algorithm {algorithm} is too weak for audit chaining",
                details={"algorithm": algorithm, "digest_size": sample.digest_size},
            )

        self.algorithm = algorithm
        self._digest_size = sample.digest_size
        self._hash_pattern = re.compile(rf"^[0-9a-f]{{{self.digest_hex_length}}}$")

    @property
    def digest_hex_length(self) -> int:
        return self._digest_size * 2

    @property
    def hash_pattern(self) -> "re.Pattern[str]":
        """Regex matching a well-formed digest for this algorithm."""
        return self._hash_pattern

    @staticmethod
    def serialize_payload(payload: Optional[Mapping[str, Any]]) -> str:
        """Serialize a payload canonically.

        Keys are sorted, separators compact, non-ASCII kept as UTF-8.

        Raises:
            ValidationError: If the payload is not a string-keyed,
                JSON-serialisable mapping or contains NaN/Infinity
                or text that is not valid UTF-8
        """
        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            raise ValidationError(
                "Audit payload must be a mapping",
                details={"type": type(payload).__name__},
            )
        _check_keys(payload)
        try:
            serialized = json.dumps(
                payload,
                sort_keys=True,
                separators=(",", ":"),
                ensure_ascii=False,
                allow_nan=False,
            )
            # Lone surrogates survive json.dumps but cannot be hashed
            serialized.encode("utf-8")
            return serialized
        except (TypeError, ValueError) as e:
            raise ValidationError(
                f"Audit payload is not JSON-serialisable: {e}"
            ) from e

    def compute(
        self,
        prev_hash: str,
        actor_id: Optional[str],
        action: str,
        payload_serialized: str,
        created_at: str,
        origin: Optional[str],
    ) -> str:
        """Compute the digest for one record's fields.

        Returns:
            Lowercase hex digest
        """
        encoded = json.dumps(
            [
                AuditConstants.CHAIN_FORMAT_VERSION,
                prev_hash,
                actor_id or None,
                action,
                payload_serialized,
                created_at,
                origin or None,
            ],
            separators=(",", ":"),
            ensure_ascii=False,
        )
        hasher = hashlib.new(self.algorithm)
        hasher.update(encoded.encode("utf-8"))
        return hasher.hexdigest()

    def compute_record_hash(self, record: AuditRecord) -> str:
        """Recompute the digest from a record's own fields."""
        return self.compute(
            record.prev_hash,
            record.actor_id,
            record.action,
            self.serialize_payload(record.payload),
            record.created_at,
            record.origin,
        )

    def verify_pair(self, prev_hash: str, record: AuditRecord) -> bool:
        """Check that record chains to prev_hash and its hash is intact."""
        if record.prev_hash != prev_hash:
            return False
        try:
            expected = self.compute_record_hash(record)
        except ValidationError:
            return False
        return hmac.compare_digest(expected, record.hash)


def _check_keys(value: Any) -> None:
    """Reject non-string mapping keys anywhere in the payload."""
    if isinstance(value, Mapping):
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValidationError(
                    "Audit payload keys must be strings",
                    details={"key": repr(key)},
                )
            _check_keys(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            _check_keys(item)
    elif isinstance(value, float) and not math.isfinite(value):
        raise ValidationError("Audit payload must not contain NaN or Infinity")
