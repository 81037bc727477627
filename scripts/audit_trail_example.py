"""Integration Example: Chained Audit Trail Usage

This example demonstrates appending audit events, chaining security log
lines through rotation, and verifying both chains.
"""

import tempfile
from pathlib import Path

from auditchain.audit import (
    AuditLog,
    IdentityErrorKind,
    IdentityResult,
    RotatingFileSink,
    SQLiteRecordStore,
)


def example_complete_flow(work_dir: Path) -> None:
    """Complete example of audit logging and verification."""

    # ========================================================================
    # 1. Audit log over SQLite
    # ========================================================================

    print("\n=== 1. Appending Audit Events ===\n")

    audit_log = AuditLog(SQLiteRecordStore(work_dir / "audit.db"))

    first = audit_log.append("usr_42", "login.success", {"method": "password"}, origin="10.0.0.7")
    second = audit_log.append_for(
        IdentityResult.fail(IdentityErrorKind.EXPIRED_TOKEN, origin="10.0.0.9"),
        "login.failed",
        {"attempt": 3},
    )

    print(f"Appended {first.id}  hash={first.hash[:16]}...")
    print(f"Appended {second.id}  prev_hash={second.prev_hash[:16]}...")
    print(f"   Identity error recorded: {second.payload['identity_error']}")

    # ========================================================================
    # 2. Verification
    # ========================================================================

    print("\n=== 2. Verifying the Chain ===\n")

    result = audit_log.verify_integrity()
    print(f"Valid: {result.is_valid}  records: {result.records_checked}")

    # ========================================================================
    # 3. Rotating security log
    # ========================================================================

    print("\n=== 3. Rotating Security Log ===\n")

    sink = RotatingFileSink(work_dir / "security", max_bytes=600)
    for attempt in range(10):
        sink.append("auth.rate_limited", {"attempt": attempt}, actor_id="usr_42")

    print(f"Archives: {[p.name for p in sink.archive_paths()]}")
    sink_result = sink.verify_integrity()
    print(f"Valid across rotation: {sink_result.is_valid}  records: {sink_result.records_checked}")


if __name__ == "__main__":
    with tempfile.TemporaryDirectory() as tmp:
        example_complete_flow(Path(tmp))
