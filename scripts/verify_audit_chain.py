#!/usr/bin/env python3
"""Verify an audit chain and print the result as JSON.

Examples:
    python scripts/verify_audit_chain.py --sqlite ./data/audit.db
    python scripts/verify_audit_chain.py --sink-dir ./logs/security

Exit codes: 0 chain valid, 1 integrity violation, 2 usage or storage error.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from auditchain.audit.hash_chain import HashChain
from auditchain.audit.log import AuditLog
from auditchain.audit.rotating_sink import RotatingFileSink
from auditchain.audit.sqlite_store import SQLiteRecordStore
from auditchain.common.constants import AuditConstants, SinkConstants
from auditchain.common.exceptions import AuditChainException
from auditchain.common.logging import get_logger

logger = get_logger(__name__, level="WARNING")

EXIT_VALID = 0
EXIT_VIOLATION = 1
EXIT_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Verify an auditchain hash chain")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--sqlite",
        type=Path,
        help="SQLite audit database to verify"
    )
    source.add_argument(
        "--sink-dir",
        type=Path,
        help="Rotating sink directory to verify (archives + active file)"
    )
    parser.add_argument(
        "--file-name",
        default=SinkConstants.DEFAULT_FILE_NAME,
        help=f"Active sink file name (default: {SinkConstants.DEFAULT_FILE_NAME})"
    )
    parser.add_argument(
        "--hash-algorithm",
        default=AuditConstants.HASH_ALGORITHM,
        help=f"Chain hash algorithm (default: {AuditConstants.HASH_ALGORITHM})"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        if args.sqlite is not None:
            if not args.sqlite.exists():
                print(f"No such database: {args.sqlite}", file=sys.stderr)
                return EXIT_ERROR
            audit_log = AuditLog(
                SQLiteRecordStore(args.sqlite),
                hash_chain=HashChain(args.hash_algorithm),
            )
            result = audit_log.verify_integrity()
        else:
            if not args.sink_dir.is_dir():
                print(f"No such directory: {args.sink_dir}", file=sys.stderr)
                return EXIT_ERROR
            sink = RotatingFileSink(
                args.sink_dir,
                file_name=args.file_name,
                hash_algorithm=args.hash_algorithm,
            )
            result = sink.verify_integrity()
    except AuditChainException as e:
        print(json.dumps(e.to_dict()), file=sys.stderr)
        return EXIT_ERROR

    print(json.dumps(result.model_dump(mode="json"), indent=2))
    return EXIT_VALID if result.is_valid else EXIT_VIOLATION


if __name__ == "__main__":
    sys.exit(main())
