"""DynamoDB record store - one chain per partition.

Item layout:
    pk        CHAIN#<chain_id>
    sk        SEQ#<zero-padded sequence number>    append order
    gsi1_pk   ACTOR#<actor_id>                      (actor records only)
    gsi1_sk   created_at
    payload   canonical JSON text

Appends are conditional puts on a fresh sort key, so two writers racing from
the same tip cannot both succeed.
"""

import json
import logging
import os
from typing import Any, Dict, Iterator, Optional, Tuple

import boto3
from botocore.exceptions import ClientError

from auditchain.audit.hash_chain import HashChain
from auditchain.audit.schemas import AuditRecord
from auditchain.audit.store import RecordStore
from auditchain.common.constants import AuditConstants, StoreConstants
from auditchain.common.exceptions import ConfigurationError, StorageError, TipConflictError

logger = logging.getLogger(__name__)


class DynamoDBRecordStore(RecordStore):
    """DynamoDB-backed append-only record store."""

    DEFAULT_REGION = "us-east-1"

    def __init__(
        self,
        table_name: Optional[str] = None,
        chain_id: str = StoreConstants.DEFAULT_CHAIN_ID,
        region: Optional[str] = None,
        aws_profile: Optional[str] = None,
        lock_timeout: float = AuditConstants.LOCK_TIMEOUT_SECONDS,
        table: Optional[Any] = None,
    ):
        """Initialize DynamoDB store.

        Args:
            table_name: Table name (falls back to AUDITCHAIN_DYNAMODB_TABLE)
            chain_id: Chain partition within the table
            region: AWS region
            aws_profile: AWS profile
            lock_timeout: Default in-process critical-section timeout
            table: Pre-built boto3 Table resource (skips client creation)
        """
        super().__init__(lock_timeout=lock_timeout)
        self.table_name = table_name or os.environ.get("AUDITCHAIN_DYNAMODB_TABLE")
        if not self.table_name and table is None:
            raise ConfigurationError("AUDITCHAIN_DYNAMODB_TABLE required")

        self.chain_id = chain_id
        self.region = region or os.environ.get("AWS_REGION", self.DEFAULT_REGION)

        if table is not None:
            self.table = table
        else:
            if aws_profile:
                session = boto3.Session(profile_name=aws_profile)
                dynamodb = session.resource("dynamodb", region_name=self.region)
            else:
                dynamodb = boto3.resource("dynamodb", region_name=self.region)
            self.table = dynamodb.Table(self.table_name)

        logger.info(
            f"DynamoDB record store initialized: {self.table_name} "
            f"({self.region}) chain={self.chain_id}"
        )

    @property
    def partition_key(self) -> str:
        return f"CHAIN#{self.chain_id}"

    @staticmethod
    def _sort_key(seq: int) -> str:
        return f"SEQ#{seq:0{StoreConstants.DYNAMODB_SEQ_WIDTH}d}"

    @staticmethod
    def _seq_from_sort_key(sk: str) -> int:
        return int(sk.split("#", 1)[1])

    def _build_item(self, record: AuditRecord, seq: int) -> Dict[str, Any]:
        item = {
            "pk": self.partition_key,
            "sk": self._sort_key(seq),
            "id": record.id,
            "action": record.action,
            "payload": HashChain.serialize_payload(record.payload),
            "created_at": record.created_at,
            "prev_hash": record.prev_hash,
            "hash": record.hash,
        }
        if record.actor_id is not None:
            item["actor_id"] = record.actor_id
            item["gsi1_pk"] = f"ACTOR#{record.actor_id}"
            item["gsi1_sk"] = record.created_at
        if record.origin is not None:
            item["origin"] = record.origin
        return item

    @staticmethod
    def _item_to_record(item: Dict[str, Any]) -> AuditRecord:
        return AuditRecord(
            id=item["id"],
            actor_id=item.get("actor_id"),
            action=item["action"],
            payload=json.loads(item["payload"]),
            created_at=item["created_at"],
            origin=item.get("origin"),
            prev_hash=item.get("prev_hash", AuditConstants.GENESIS_HASH),
            hash=item["hash"],
        )

    def _fetch_tip_item(self) -> Optional[Dict[str, Any]]:
        try:
            response = self.table.query(
                KeyConditionExpression="pk = :pk",
                ExpressionAttributeValues={":pk": self.partition_key},
                ScanIndexForward=False,
                Limit=1,
                ConsistentRead=True,
            )
        except ClientError as e:
            logger.error(f"Tip query failed: {e}")
            raise StorageError(f"Failed to read chain tip: {e}") from e

        items = response.get("Items", [])
        return items[0] if items else None

    def _tip_state(self) -> Tuple[int, str]:
        """Get (tip sequence number, tip hash); (0, "") for an empty chain."""
        item = self._fetch_tip_item()
        if item is None:
            return 0, AuditConstants.GENESIS_HASH
        return self._seq_from_sort_key(item["sk"]), item["hash"]

    def fetch_tip(self) -> Optional[AuditRecord]:
        item = self._fetch_tip_item()
        return self._item_to_record(item) if item else None

    def fetch_tip_hash(self) -> str:
        return self._tip_state()[1]

    def append(self, record: AuditRecord) -> None:
        tip_seq, tip_hash = self._tip_state()
        self._check_tip(record, tip_hash)

        item = self._build_item(record, tip_seq + 1)
        try:
            self.table.put_item(
                Item=item,
                ConditionExpression="attribute_not_exists(pk)",
            )
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                logger.warning(
                    f"Concurrent append won sequence {tip_seq + 1}; "
                    f"rejecting {record.id}"
                )
                raise TipConflictError(
                    "Another writer appended from the same tip",
                    expected_prev_hash=record.prev_hash,
                    current_tip_hash=self.fetch_tip_hash(),
                    details={"record_id": record.id, "seq": tip_seq + 1},
                ) from e
            logger.error(f"put_item failed for {record.id}: {e}")
            raise StorageError(
                f"Failed to append audit record: {e}",
                details={"record_id": record.id},
            ) from e

    def _query_pages(self, **kwargs: Any) -> Iterator[Dict[str, Any]]:
        params = {
            "KeyConditionExpression": "pk = :pk",
            "ExpressionAttributeValues": {":pk": self.partition_key},
            "ConsistentRead": True,
            **kwargs,
        }
        while True:
            try:
                response = self.table.query(**params)
            except ClientError as e:
                logger.error(f"Chain query failed: {e}")
                raise StorageError(f"Failed to read audit records: {e}") from e
            yield response
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return
            params["ExclusiveStartKey"] = last_key

    def iterate_all(self) -> Iterator[AuditRecord]:
        for page in self._query_pages(ScanIndexForward=True):
            for item in page.get("Items", []):
                yield self._item_to_record(item)

    def count(self) -> int:
        return sum(page.get("Count", 0) for page in self._query_pages(Select="COUNT"))

