"""DynamoDB backend implementing IEscrowStore.

Two tables:

* ``hourbank-accounts``: ``PK=ACCOUNT#{userId}``, ``SK=BALANCE``, numeric ``balance``.
* ``hourbank-escrows``: ``PK=ESCROW#{recordId}`` with ``SK=RECORD`` for the record
  and ``SK=EVENT#{sequence}`` for each timeline event. Only record items carry a
  ``status`` attribute, so the ``status-auto-release-index`` GSI stays sparse.

Every balance movement commits in the same TransactWriteItems call as the
record write it belongs to.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import boto3
from boto3.dynamodb.conditions import Key
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import BotoCoreError, ClientError

from hourbank.core.exceptions import (
    ConcurrentModificationError,
    InsufficientFundsError,
    StoreUnavailableError,
)
from hourbank.models.escrow import EscrowEvent, EscrowRecord, EscrowStatus

ACCOUNTS_TABLE = "hourbank-accounts"
ESCROWS_TABLE = "hourbank-escrows"
STATUS_INDEX = "status-auto-release-index"

_serializer = TypeSerializer()


def table_definitions(suffix: str = "") -> list[dict[str, Any]]:
    """CreateTable kwargs for every table the store needs."""
    key_schema = [
        {"AttributeName": "PK", "KeyType": "HASH"},
        {"AttributeName": "SK", "KeyType": "RANGE"},
    ]
    key_attrs = [
        {"AttributeName": "PK", "AttributeType": "S"},
        {"AttributeName": "SK", "AttributeType": "S"},
    ]
    return [
        {
            "TableName": f"{ACCOUNTS_TABLE}{suffix}",
            "KeySchema": key_schema,
            "AttributeDefinitions": key_attrs,
            "BillingMode": "PAY_PER_REQUEST",
        },
        {
            "TableName": f"{ESCROWS_TABLE}{suffix}",
            "KeySchema": key_schema,
            "AttributeDefinitions": key_attrs + [
                {"AttributeName": "status", "AttributeType": "S"},
                {"AttributeName": "auto_release_at", "AttributeType": "S"},
            ],
            "GlobalSecondaryIndexes": [
                {
                    "IndexName": STATUS_INDEX,
                    "KeySchema": [
                        {"AttributeName": "status", "KeyType": "HASH"},
                        {"AttributeName": "auto_release_at", "KeyType": "RANGE"},
                    ],
                    "Projection": {"ProjectionType": "ALL"},
                },
            ],
            "BillingMode": "PAY_PER_REQUEST",
        },
    ]


def create_tables(client: Any, suffix: str = "") -> list[str]:
    """Create missing tables. Returns the names that were created."""
    existing = client.list_tables().get("TableNames", [])
    created: list[str] = []
    for defn in table_definitions(suffix):
        if defn["TableName"] in existing:
            continue
        client.create_table(**defn)
        created.append(defn["TableName"])
    for name in created:
        client.get_waiter("table_exists").wait(TableName=name)
    return created


def _iso(value: datetime) -> str:
    """Fixed-width UTC timestamp so string order matches time order."""
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _to_item(model: EscrowRecord | EscrowEvent) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in model.model_dump().items():
        if v is None:
            continue
        if isinstance(v, datetime):
            v = _iso(v)
        elif hasattr(v, "value"):
            v = v.value
        out[k] = v
    return out


def _marshal(item: dict[str, Any]) -> dict[str, Any]:
    return {k: _serializer.serialize(v) for k, v in item.items()}


def _record_item(record: EscrowRecord) -> dict[str, Any]:
    return {"PK": f"ESCROW#{record.id}", "SK": "RECORD", **_to_item(record)}


def _event_item(event: EscrowEvent) -> dict[str, Any]:
    return {
        "PK": f"ESCROW#{event.record_id}",
        "SK": f"EVENT#{event.sequence:06d}",
        **_to_item(event),
    }


def _account_key(account_id: str) -> dict[str, str]:
    return {"PK": f"ACCOUNT#{account_id}", "SK": "BALANCE"}


def _record_from_item(item: dict[str, Any]) -> EscrowRecord:
    data = {k: v for k, v in item.items() if k not in ("PK", "SK")}
    data["version"] = int(data["version"])
    return EscrowRecord.model_validate(data)


def _event_from_item(item: dict[str, Any]) -> EscrowEvent:
    data = {k: v for k, v in item.items() if k not in ("PK", "SK")}
    data["sequence"] = int(data["sequence"])
    return EscrowEvent.model_validate(data)


def _is_cancelled(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") == "TransactionCanceledException"


class DynamoDBEscrowStore:
    """Production IEscrowStore backed by DynamoDB transactions."""

    def __init__(self, table_suffix: str = "", region: str = "us-east-1",
                 endpoint_url: str | None = None) -> None:
        self._table_suffix = table_suffix
        self._region = region
        self._endpoint_url = endpoint_url
        kwargs: dict = {"region_name": region}
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url
        self._ddb = boto3.resource("dynamodb", **kwargs)
        # low-level client: TransactWriteItems takes already-marshalled items
        self._client = boto3.client("dynamodb", **kwargs)
        self._accounts_name = f"{ACCOUNTS_TABLE}{table_suffix}"
        self._escrows_name = f"{ESCROWS_TABLE}{table_suffix}"

    def _table(self, name: str):
        return self._ddb.Table(name)

    def _get_item(self, table_name: str, key: dict[str, str]) -> dict[str, Any] | None:
        try:
            resp = self._table(table_name).get_item(Key=key, ConsistentRead=True)
        except (ClientError, BotoCoreError) as exc:
            raise StoreUnavailableError(f"DynamoDB read failed for {key!r}: {exc}") from exc
        return resp.get("Item")

    def _query(self, table_name: str, **kwargs: Any) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        try:
            while True:
                resp = self._table(table_name).query(**kwargs)
                items.extend(resp.get("Items", []))
                last_key = resp.get("LastEvaluatedKey")
                if not last_key or ("Limit" in kwargs and len(items) >= kwargs["Limit"]):
                    return items
                kwargs["ExclusiveStartKey"] = last_key
        except (ClientError, BotoCoreError) as exc:
            raise StoreUnavailableError(f"DynamoDB query on {table_name} failed: {exc}") from exc

    def _transact(self, items: list[dict[str, Any]]) -> None:
        self._client.transact_write_items(TransactItems=items)

    # ---- accounts ----

    def put_account(self, account_id: str, balance: Decimal) -> None:
        try:
            self._table(self._accounts_name).put_item(
                Item={**_account_key(account_id), "account_id": account_id,
                      "balance": Decimal(balance)},
            )
        except (ClientError, BotoCoreError) as exc:
            raise StoreUnavailableError(f"DynamoDB write failed for account {account_id!r}: {exc}") from exc

    def get_balance(self, account_id: str) -> Decimal:
        item = self._get_item(self._accounts_name, _account_key(account_id))
        if item is None:
            return Decimal("0")
        return Decimal(item["balance"])

    # ---- records ----

    def get_record(self, record_id: str) -> EscrowRecord | None:
        item = self._get_item(self._escrows_name, {"PK": f"ESCROW#{record_id}", "SK": "RECORD"})
        return _record_from_item(item) if item else None

    def list_events(self, record_id: str) -> list[EscrowEvent]:
        items = self._query(
            self._escrows_name,
            KeyConditionExpression=Key("PK").eq(f"ESCROW#{record_id}") & Key("SK").begins_with("EVENT#"),
            ConsistentRead=True,
        )
        return sorted((_event_from_item(i) for i in items), key=lambda e: e.sequence)

    def list_due(self, now: datetime, limit: int) -> list[EscrowRecord]:
        items = self._query(
            self._escrows_name,
            IndexName=STATUS_INDEX,
            KeyConditionExpression=(
                Key("status").eq(EscrowStatus.HELD.value) & Key("auto_release_at").lte(_iso(now))
            ),
            Limit=limit,
        )
        return [_record_from_item(i) for i in items[:limit]]

    def list_open(self) -> list[EscrowRecord]:
        records: list[EscrowRecord] = []
        for status in (EscrowStatus.HELD, EscrowStatus.DISPUTED):
            items = self._query(
                self._escrows_name,
                IndexName=STATUS_INDEX,
                KeyConditionExpression=Key("status").eq(status.value),
            )
            records.extend(_record_from_item(i) for i in items)
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    def insert_escrow(self, record: EscrowRecord, event: EscrowEvent) -> None:
        items = [
            {
                "Update": {
                    "TableName": self._accounts_name,
                    "Key": _marshal(_account_key(record.client_id)),
                    "UpdateExpression": "SET #bal = #bal - :amt",
                    "ConditionExpression": "attribute_exists(PK) AND #bal >= :amt",
                    "ExpressionAttributeNames": {"#bal": "balance"},
                    "ExpressionAttributeValues": _marshal({":amt": record.amount}),
                },
            },
            {
                "Put": {
                    "TableName": self._escrows_name,
                    "Item": _marshal(_record_item(record)),
                    "ConditionExpression": "attribute_not_exists(PK)",
                },
            },
            {
                "Put": {
                    "TableName": self._escrows_name,
                    "Item": _marshal(_event_item(event)),
                },
            },
        ]
        try:
            self._transact(items)
        except ClientError as exc:
            if not _is_cancelled(exc):
                raise StoreUnavailableError(f"Escrow insert failed for {record.id}: {exc}") from exc
            balance = self.get_balance(record.client_id)
            if balance < record.amount:
                raise InsufficientFundsError(record.client_id, balance, record.amount) from exc
            raise ConcurrentModificationError(record.id, 0) from exc
        except BotoCoreError as exc:
            raise StoreUnavailableError(f"Escrow insert failed for {record.id}: {exc}") from exc

    def commit_transition(
        self,
        previous: EscrowRecord,
        updated: EscrowRecord,
        event: EscrowEvent,
        credit_account: str | None = None,
    ) -> None:
        items: list[dict[str, Any]] = [
            {
                "Put": {
                    "TableName": self._escrows_name,
                    "Item": _marshal(_record_item(updated)),
                    "ConditionExpression": "#ver = :expected",
                    "ExpressionAttributeNames": {"#ver": "version"},
                    "ExpressionAttributeValues": _marshal({":expected": previous.version}),
                },
            },
            {
                "Put": {
                    "TableName": self._escrows_name,
                    "Item": _marshal(_event_item(event)),
                    "ConditionExpression": "attribute_not_exists(PK)",
                },
            },
        ]
        if credit_account is not None:
            items.append({
                "Update": {
                    "TableName": self._accounts_name,
                    "Key": _marshal(_account_key(credit_account)),
                    "UpdateExpression": "SET account_id = :acct ADD #bal :amt",
                    "ExpressionAttributeNames": {"#bal": "balance"},
                    "ExpressionAttributeValues": _marshal({
                        ":acct": credit_account, ":amt": previous.amount,
                    }),
                },
            })
        try:
            self._transact(items)
        except ClientError as exc:
            if _is_cancelled(exc):
                raise ConcurrentModificationError(previous.id, previous.version) from exc
            raise StoreUnavailableError(f"Escrow transition failed for {previous.id}: {exc}") from exc
        except BotoCoreError as exc:
            raise StoreUnavailableError(f"Escrow transition failed for {previous.id}: {exc}") from exc

    def ping(self) -> bool:
        try:
            self._client.describe_table(TableName=self._escrows_name)
            return True
        except (ClientError, BotoCoreError):
            return False

