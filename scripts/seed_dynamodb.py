"""Create the escrow DynamoDB tables and seed demo account balances.

Usage:
    python scripts/seed_dynamodb.py --endpoint-url http://localhost:4566 --table-suffix=-dev
    python scripts/seed_dynamodb.py --account client-1=10 --account freelancer-1=0
"""

from __future__ import annotations

import argparse
from decimal import Decimal
from typing import Any

import boto3

from hourbank.persistence.dynamodb_backend import DynamoDBEscrowStore, create_tables

DEMO_ACCOUNTS: dict[str, Decimal] = {
    "demo-client": Decimal("20"),
    "demo-freelancer": Decimal("5"),
    "demo-admin": Decimal("0"),
}


def parse_account(raw: str) -> tuple[str, Decimal]:
    """Parse ``user_id=balance``."""
    user_id, sep, balance = raw.partition("=")
    if not sep or not user_id:
        raise argparse.ArgumentTypeError(f"expected user_id=balance, got {raw!r}")
    return user_id, Decimal(balance)


def seed_accounts(store: Any, accounts: dict[str, Decimal]) -> None:
    for user_id, balance in accounts.items():
        store.put_account(user_id, balance)
        print(f"  Account {user_id}: {balance} hours")


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed DynamoDB tables for Hourbank escrow")
    parser.add_argument("--endpoint-url", default=None, help="DynamoDB endpoint (e.g. http://localhost:4566)")
    parser.add_argument("--table-suffix", default="",
                        help="Table name suffix, given as --table-suffix=-dev (it starts with a dash)")
    parser.add_argument("--region", default="us-east-1", help="AWS region")
    parser.add_argument("--account", action="append", type=parse_account, default=[],
                        help="Account to seed as user_id=balance (repeatable); defaults to demo accounts")
    args = parser.parse_args()

    kwargs: dict[str, Any] = {"region_name": args.region}
    if args.endpoint_url:
        kwargs["endpoint_url"] = args.endpoint_url

    client = boto3.client("dynamodb", **kwargs)

    print("Creating tables...")
    for name in create_tables(client, suffix=args.table_suffix):
        print(f"  Created table {name}")

    print("Seeding accounts...")
    store = DynamoDBEscrowStore(
        table_suffix=args.table_suffix, region=args.region, endpoint_url=args.endpoint_url,
    )
    seed_accounts(store, dict(args.account) or DEMO_ACCOUNTS)

    print("Done!")


if __name__ == "__main__":
    main()
