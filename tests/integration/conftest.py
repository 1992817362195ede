"""Integration test fixtures: LocalStack DynamoDB and Redis."""

from __future__ import annotations

import os

import boto3
import pytest
import redis

from hourbank.persistence.dynamodb_backend import create_tables

# Default LocalStack endpoint
LOCALSTACK_URL = os.environ.get("LOCALSTACK_URL", "http://localhost:4566")
REDIS_HOST = os.environ.get("REDIS_HOST", "localhost")
TABLE_SUFFIX = "-inttest"


def _localstack_available() -> bool:
    """Check if LocalStack is reachable."""
    try:
        client = boto3.client("dynamodb", region_name="us-east-1", endpoint_url=LOCALSTACK_URL)
        client.list_tables()
        return True
    except Exception:
        return False


def _redis_available() -> bool:
    try:
        return bool(redis.Redis(host=REDIS_HOST, socket_connect_timeout=1).ping())
    except redis.RedisError:
        return False


skip_no_localstack = pytest.mark.skipif(
    not _localstack_available(),
    reason="LocalStack not available",
)

skip_no_redis = pytest.mark.skipif(
    not _redis_available(),
    reason="Redis not available",
)


@pytest.fixture(scope="session")
def localstack_tables():
    """Create the escrow tables on LocalStack once per session."""
    client = boto3.client("dynamodb", region_name="us-east-1", endpoint_url=LOCALSTACK_URL)
    create_tables(client, suffix=TABLE_SUFFIX)
    return TABLE_SUFFIX
