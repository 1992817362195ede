"""Redis notification sink implementing INotificationSink.

Each notification is pushed onto a capped per-user list
(``notifications:{user_id}``) for the inbox view and published on a channel
for live delivery.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

import redis

from hourbank.core.exceptions import NotificationError


class RedisNotificationSink:
    """Production INotificationSink backed by Redis lists and pub/sub."""

    def __init__(self, host: str = "localhost", port: int = 6379, db: int = 0,
                 channel: str = "hourbank-notifications", max_list_length: int = 500) -> None:
        self._host = host
        self._port = port
        self._db = db
        self._channel = channel
        self._max_list_length = max_list_length
        self._client = redis.Redis(
            host=host, port=port, db=db, decode_responses=True,
        )

    @staticmethod
    def inbox_key(user_id: str) -> str:
        return f"notifications:{user_id}"

    def notify(self, user_id: str, event_type: str, payload: dict[str, Any]) -> None:
        message = json.dumps(
            {
                "user_id": user_id,
                "type": event_type,
                "payload": payload,
                "sent_at": datetime.now(timezone.utc).isoformat(),
            },
            default=str,
        )
        key = self.inbox_key(user_id)
        try:
            pipe = self._client.pipeline()
            pipe.lpush(key, message)
            pipe.ltrim(key, 0, self._max_list_length - 1)
            pipe.publish(self._channel, message)
            pipe.execute()
        except Exception as exc:
            raise NotificationError(f"Redis notify failed for user={user_id!r}: {exc}") from exc

    def inbox(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        """Most recent notifications for a user, newest first."""
        try:
            raw = self._client.lrange(self.inbox_key(user_id), 0, limit - 1)
        except Exception as exc:
            raise NotificationError(f"Redis LRANGE failed for user={user_id!r}: {exc}") from exc
        return [json.loads(m) for m in raw]
