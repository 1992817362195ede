"""Logging notification sink for local development."""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)


class LoggingNotificationSink:
    """INotificationSink that writes every notification to the log."""

    def notify(self, user_id: str, event_type: str, payload: dict[str, Any]) -> None:
        logger.info("notify user=%s type=%s payload=%s", user_id, event_type, payload)
