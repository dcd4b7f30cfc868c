"""Notification dispatchers.

RedisStreamNotificationDispatcher appends each notification to a per-user
Redis stream (`<prefix>:<user_id>`) that the delivery workers consume.
LoggingNotificationDispatcher is the fallback when Redis is unavailable.

Both satisfy the NotificationDispatcher protocol. Delivery is best-effort:
callers wrap them in services.notifier.Notifier, which never lets an
exception from here reach a settlement path.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from order_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import redis.asyncio as aioredis

logger = get_logger(__name__)


class RedisStreamNotificationDispatcher:
    """Publishes notifications with XADD, trimming each stream to `maxlen`."""

    def __init__(self, redis: aioredis.Redis, prefix: str = "notifications", maxlen: int = 10_000) -> None:
        self._redis = redis
        self._prefix = prefix
        self._maxlen = maxlen

    def stream_name(self, user_id: str) -> str:
        return f"{self._prefix}:{user_id}"

    async def send(self, user_id: str, event_type: str, payload: dict[str, Any]) -> None:
        fields = {
            "event_type": event_type,
            "user_id": user_id,
            "payload": json.dumps(payload, default=str),
            "sent_at": datetime.now(UTC).isoformat(),
        }
        message_id = await self._redis.xadd(
            self.stream_name(user_id),
            fields,
            maxlen=self._maxlen,
            approximate=True,
        )
        logger.debug(
            "notification.published",
            user_id=user_id,
            event_type=event_type,
            message_id=message_id,
        )


class LoggingNotificationDispatcher:
    """Writes notifications to the log only."""

    async def send(self, user_id: str, event_type: str, payload: dict[str, Any]) -> None:
        logger.info("notification.logged", user_id=user_id, event_type=event_type, payload=payload)
