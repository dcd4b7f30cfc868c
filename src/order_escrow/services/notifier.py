"""Best-effort notification wrapper.

Services call this only after their transaction has committed. A failing
dispatcher is logged and swallowed: notifications never block or roll back
settlement.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from order_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import uuid
    from collections.abc import Iterable

    from order_escrow.domain.collaborators import NotificationDispatcher
    from order_escrow.domain.enums import NotificationType

logger = get_logger(__name__)


class Notifier:
    def __init__(self, dispatcher: NotificationDispatcher) -> None:
        self._dispatcher = dispatcher

    async def notify(
        self,
        user_id: str,
        event_type: NotificationType,
        order_id: uuid.UUID,
        **payload: Any,
    ) -> bool:
        """Send one notification. Returns False (and logs) if delivery failed."""
        body = {"order_id": str(order_id), **payload}
        try:
            await self._dispatcher.send(user_id, event_type.value, body)
        except Exception as exc:
            logger.warning(
                "notification.failed",
                user_id=user_id,
                event_type=event_type.value,
                order_id=str(order_id),
                error=str(exc),
            )
            return False
        return True

    async def notify_many(
        self,
        user_ids: Iterable[str],
        event_type: NotificationType,
        order_id: uuid.UUID,
        **payload: Any,
    ) -> int:
        """Send the same notification to several users; returns how many succeeded."""
        delivered = 0
        for user_id in user_ids:
            if await self.notify(user_id, event_type, order_id, **payload):
                delivered += 1
        return delivered
