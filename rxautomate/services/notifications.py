import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from rxautomate.services.pubsub import PubSubService

logger = logging.getLogger(__name__)


class NotificationService:
    """Publishes in-app notifications for pharmacy staff onto Pub/Sub."""

    def __init__(self, pubsub: PubSubService) -> None:
        self._pubsub = pubsub

    async def send_notification(
        self,
        type: str,
        title: str,
        message: str,
        recipient_role: str,
        priority: str = "high",
        data: dict[str, Any] | None = None,
    ) -> str | None:
        notification = {
            "id": str(uuid.uuid4()),
            "type": type,
            "title": title,
            "message": message,
            "recipient_role": recipient_role,
            "priority": priority,
            "data": data or {},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await self._pubsub.publish_notification(notification)
        except Exception:
            logger.exception("Failed to publish %s notification", type)
            return None
        logger.info("Sent %s notification to %s", type, recipient_role)
        return notification["id"]
