import asyncio
import json
import logging

from google.cloud.pubsub_v1 import PublisherClient
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from rxautomate.config import Settings

logger = logging.getLogger(__name__)


class PubSubService:
    """Publishes audit events and pharmacist notifications.

    ``publish`` blocks on the returned future in the default executor and is
    retried a few times before the error reaches the caller.
    """

    def __init__(self, settings: Settings, publisher: PublisherClient | None = None) -> None:
        self._publisher = publisher or PublisherClient()
        self._topics = {
            "audit": self._publisher.topic_path(settings.gcp_project_id, settings.pubsub_audit_topic),
            "notifications": self._publisher.topic_path(
                settings.gcp_project_id, settings.pubsub_notifications_topic
            ),
        }
        self._source = f"nhs-gateway-{settings.env}"

    async def publish(self, topic: str, data: dict, timeout: float, **attributes: str) -> str:
        payload = json.dumps(data, default=str).encode("utf-8")
        loop = asyncio.get_running_loop()
        retrying = AsyncRetrying(
            stop=stop_after_attempt(3),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
            retry=retry_if_exception_type(Exception),
            reraise=True,
            before_sleep=lambda rs: logger.warning(
                "Retrying Pub/Sub %s publish (attempt %d): %s",
                topic,
                rs.attempt_number,
                rs.outcome.exception(),
            ),
        )
        async for attempt in retrying:
            with attempt:
                future = self._publisher.publish(
                    self._topics[topic], payload, source=self._source, **attributes
                )
                return await loop.run_in_executor(None, future.result, timeout)
        raise AssertionError("unreachable")  # pragma: no cover

    async def publish_audit_event(self, data: dict) -> None:
        await self.publish("audit", data, timeout=5, action=str(data.get("action", "")))

    async def publish_notification(self, data: dict) -> None:
        await self.publish(
            "notifications",
            data,
            timeout=10,
            type=str(data.get("type", "")),
            recipient_role=str(data.get("recipient_role", "")),
        )
