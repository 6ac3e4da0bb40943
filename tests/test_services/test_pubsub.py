import json
from unittest.mock import MagicMock

import pytest

from rxautomate.config import Settings
from rxautomate.services.pubsub import PubSubService


@pytest.fixture
def publisher():
    client = MagicMock()
    client.topic_path.side_effect = lambda project, topic: f"projects/{project}/topics/{topic}"
    future = MagicMock()
    future.result.return_value = "msg-001"
    client.publish.return_value = future
    return client


@pytest.fixture
def pubsub(publisher):
    return PubSubService(Settings(gcp_project_id="test-project", env="test"), publisher=publisher)


class TestPubSubService:
    @pytest.mark.asyncio
    async def test_audit_event_goes_to_audit_topic(self, pubsub, publisher):
        await pubsub.publish_audit_event({"action": "GET_PATIENT", "user_id": "user-001"})

        args, kwargs = publisher.publish.call_args
        assert args[0] == "projects/test-project/topics/rxautomate-test-audit-events"
        assert json.loads(args[1]) == {"action": "GET_PATIENT", "user_id": "user-001"}
        assert kwargs == {"source": "nhs-gateway-test", "action": "GET_PATIENT"}

    @pytest.mark.asyncio
    async def test_notification_carries_routing_attributes(self, pubsub, publisher):
        await pubsub.publish_notification(
            {"type": "CRITICAL_VALIDATION_ISSUE", "recipient_role": "pharmacist"}
        )

        args, kwargs = publisher.publish.call_args
        assert args[0] == "projects/test-project/topics/rxautomate-test-pharmacist-notifications"
        assert kwargs["type"] == "CRITICAL_VALIDATION_ISSUE"
        assert kwargs["recipient_role"] == "pharmacist"

    @pytest.mark.asyncio
    async def test_retries_then_raises(self, pubsub, publisher, monkeypatch):
        monkeypatch.setattr("asyncio.sleep", _no_sleep)
        publisher.publish.side_effect = RuntimeError("unavailable")

        with pytest.raises(RuntimeError):
            await pubsub.publish_audit_event({"action": "SYSTEM_STARTUP"})
        assert publisher.publish.call_count == 3


async def _no_sleep(_seconds):
    return None
