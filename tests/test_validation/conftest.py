from unittest.mock import AsyncMock

import pytest

from rxautomate.services.notifications import NotificationService


@pytest.fixture
def mock_notifications():
    service = AsyncMock(spec=NotificationService)
    service.send_notification.return_value = "notif-001"
    return service


@pytest.fixture
def prescription_record():
    return {
        "id": "rx-001",
        "patient_id": "pat-001",
        "medications": [{"name": "Amoxicillin", "dosage": "500mg"}],
    }


@pytest.fixture
def patient_record():
    return {
        "id": "pat-001",
        "medical_history": {
            "allergies": [],
            "medications": [],
            "conditions": [],
        },
    }
