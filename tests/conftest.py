from unittest.mock import AsyncMock

import httpx
import pytest
from tenacity import wait_none

from fakes import PDS, VALID_NHS_NUMBER, FakeNHS
from rxautomate.audit.writer import AuditWriter
from rxautomate.config import Settings
from rxautomate.nhs.bsa import BSAService
from rxautomate.nhs.eps import EPSService
from rxautomate.nhs.rate_limiter import InMemoryWindowStore, RateLimiter
from rxautomate.nhs.response_cache import ResponseCache
from rxautomate.nhs.spine import NHSSpineService
from rxautomate.services.firestore import FirestoreService
from rxautomate.services.inventory import InventoryService
from rxautomate.services.pubsub import PubSubService


@pytest.fixture
def settings():
    return Settings(
        gcp_project_id="test-project",
        env="test",
        nhs_client_id="test-client",
        nhs_client_secret="test-secret",
        nhs_api_key="test-api-key",
        nhs_api_base_url="https://nhs.test",
        nhs_auth_url="https://nhs.test/oauth2/token",
        bsa_api_base_url="https://bsa.test",
        redis_url="",
    )


@pytest.fixture
def mock_firestore():
    store = AsyncMock(spec=FirestoreService)
    store.write_audit.return_value = "audit_logs/audit-001"
    store.health_check.return_value = True
    store.find_inventory_item.return_value = None
    return store


@pytest.fixture
def mock_pubsub():
    return AsyncMock(spec=PubSubService)


@pytest.fixture
def mock_audit_writer():
    writer = AsyncMock(spec=AuditWriter)
    writer.log_action.return_value = "audit_logs/audit-001"
    writer.log_system_event.return_value = "audit_logs/audit-002"
    writer.log_prescription_action.return_value = "audit_logs/audit-003"
    return writer


@pytest.fixture
def fake_nhs():
    return FakeNHS()


@pytest.fixture
def rate_limiter():
    return RateLimiter(InMemoryWindowStore(), {"pds": 600, "eps": 300, "pecs": 300, "default": 300})


@pytest.fixture
def response_cache():
    return ResponseCache()


@pytest.fixture
def client_kwargs(settings, fake_nhs, rate_limiter, response_cache, mock_audit_writer):
    return {
        "settings": settings,
        "rate_limiter": rate_limiter,
        "cache": response_cache,
        "audit_writer": mock_audit_writer,
        "transport": httpx.MockTransport(fake_nhs),
        "retry_wait": wait_none(),
    }


@pytest.fixture
def spine_service(client_kwargs):
    return NHSSpineService(base_url="https://nhs.test", **client_kwargs)


@pytest.fixture
def bsa_service(client_kwargs):
    return BSAService(base_url="https://bsa.test", **client_kwargs)


@pytest.fixture
def inventory_service(mock_firestore, mock_audit_writer):
    return InventoryService(mock_firestore, mock_audit_writer)


@pytest.fixture
def eps_service(client_kwargs, settings, inventory_service):
    return EPSService(base_url=settings.eps_base_url, inventory=inventory_service, **client_kwargs)


@pytest.fixture
def sample_patient():
    return {
        "resourceType": "Patient",
        "id": VALID_NHS_NUMBER,
        "name": [{"family": "Smith", "given": ["Jane"]}],
        "gender": "female",
        "birthDate": "1985-04-12",
    }


@pytest.fixture
def sample_prescription():
    return {
        "resourceType": "MedicationRequest",
        "id": "rx-001",
        "meta": {"versionId": "3"},
        "status": "active",
        "intent": "order",
        "medicationReference": {"display": "Amoxicillin 500mg capsules"},
        "subject": {"reference": f"Patient/{VALID_NHS_NUMBER}"},
        "dispenseRequest": {"quantity": {"value": 21}},
    }


@pytest.fixture
def patient_routes(fake_nhs, sample_patient):
    """Sandbox responses for a full patient status check."""
    fake_nhs.add("GET", f"{PDS}/{VALID_NHS_NUMBER}", (200, sample_patient))
    fake_nhs.add(
        "GET",
        f"/prescription-exemption/1.0.0/exemptions/{VALID_NHS_NUMBER}",
        (200, {"exemptionType": "MATERNITY", "expiryDate": "2023-12-31"}),
    )
    fake_nhs.add(
        "POST",
        "/eligibility/FHIR/R4/verify",
        (200, {"eligible": True, "reason": "AGE_EXEMPT"}),
    )
    fake_nhs.add(
        "GET",
        f"{PDS}/{VALID_NHS_NUMBER}/general-practitioner",
        (200, {"odsCode": "Y12345", "name": "Riverside Surgery"}),
    )
    return fake_nhs
