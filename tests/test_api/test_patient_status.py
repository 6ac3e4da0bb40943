"""Tests for the /api/eps patient status endpoints."""

from unittest.mock import patch

import pytest

from fakes import VALID_NHS_NUMBER
from rxautomate.main import app
from rxautomate.nhs.rate_limiter import InMemoryWindowStore, RateLimiter
from rxautomate.nhs.spine import NHSSpineService


class TestCheckPatientStatus:
    @pytest.mark.asyncio
    async def test_sandbox_patient(self, client, patient_routes, mock_audit_writer):
        response = await client.post(
            "/api/eps/check-patient-status", json={"nhsNumber": VALID_NHS_NUMBER}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["patient"]["id"] == VALID_NHS_NUMBER
        assert data["exemption"] == {"exemptionType": "MATERNITY", "expiryDate": "2023-12-31"}
        assert data["eligibility"] == {"eligible": True, "reason": "AGE_EXEMPT"}
        assert data["message"] == "Patient status check completed successfully"
        assert "timestamp" in data
        actors = {c.kwargs["user_id"] for c in mock_audit_writer.log_action.call_args_list}
        assert actors == {"user-001"}

    @pytest.mark.asyncio
    async def test_missing_number(self, client, fake_nhs):
        response = await client.post("/api/eps/check-patient-status", json={})

        assert response.status_code == 400
        assert response.json() == {"error": "NHS number is required"}
        assert fake_nhs.requests == []

    @pytest.mark.asyncio
    async def test_bad_checksum(self, client, fake_nhs):
        response = await client.post(
            "/api/eps/check-patient-status", json={"nhsNumber": "1234567890"}
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid NHS number format or checksum"}
        assert fake_nhs.requests == []
        assert fake_nhs.token_requests == 0

    @pytest.mark.asyncio
    async def test_upstream_not_found(self, client, patient_routes):
        patient_routes.add(
            "GET",
            f"/personal-demographics/FHIR/R4/Patient/{VALID_NHS_NUMBER}",
            (404, {"issue": [{"diagnostics": "Resource not found"}]}),
        )

        response = await client.post(
            "/api/eps/check-patient-status", json={"nhsNumber": VALID_NHS_NUMBER}
        )

        assert response.status_code == 404
        assert response.json()["message"] == "Resource not found"

    @pytest.mark.asyncio
    async def test_rate_limited(self, client, client_kwargs, patient_routes):
        client_kwargs["rate_limiter"] = RateLimiter(InMemoryWindowStore(), {"default": 0})
        app.state.spine = NHSSpineService(base_url="https://nhs.test", **client_kwargs)

        response = await client.post(
            "/api/eps/check-patient-status", json={"nhsNumber": VALID_NHS_NUMBER}
        )

        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) >= 1
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert patient_routes.requests == []


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_missing_token(self, anonymous_client, fake_nhs):
        response = await anonymous_client.post(
            "/api/eps/check-patient-status", json={"nhsNumber": VALID_NHS_NUMBER}
        )

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}
        assert fake_nhs.requests == []

    @pytest.mark.asyncio
    async def test_invalid_token(self, anonymous_client):
        with patch("rxautomate.middleware.auth._ensure_firebase_app"), patch(
            "rxautomate.middleware.auth.firebase_auth.verify_id_token",
            side_effect=ValueError("bad token"),
        ):
            response = await anonymous_client.post(
                "/api/eps/check-patient-status",
                json={"nhsNumber": VALID_NHS_NUMBER},
                headers={"Authorization": "Bearer not-a-token"},
            )

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    @pytest.mark.asyncio
    async def test_token_uid_is_the_audit_actor(self, anonymous_client, patient_routes, mock_audit_writer):
        with patch("rxautomate.middleware.auth._ensure_firebase_app"), patch(
            "rxautomate.middleware.auth.firebase_auth.verify_id_token",
            return_value={"uid": "pharmacist-042"},
        ):
            response = await anonymous_client.post(
                "/api/eps/check-patient-status",
                json={"nhsNumber": VALID_NHS_NUMBER},
                headers={"Authorization": "Bearer good-token"},
            )

        assert response.status_code == 200
        assert mock_audit_writer.log_action.call_args.kwargs["user_id"] == "pharmacist-042"

    @pytest.mark.asyncio
    async def test_health_is_public(self, anonymous_client):
        response = await anonymous_client.get("/health")

        assert response.status_code == 200


class TestExemptionAndEligibility:
    @pytest.mark.asyncio
    async def test_check_exemption(self, client, patient_routes):
        response = await client.post("/api/eps/check-exemption", json={"nhsNumber": VALID_NHS_NUMBER})

        assert response.status_code == 200
        assert response.json()["exemptionType"] == "MATERNITY"

    @pytest.mark.asyncio
    async def test_check_eligibility(self, client, fake_nhs):
        fake_nhs.add("POST", "/check-eligibility", (200, {"eligible": True, "reason": "AGE_EXEMPT"}))

        response = await client.post(
            "/api/eps/check-eligibility",
            json={"nhsNumber": VALID_NHS_NUMBER, "serviceType": "dental", "checkDate": "2024-03-01"},
        )

        assert response.status_code == 200
        assert response.json()["reason"] == "AGE_EXEMPT"
        assert b"dental" in fake_nhs.requests[0].content
