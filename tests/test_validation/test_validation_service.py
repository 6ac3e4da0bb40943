"""Tests for PrescriptionValidationService."""

from unittest.mock import AsyncMock

import pytest

from rxautomate.audit.actions import AuditAction
from rxautomate.errors import NotFoundError
from rxautomate.models import IssueType, Severity
from rxautomate.services.notifications import NotificationService
from rxautomate.validation.rules import AllergyCheck, DosageCheck, Finding, RuleCheck
from rxautomate.validation.service import PrescriptionValidationService


class LowSeverityAllergyCheck(RuleCheck):
    issue_type = IssueType.ALLERGY

    async def check(self, prescription, patient):
        return [Finding(Severity.LOW, "Mild sensitivity recorded", [prescription.medications[0].name])]


@pytest.fixture
def service(mock_firestore, mock_audit_writer, mock_notifications):
    return PrescriptionValidationService(mock_firestore, mock_audit_writer, mock_notifications)


@pytest.fixture
def stored(mock_firestore, prescription_record, patient_record):
    mock_firestore.get_prescription.return_value = prescription_record
    mock_firestore.get_patient.return_value = patient_record
    return mock_firestore


class TestValidatePrescription:
    @pytest.mark.asyncio
    async def test_clean_prescription(self, service, stored, mock_notifications, mock_audit_writer):
        result = await service.validate_prescription("rx-001", actor="user-001")

        assert result.is_valid is True
        assert result.severity is Severity.NONE
        assert result.issues == ()
        mock_notifications.send_notification.assert_not_called()
        mock_audit_writer.log_prescription_action.assert_called_once()

    @pytest.mark.asyncio
    async def test_allergy_is_critical_and_notifies_once(
        self, service, stored, patient_record, mock_notifications, mock_audit_writer
    ):
        patient_record["medical_history"]["allergies"] = ["penicillin"]

        result = await service.validate_prescription("rx-001")

        assert result.is_valid is False
        assert result.severity is Severity.CRITICAL
        assert [i.type for i in result.issues] == [IssueType.ALLERGY]
        mock_notifications.send_notification.assert_called_once()
        kwargs = mock_notifications.send_notification.call_args.kwargs
        assert kwargs["recipient_role"] == "pharmacist"
        assert kwargs["data"]["prescriptionId"] == "rx-001"

        details = mock_audit_writer.log_prescription_action.call_args.kwargs["details"]
        assert details["issues"][0]["type"] == "ALLERGY"
        assert details["issues"][0]["severity"] == "CRITICAL"

    @pytest.mark.asyncio
    async def test_allergy_findings_are_always_critical(
        self, mock_firestore, stored, mock_audit_writer, mock_notifications
    ):
        service = PrescriptionValidationService(
            mock_firestore, mock_audit_writer, mock_notifications, checks=[LowSeverityAllergyCheck()]
        )

        result = await service.validate_prescription("rx-001")

        assert result.issues[0].severity is Severity.CRITICAL
        assert result.severity is Severity.CRITICAL

    @pytest.mark.asyncio
    async def test_severity_is_the_maximum(self, service, stored, prescription_record, patient_record, mock_notifications):
        prescription_record["medications"] = [
            {"name": "Metformin", "dosage": "1000mg"},
            {"name": "Warfarin", "dosage": "5mg"},
        ]
        patient_record["medical_history"]["medications"] = ["aspirin"]

        result = await service.validate_prescription("rx-001")

        assert result.severity is Severity.HIGH
        assert {i.type for i in result.issues} == {IssueType.DOSAGE, IssueType.DRUG_INTERACTION}
        mock_notifications.send_notification.assert_not_called()

    @pytest.mark.asyncio
    async def test_multiple_critical_issues_send_one_notification(
        self, service, stored, prescription_record, patient_record, mock_notifications
    ):
        prescription_record["medications"] = [
            {"name": "Propranolol", "dosage": "40mg"},
            {"name": "Amoxicillin", "dosage": "500mg"},
        ]
        patient_record["medical_history"].update(allergies=["penicillin"], conditions=["asthma"])

        result = await service.validate_prescription("rx-001")

        assert len(result.issues) == 2
        mock_notifications.send_notification.assert_called_once()

    @pytest.mark.asyncio
    async def test_result_is_audited(self, service, stored, mock_audit_writer):
        await service.validate_prescription("rx-001", actor="user-001")

        call = mock_audit_writer.log_prescription_action.call_args
        assert call.args == (AuditAction.PRESCRIPTION_VALIDATION, "rx-001", "user-001")
        assert call.kwargs["details"] == {"isValid": True, "severity": "NONE", "issues": []}

    @pytest.mark.asyncio
    async def test_custom_checks_replace_defaults(
        self, mock_firestore, stored, mock_audit_writer, mock_notifications, patient_record
    ):
        patient_record["medical_history"]["allergies"] = ["penicillin"]
        service = PrescriptionValidationService(
            mock_firestore, mock_audit_writer, mock_notifications, checks=[DosageCheck()]
        )

        result = await service.validate_prescription("rx-001")

        assert result.is_valid is True

    @pytest.mark.asyncio
    async def test_unknown_prescription(self, service, mock_firestore, mock_audit_writer):
        mock_firestore.get_prescription.return_value = None

        with pytest.raises(NotFoundError) as exc_info:
            await service.validate_prescription("rx-missing")

        assert exc_info.value.status_code == 404
        mock_audit_writer.log_prescription_action.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_patient(self, service, mock_firestore, prescription_record):
        mock_firestore.get_prescription.return_value = prescription_record
        mock_firestore.get_patient.return_value = None

        with pytest.raises(NotFoundError):
            await service.validate_prescription("rx-001")

    @pytest.mark.asyncio
    async def test_notification_failure_still_returns_result(
        self, mock_firestore, stored, mock_audit_writer, patient_record
    ):
        failing = NotificationService(AsyncMock(**{"publish_notification.side_effect": RuntimeError("down")}))
        patient_record["medical_history"]["allergies"] = ["penicillin"]
        service = PrescriptionValidationService(
            mock_firestore, mock_audit_writer, failing, checks=[AllergyCheck()]
        )

        result = await service.validate_prescription("rx-001")

        assert result.severity is Severity.CRITICAL
        mock_audit_writer.log_prescription_action.assert_called_once()
