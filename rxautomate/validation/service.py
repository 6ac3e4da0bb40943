import asyncio
import logging
from typing import Sequence

from rxautomate.audit.actions import AuditAction
from rxautomate.audit.writer import AuditWriter
from rxautomate.errors import NotFoundError
from rxautomate.models import IssueType, Severity, ValidationIssue, ValidationResult
from rxautomate.services.firestore import FirestoreService
from rxautomate.services.notifications import NotificationService
from rxautomate.validation.rules import (
    PatientSnapshot,
    PrescriptionSnapshot,
    RuleCheck,
    default_checks,
)

logger = logging.getLogger(__name__)

PHARMACIST_ROLE = "pharmacist"


class PrescriptionValidationService:
    """Runs clinical rule checks over a stored prescription and its patient.

    Any allergy finding is treated as CRITICAL whatever the check reported.
    A CRITICAL result raises exactly one pharmacist notification, and every
    run writes one audit row.
    """

    def __init__(
        self,
        firestore: FirestoreService,
        audit_writer: AuditWriter,
        notifications: NotificationService,
        checks: Sequence[RuleCheck] | None = None,
    ) -> None:
        self._firestore = firestore
        self._audit = audit_writer
        self._notifications = notifications
        self._checks = list(checks) if checks is not None else default_checks()

    async def validate_prescription(
        self, prescription_id: str, actor: str | None = None
    ) -> ValidationResult:
        record = await self._firestore.get_prescription(prescription_id)
        if record is None:
            raise NotFoundError(message=f"Prescription with ID {prescription_id} not found")
        prescription = PrescriptionSnapshot.from_dict(record)

        patient_record = await self._firestore.get_patient(prescription.patient_id)
        if patient_record is None:
            raise NotFoundError(message=f"Patient with ID {prescription.patient_id} not found")
        patient = PatientSnapshot.from_dict(patient_record)

        findings_per_check = await asyncio.gather(
            *(check.check(prescription, patient) for check in self._checks)
        )

        issues: list[ValidationIssue] = []
        for check, findings in zip(self._checks, findings_per_check):
            for finding in findings:
                severity = Severity.CRITICAL if check.issue_type is IssueType.ALLERGY else finding.severity
                issues.append(
                    ValidationIssue(
                        type=check.issue_type,
                        severity=severity,
                        description=finding.description,
                        medications=tuple(finding.medications),
                    )
                )

        result = ValidationResult.from_issues(prescription.id, patient.id, issues)

        if result.severity is Severity.CRITICAL:
            await self._notifications.send_notification(
                type="CRITICAL_VALIDATION_ISSUE",
                title="Critical Prescription Issue",
                message=f"Critical issues found in prescription {prescription.id}",
                recipient_role=PHARMACIST_ROLE,
                priority="high",
                data={
                    "prescriptionId": prescription.id,
                    "patientId": patient.id,
                    "issues": [
                        i.model_dump(mode="json")
                        for i in result.issues
                        if i.severity is Severity.CRITICAL
                    ],
                },
            )

        await self._audit.log_prescription_action(
            AuditAction.PRESCRIPTION_VALIDATION,
            prescription.id,
            actor or "SYSTEM",
            details={
                "isValid": result.is_valid,
                "severity": result.severity.value,
                "issues": [i.model_dump(mode="json") for i in result.issues],
            },
        )
        logger.info(
            "Validated prescription %s: severity=%s issues=%d",
            prescription.id,
            result.severity.value,
            len(result.issues),
        )
        return result
