from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    NONE = "NONE"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.NONE: 0,
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class IssueType(str, Enum):
    DRUG_INTERACTION = "DRUG_INTERACTION"
    DOSAGE = "DOSAGE"
    ALLERGY = "ALLERGY"
    CONTRAINDICATION = "CONTRAINDICATION"


class ValidationIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: IssueType
    severity: Severity
    description: str
    medications: tuple[str, ...] = ()


class ValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    prescription_id: str
    patient_id: str
    is_valid: bool
    severity: Severity
    issues: tuple[ValidationIssue, ...] = ()
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @classmethod
    def from_issues(
        cls, prescription_id: str, patient_id: str, issues: list[ValidationIssue]
    ) -> "ValidationResult":
        severity = max((i.severity for i in issues), key=lambda s: s.rank, default=Severity.NONE)
        return cls(
            prescription_id=prescription_id,
            patient_id=patient_id,
            is_valid=not issues,
            severity=severity,
            issues=tuple(issues),
        )


# --- API request/response bodies -------------------------------------------


class PatientStatusRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    nhs_number: str | None = Field(default=None, alias="nhsNumber")
    service_type: str = Field(default="prescription", alias="serviceType")


class ExemptionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    nhs_number: str | None = Field(default=None, alias="nhsNumber")


class EligibilityRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    nhs_number: str | None = Field(default=None, alias="nhsNumber")
    service_type: str = Field(default="prescription", alias="serviceType")
    check_date: str | None = Field(default=None, alias="checkDate")


class CancelRequest(BaseModel):
    code: str = ""
    display: str = ""
    text: str | None = None


class PatientStatusResponse(BaseModel):
    patient: dict[str, Any]
    exemption: dict[str, Any]
    eligibility: dict[str, Any]
    gp: dict[str, Any] | None = None
    timestamp: str
    message: str = "Patient status check completed successfully"


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str = "0.1.0"
    environment: str
    checks: dict[str, str] = Field(default_factory=dict)
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
