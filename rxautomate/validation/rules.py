"""Pluggable clinical rule checks run against a prescription and its patient.

Each check returns zero or more findings. The default implementations are
table-driven; pass different tables (or another ``RuleCheck``) to plug in
a real pharmacological knowledge base.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from rxautomate.models import IssueType, Severity
from rxautomate.validation import knowledge


@dataclass
class PrescribedMedication:
    name: str
    dosage: str = ""

    @property
    def key(self) -> str:
        return self.name.strip().lower()


@dataclass
class PrescriptionSnapshot:
    id: str
    patient_id: str
    medications: list[PrescribedMedication] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PrescriptionSnapshot":
        return cls(
            id=data["id"],
            patient_id=data.get("patient_id") or data.get("patientId") or "",
            medications=[
                PrescribedMedication(name=m.get("name", ""), dosage=m.get("dosage", ""))
                for m in data.get("medications") or []
            ],
        )


@dataclass
class PatientSnapshot:
    id: str
    allergies: list[str] = field(default_factory=list)
    medications: list[str] = field(default_factory=list)
    conditions: list[str] = field(default_factory=list)
    age: int | None = None
    weight: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PatientSnapshot":
        medical = data.get("medical_history") or data.get("medicalHistory") or {}
        return cls(
            id=data["id"],
            allergies=list(medical.get("allergies") or data.get("allergies") or []),
            medications=list(medical.get("medications") or data.get("medications") or []),
            conditions=list(medical.get("conditions") or data.get("conditions") or []),
            age=data.get("age"),
            weight=data.get("weight"),
        )


@dataclass
class Finding:
    severity: Severity
    description: str
    medications: list[str] = field(default_factory=list)


def _lower(values: list[str]) -> list[str]:
    return [v.strip().lower() for v in values]


class RuleCheck(ABC):
    issue_type: IssueType

    @abstractmethod
    async def check(
        self, prescription: PrescriptionSnapshot, patient: PatientSnapshot
    ) -> list[Finding]:
        ...


class InteractionCheck(RuleCheck):
    """Prescribed medication vs. the patient's current medication list."""

    issue_type = IssueType.DRUG_INTERACTION

    def __init__(self, interactions: dict[str, list[tuple[str, Severity, str]]] | None = None) -> None:
        self._interactions = interactions if interactions is not None else knowledge.INTERACTIONS

    async def check(
        self, prescription: PrescriptionSnapshot, patient: PatientSnapshot
    ) -> list[Finding]:
        current = _lower(patient.medications)
        findings: list[Finding] = []
        for med in prescription.medications:
            hits = [
                (other, severity, description)
                for other, severity, description in self._interactions.get(med.key, [])
                if other in current
            ]
            if not hits:
                continue
            findings.append(
                Finding(
                    severity=max((h[1] for h in hits), key=lambda s: s.rank),
                    description="; ".join(h[2] for h in hits),
                    medications=[med.name, *(h[0] for h in hits)],
                )
            )
        return findings


class DosageCheck(RuleCheck):
    issue_type = IssueType.DOSAGE

    def __init__(self, limits: dict[str, tuple[Severity, str]] | None = None) -> None:
        self._limits = limits if limits is not None else knowledge.DOSAGE_LIMITS

    async def check(
        self, prescription: PrescriptionSnapshot, patient: PatientSnapshot
    ) -> list[Finding]:
        findings: list[Finding] = []
        for med in prescription.medications:
            hit = self._limits.get(f"{med.key} {med.dosage.strip().lower()}")
            if hit is not None:
                severity, description = hit
                findings.append(Finding(severity, description, [med.name]))
        return findings


class AllergyCheck(RuleCheck):
    """Matches patient allergies against the allergen classes of each medication."""

    issue_type = IssueType.ALLERGY

    def __init__(self, components: dict[str, list[str]] | None = None) -> None:
        self._components = components if components is not None else knowledge.ALLERGEN_COMPONENTS

    async def check(
        self, prescription: PrescriptionSnapshot, patient: PatientSnapshot
    ) -> list[Finding]:
        allergies = [a for a in _lower(patient.allergies) if a]
        findings: list[Finding] = []
        for med in prescription.medications:
            classes = [med.key, *self._components.get(med.key, [])]
            matched = [a for a in allergies if any(c in a or a in c for c in classes)]
            if matched:
                findings.append(
                    Finding(
                        Severity.CRITICAL,
                        f"Patient is allergic to {', '.join(matched)} (contained in {med.name})",
                        [med.name],
                    )
                )
        return findings


class ContraindicationCheck(RuleCheck):
    issue_type = IssueType.CONTRAINDICATION

    def __init__(self, contraindications: dict[str, list[tuple[str, Severity]]] | None = None) -> None:
        self._contraindications = (
            contraindications if contraindications is not None else knowledge.CONTRAINDICATIONS
        )

    async def check(
        self, prescription: PrescriptionSnapshot, patient: PatientSnapshot
    ) -> list[Finding]:
        conditions = _lower(patient.conditions)
        findings: list[Finding] = []
        for med in prescription.medications:
            for condition, severity in self._contraindications.get(med.key, []):
                if any(condition in c for c in conditions):
                    findings.append(
                        Finding(
                            severity,
                            f"{med.name} is contraindicated in patients with {condition}",
                            [med.name],
                        )
                    )
                    # First matching condition only
                    break
        return findings


def default_checks() -> list[RuleCheck]:
    return [InteractionCheck(), DosageCheck(), AllergyCheck(), ContraindicationCheck()]
