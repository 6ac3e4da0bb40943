"""FHIR R4 resource shapes consumed from NHS endpoints.

Only the fields this service reads are typed; upstream resources pass
through unmodified apart from ``normalise_bundle``.
"""

from __future__ import annotations

from typing import Any, Literal, TypedDict

import jsonschema

PrescriptionStatus = Literal[
    "active",
    "on-hold",
    "cancelled",
    "completed",
    "entered-in-error",
    "stopped",
    "draft",
    "unknown",
]

PRESCRIPTION_STATUSES: tuple[str, ...] = (
    "active",
    "on-hold",
    "cancelled",
    "completed",
    "entered-in-error",
    "stopped",
    "draft",
    "unknown",
)

STATUS_REASON_SYSTEM = "https://fhir.nhs.uk/CodeSystem/prescription-status-reason"


class Reference(TypedDict, total=False):
    reference: str
    display: str


class Coding(TypedDict, total=False):
    system: str
    code: str
    display: str


class Patient(TypedDict, total=False):
    resourceType: str
    id: str
    identifier: list[dict[str, str]]
    name: list[dict[str, Any]]
    gender: str
    birthDate: str


class MedicationRequest(TypedDict, total=False):
    resourceType: str
    id: str
    meta: dict[str, Any]
    status: PrescriptionStatus
    intent: str
    medicationReference: Reference
    medicationCodeableConcept: dict[str, list[Coding]]
    subject: Reference
    authoredOn: str
    requester: Reference
    dosageInstruction: list[dict[str, Any]]
    dispenseRequest: dict[str, Any]
    statusReason: dict[str, Any]


class BundleEntry(TypedDict, total=False):
    resource: dict[str, Any]


class Bundle(TypedDict, total=False):
    resourceType: str
    type: str
    total: int
    link: list[dict[str, str]]
    entry: list[BundleEntry]


SCHEMAS: dict[str, dict[str, Any]] = {
    "Patient": {
        "type": "object",
        "required": ["resourceType", "id"],
        "properties": {
            "resourceType": {"const": "Patient"},
            "id": {"type": "string"},
            "name": {"type": "array"},
        },
    },
    "MedicationRequest": {
        "type": "object",
        "required": ["resourceType", "id", "status"],
        "properties": {
            "resourceType": {"const": "MedicationRequest"},
            "id": {"type": "string"},
            "status": {"enum": list(PRESCRIPTION_STATUSES)},
        },
    },
    "Bundle": {
        "type": "object",
        "required": ["resourceType"],
        "properties": {
            "resourceType": {"const": "Bundle"},
            "total": {"type": "integer", "minimum": 0},
            "entry": {
                "type": "array",
                "items": {"type": "object", "required": ["resource"]},
            },
        },
    },
}


def shape_errors(data: Any, resource_type: str) -> list[str]:
    """Return at most five schema violations for the given resource type."""
    validator = jsonschema.Draft7Validator(SCHEMAS[resource_type])
    return [
        f"{'.'.join(str(p) for p in e.absolute_path)}: {e.message}"
        if e.absolute_path
        else e.message
        for e in list(validator.iter_errors(data))[:5]
    ]


def normalise_bundle(bundle: dict[str, Any]) -> Bundle:
    entry = bundle.get("entry") or []
    bundle["entry"] = entry
    if "total" not in bundle:
        bundle["total"] = len(entry)
    return bundle  # type: ignore[return-value]


def medication_name(resource: dict[str, Any]) -> str:
    ref = resource.get("medicationReference") or {}
    if ref.get("display"):
        return ref["display"]
    codings = (resource.get("medicationCodeableConcept") or {}).get("coding") or []
    if codings and codings[0].get("display"):
        return codings[0]["display"]
    return ""


def dispense_quantity(resource: dict[str, Any]) -> int:
    quantity = ((resource.get("dispenseRequest") or {}).get("quantity") or {}).get("value")
    return int(quantity) if quantity else 1


def subject_nhs_number(resource: dict[str, Any]) -> str | None:
    """NHS number from a ``Patient/<nhs number>`` subject reference."""
    reference = (resource.get("subject") or {}).get("reference") or ""
    if not reference.startswith("Patient/"):
        return None
    return reference.removeprefix("Patient/") or None
