from enum import Enum


class AuditAction(str, Enum):
    GET_PATIENT = "GET_PATIENT"
    SEARCH_PATIENTS = "SEARCH_PATIENTS"
    GET_PATIENT_GP = "GET_PATIENT_GP"
    CHECK_EXEMPTION = "CHECK_EXEMPTION"
    VERIFY_ELIGIBILITY = "VERIFY_ELIGIBILITY"
    CHECK_ELIGIBILITY = "CHECK_ELIGIBILITY"
    TRACK_PRESCRIPTION = "TRACK_PRESCRIPTION"
    GET_PRESCRIPTION = "GET_PRESCRIPTION"
    GET_PHARMACY_PRESCRIPTIONS = "GET_PHARMACY_PRESCRIPTIONS"
    GET_PATIENT_PRESCRIPTIONS = "GET_PATIENT_PRESCRIPTIONS"
    SEARCH_PRESCRIPTIONS = "SEARCH_PRESCRIPTIONS"
    UPDATE_PRESCRIPTION = "UPDATE_PRESCRIPTION"
    PRESCRIPTION_VALIDATION = "PRESCRIPTION_VALIDATION"
    PRESCRIPTION_STOCK_CHECK = "PRESCRIPTION_STOCK_CHECK"
    INVENTORY_DISPENSED = "INVENTORY_DISPENSED"
    INVENTORY_UPDATE_FAILED = "INVENTORY_UPDATE_FAILED"
    API_ERROR = "API_ERROR"
    AUTHENTICATION = "AUTHENTICATION"
    SYSTEM_EVENT = "SYSTEM_EVENT"


class AuditCategory(str, Enum):
    NHS_API = "NHS_API"
    PRESCRIPTION = "PRESCRIPTION"
    PATIENT = "PATIENT"
    AUTHENTICATION = "AUTHENTICATION"
    SYSTEM = "SYSTEM"


def category_for(action: AuditAction) -> AuditCategory:
    name = action.value
    if name.startswith("GET_") or action in (
        AuditAction.CHECK_EXEMPTION,
        AuditAction.VERIFY_ELIGIBILITY,
        AuditAction.CHECK_ELIGIBILITY,
    ):
        return AuditCategory.NHS_API
    if "PRESCRIPTION" in name:
        return AuditCategory.PRESCRIPTION
    if "PATIENT" in name:
        return AuditCategory.PATIENT
    if action is AuditAction.AUTHENTICATION:
        return AuditCategory.AUTHENTICATION
    return AuditCategory.SYSTEM
