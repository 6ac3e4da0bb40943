from fastapi import APIRouter, Depends, Query, Request

from rxautomate.middleware.auth import verify_firebase_token
from rxautomate.middleware.rate_limit import limiter, PRESCRIPTION_RATE_LIMIT
from rxautomate.models import CancelRequest, ValidationResult
from rxautomate.nhs.eps import EPSService, PrescriptionSearchParams, StatusReason
from rxautomate.validation.service import PrescriptionValidationService

router = APIRouter(prefix="/api")


def _search_params(
    status: list[str] | None = Query(default=None),
    date_written: str | None = Query(default=None, alias="dateWritten"),
    date_written_from: str | None = Query(default=None, alias="dateWrittenFrom"),
    date_written_to: str | None = Query(default=None, alias="dateWrittenTo"),
    count: int | None = Query(default=None, ge=1, le=500),
    sort: str | None = Query(default=None),
    search_term: str | None = Query(default=None, alias="searchTerm"),
    medication_name: str | None = Query(default=None, alias="medicationName"),
    patient_name: str | None = Query(default=None, alias="patientName"),
    nhs_number: str | None = Query(default=None, alias="nhsNumber"),
    prescriber_id: str | None = Query(default=None, alias="prescriberId"),
    prescription_id: str | None = Query(default=None, alias="prescriptionId"),
    include_history: bool = Query(default=False, alias="includeHistory"),
) -> PrescriptionSearchParams:
    return PrescriptionSearchParams(
        status=status,
        date_written=date_written,
        date_written_from=date_written_from,
        date_written_to=date_written_to,
        count=count,
        sort=sort,
        search_term=search_term,
        medication_name=medication_name,
        patient_name=patient_name,
        nhs_number=nhs_number,
        prescriber_id=prescriber_id,
        prescription_id=prescription_id,
        include_history=include_history,
    )


@router.get("/prescriptions/{prescription_id}")
@limiter.limit(PRESCRIPTION_RATE_LIMIT)
async def get_prescription(
    request: Request, prescription_id: str, user: dict = Depends(verify_firebase_token)
) -> dict:
    eps: EPSService = request.app.state.eps
    return await eps.get_prescription(prescription_id, actor=user.get("uid"))


@router.get("/prescriptions")
@limiter.limit(PRESCRIPTION_RATE_LIMIT)
async def search_prescriptions(
    request: Request,
    params: PrescriptionSearchParams = Depends(_search_params),
    user: dict = Depends(verify_firebase_token),
) -> dict:
    eps: EPSService = request.app.state.eps
    return await eps.search_prescriptions(params, actor=user.get("uid"))


@router.get("/pharmacies/{ods_code}/prescriptions")
@limiter.limit(PRESCRIPTION_RATE_LIMIT)
async def get_pharmacy_prescriptions(
    request: Request,
    ods_code: str,
    params: PrescriptionSearchParams = Depends(_search_params),
    user: dict = Depends(verify_firebase_token),
) -> dict:
    eps: EPSService = request.app.state.eps
    return await eps.get_pharmacy_prescriptions(ods_code, params, actor=user.get("uid"))


@router.post("/prescriptions/{prescription_id}/cancel")
@limiter.limit(PRESCRIPTION_RATE_LIMIT)
async def cancel_prescription(
    request: Request,
    prescription_id: str,
    body: CancelRequest,
    user: dict = Depends(verify_firebase_token),
) -> dict:
    eps: EPSService = request.app.state.eps
    reason = StatusReason(code=body.code, display=body.display, text=body.text)
    return await eps.cancel_prescription(prescription_id, reason, actor=user.get("uid"))


@router.post("/prescriptions/{prescription_id}/complete")
@limiter.limit(PRESCRIPTION_RATE_LIMIT)
async def complete_prescription(
    request: Request, prescription_id: str, user: dict = Depends(verify_firebase_token)
) -> dict:
    """Mark a prescription dispensed. Refused with 409 when stock is short."""
    eps: EPSService = request.app.state.eps
    return await eps.complete_prescription(prescription_id, actor=user.get("uid"))


@router.post("/prescriptions/{prescription_id}/validate", response_model=ValidationResult)
@limiter.limit(PRESCRIPTION_RATE_LIMIT)
async def validate_prescription(
    request: Request, prescription_id: str, user: dict = Depends(verify_firebase_token)
) -> ValidationResult:
    validation: PrescriptionValidationService = request.app.state.validation
    return await validation.validate_prescription(prescription_id, actor=user.get("uid"))
