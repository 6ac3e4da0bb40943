"""Patient status endpoints backing the dispensing workflow."""

from fastapi import APIRouter, Depends, Request

from rxautomate.errors import ValidationInputError
from rxautomate.middleware.auth import verify_firebase_token
from rxautomate.middleware.rate_limit import limiter, PATIENT_RATE_LIMIT
from rxautomate.models import (
    EligibilityRequest,
    ExemptionRequest,
    PatientStatusRequest,
    PatientStatusResponse,
)
from rxautomate.nhs.bsa import BSAService
from rxautomate.nhs.spine import NHSSpineService

router = APIRouter(prefix="/api/eps")


def _require(nhs_number: str | None) -> str:
    if not nhs_number:
        raise ValidationInputError("NHS number is required")
    return nhs_number


@router.post("/check-patient-status", response_model=PatientStatusResponse)
@limiter.limit(PATIENT_RATE_LIMIT)
async def check_patient_status(
    request: Request,
    body: PatientStatusRequest,
    user: dict = Depends(verify_firebase_token),
) -> PatientStatusResponse:
    """Combined PDS, exemption, eligibility and GP check for one patient."""
    spine: NHSSpineService = request.app.state.spine
    result = await spine.check_patient_status(
        _require(body.nhs_number), body.service_type, actor=user.get("uid")
    )
    return PatientStatusResponse(**result)


@router.post("/check-exemption")
@limiter.limit(PATIENT_RATE_LIMIT)
async def check_exemption(
    request: Request,
    body: ExemptionRequest,
    user: dict = Depends(verify_firebase_token),
) -> dict:
    spine: NHSSpineService = request.app.state.spine
    return await spine.check_exemption_status(_require(body.nhs_number), actor=user.get("uid"))


@router.post("/check-eligibility")
@limiter.limit(PATIENT_RATE_LIMIT)
async def check_eligibility(
    request: Request,
    body: EligibilityRequest,
    user: dict = Depends(verify_firebase_token),
) -> dict:
    bsa: BSAService = request.app.state.bsa
    return await bsa.check_eligibility(
        _require(body.nhs_number),
        body.service_type,
        check_date=body.check_date,
        actor=user.get("uid"),
    )
