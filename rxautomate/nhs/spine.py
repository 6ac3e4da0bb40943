import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Any

from rxautomate.audit.actions import AuditAction, AuditCategory
from rxautomate.errors import ValidationInputError
from rxautomate.nhs.client import NHSApiClient
from rxautomate.nhs.fhir import Bundle, Patient
from rxautomate.nhs.nhs_number import mask_nhs_number, normalise, validate_nhs_number
from rxautomate.nhs.response_cache import key_prefix, make_key

logger = logging.getLogger(__name__)

PDS_PATH = "personal-demographics/FHIR/R4/Patient"
EXEMPTION_PATH = "prescription-exemption/1.0.0/exemptions"
ELIGIBILITY_PATH = "eligibility/FHIR/R4/verify"


class NHSSpineService(NHSApiClient):
    """Patient demographics (PDS), exemption (PECS) and eligibility lookups."""

    scopes = ("urn:nhsd:fhir:rest:read:patient", "urn:nhsd:fhir:rest:read:medication")
    audit_category = AuditCategory.NHS_API

    def validate_nhs_number(self, nhs_number: str) -> bool:
        return validate_nhs_number(nhs_number, self._settings.enforce_nhs_checksum)

    def _require_nhs_number(self, nhs_number: str) -> str:
        if not nhs_number:
            raise ValidationInputError("NHS number is required")
        if not self.validate_nhs_number(nhs_number):
            raise ValidationInputError("Invalid NHS number format or checksum")
        return normalise(nhs_number)

    async def get_patient_by_nhs_number(self, nhs_number: str, actor: str | None = None) -> Patient:
        nhs_number = self._require_nhs_number(nhs_number)
        return await self._call(
            AuditAction.GET_PATIENT,
            "pds",
            "GET",
            f"{PDS_PATH}/{nhs_number}",
            resource_id=nhs_number,
            actor=actor,
            cache_key=make_key("patient", nhs_number),
            ttl=self._settings.patient_cache_ttl,
            resource_type="Patient",
            nhs_number=nhs_number,
        )

    async def search_patients(
        self,
        family: str | None = None,
        given: str | None = None,
        birthdate: str | None = None,
        actor: str | None = None,
    ) -> Bundle:
        params = {
            k: v
            for k, v in {"family": family, "given": given, "birthdate": birthdate}.items()
            if v
        }
        if not params:
            raise ValidationInputError("At least one search parameter is required")
        return await self._call(
            AuditAction.SEARCH_PATIENTS,
            "pds",
            "GET",
            PDS_PATH,
            resource_id="SEARCH",
            actor=actor,
            params=params,
            resource_type="Bundle",
        )

    async def check_exemption_status(self, nhs_number: str, actor: str | None = None) -> dict[str, Any]:
        nhs_number = self._require_nhs_number(nhs_number)
        return await self._call(
            AuditAction.CHECK_EXEMPTION,
            "pecs",
            "GET",
            f"{EXEMPTION_PATH}/{nhs_number}",
            resource_id=nhs_number,
            actor=actor,
            cache_key=make_key("exemption", nhs_number),
            ttl=self._settings.exemption_cache_ttl,
            nhs_number=nhs_number,
        )

    async def verify_eligibility(
        self, nhs_number: str, service_type: str, actor: str | None = None
    ) -> dict[str, Any]:
        nhs_number = self._require_nhs_number(nhs_number)
        if not service_type:
            raise ValidationInputError("Service type is required")
        check_date = date.today().isoformat()
        return await self._call(
            AuditAction.VERIFY_ELIGIBILITY,
            "pds",
            "POST",
            ELIGIBILITY_PATH,
            resource_id=nhs_number,
            actor=actor,
            json={
                "patientNhsNumber": nhs_number,
                "serviceType": service_type,
                "checkDate": check_date,
            },
            cache_key=make_key(
                "eligibility", nhs_number, service_type=service_type, check_date=check_date
            ),
            ttl=self._settings.eligibility_cache_ttl,
            nhs_number=nhs_number,
            audit_details={"serviceType": service_type},
        )

    async def get_patient_gp(self, nhs_number: str, actor: str | None = None) -> dict[str, Any]:
        nhs_number = self._require_nhs_number(nhs_number)
        return await self._call(
            AuditAction.GET_PATIENT_GP,
            "pds",
            "GET",
            f"{PDS_PATH}/{nhs_number}/general-practitioner",
            resource_id=nhs_number,
            actor=actor,
            nhs_number=nhs_number,
        )

    async def check_patient_status(
        self, nhs_number: str, service_type: str = "prescription", actor: str | None = None
    ) -> dict[str, Any]:
        """Patient, exemption, eligibility and GP lookups issued concurrently.

        The GP lookup is informational: its failure leaves ``gp`` empty instead
        of failing the whole check.
        """
        nhs_number = self._require_nhs_number(nhs_number)
        patient, exemption, eligibility, gp = await asyncio.gather(
            self.get_patient_by_nhs_number(nhs_number, actor),
            self.check_exemption_status(nhs_number, actor),
            self.verify_eligibility(nhs_number, service_type, actor),
            self.get_patient_gp(nhs_number, actor),
            return_exceptions=True,
        )
        for result in (patient, exemption, eligibility):
            if isinstance(result, BaseException):
                raise result
        if isinstance(gp, BaseException):
            logger.warning(
                "GP lookup failed for %s: %s", mask_nhs_number(nhs_number), gp
            )
            gp = None

        return {
            "patient": patient,
            "exemption": exemption,
            "eligibility": eligibility,
            "gp": gp,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def clear_patient_cache(self, nhs_number: str) -> None:
        for operation in ("patient", "exemption", "eligibility"):
            self._cache.delete_prefix(key_prefix(operation, nhs_number))
