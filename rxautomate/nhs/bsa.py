from datetime import date
from typing import Any

from rxautomate.audit.actions import AuditAction, AuditCategory
from rxautomate.errors import ValidationInputError
from rxautomate.nhs.client import NHSApiClient
from rxautomate.nhs.nhs_number import normalise, validate_nhs_number
from rxautomate.nhs.response_cache import make_key


class BSAService(NHSApiClient):
    """NHS Business Services Authority: eligibility, exemptions, prescription tracking."""

    scopes = ("urn:nhsd:bsa:eligibility:read",)
    audit_category = AuditCategory.NHS_API

    def _require_nhs_number(self, nhs_number: str) -> str:
        if not nhs_number:
            raise ValidationInputError("NHS number is required")
        if not validate_nhs_number(nhs_number, self._settings.enforce_nhs_checksum):
            raise ValidationInputError("Invalid NHS number format or checksum")
        return normalise(nhs_number)

    async def check_eligibility(
        self,
        nhs_number: str,
        service_type: str,
        check_date: str | None = None,
        actor: str | None = None,
    ) -> dict[str, Any]:
        nhs_number = self._require_nhs_number(nhs_number)
        if not service_type:
            raise ValidationInputError("Service type is required")
        check_date = check_date or date.today().isoformat()
        return await self._call(
            AuditAction.CHECK_ELIGIBILITY,
            "pecs",
            "POST",
            "check-eligibility",
            resource_id=nhs_number,
            actor=actor,
            json={"nhsNumber": nhs_number, "serviceType": service_type, "checkDate": check_date},
            cache_key=make_key(
                "bsa_eligibility", nhs_number, service_type=service_type, check_date=check_date
            ),
            ttl=self._settings.bsa_eligibility_cache_ttl,
            nhs_number=nhs_number,
            audit_details={"serviceType": service_type},
        )

    async def check_exemption_status(self, nhs_number: str, actor: str | None = None) -> dict[str, Any]:
        nhs_number = self._require_nhs_number(nhs_number)
        return await self._call(
            AuditAction.CHECK_EXEMPTION,
            "pecs",
            "GET",
            f"prescription-exemption/exemptions/{nhs_number}",
            resource_id=nhs_number,
            actor=actor,
            cache_key=make_key("bsa_exemption", nhs_number),
            ttl=self._settings.exemption_cache_ttl,
            nhs_number=nhs_number,
        )

    async def track_prescription(self, prescription_id: str, actor: str | None = None) -> dict[str, Any]:
        if not prescription_id:
            raise ValidationInputError("Prescription ID is required")
        return await self._call(
            AuditAction.TRACK_PRESCRIPTION,
            "pecs",
            "GET",
            f"prescription-tracker/{prescription_id}",
            resource_id=prescription_id,
            actor=actor,
            prescription_id=prescription_id,
        )
