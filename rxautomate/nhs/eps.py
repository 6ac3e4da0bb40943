"""Electronic Prescription Service (EPS) client.

Prescription status changes follow a small state machine: only ``active``
prescriptions can be completed (dispensed) or cancelled, and both of those
states are terminal. Transitions for one prescription are serialized and
re-read the upstream status immediately before the PUT.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import asdict, dataclass, replace
from typing import Any, Awaitable, Callable

from rxautomate.audit.actions import AuditAction, AuditCategory
from rxautomate.errors import (
    InvalidTransitionError,
    StockUnavailableError,
    UpstreamApiError,
    ValidationInputError,
)
from rxautomate.nhs import fhir
from rxautomate.nhs.client import FHIR_JSON, NHSApiClient
from rxautomate.nhs.fhir import Bundle, MedicationRequest
from rxautomate.nhs.nhs_number import mask_nhs_number, normalise, validate_nhs_number
from rxautomate.nhs.response_cache import key_prefix, make_key
from rxautomate.services.inventory import InventoryService, StockCheckResult

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "active": frozenset({"completed", "cancelled"}),
}
TERMINAL_STATUSES = frozenset({"cancelled", "completed", "entered-in-error", "stopped"})

DISPENSED_REASON = {"code": "dispensed", "display": "Medication has been dispensed"}


@dataclass
class StatusReason:
    code: str
    display: str
    text: str | None = None

    def to_fhir(self) -> dict[str, Any]:
        return {
            "coding": [
                {"system": fhir.STATUS_REASON_SYSTEM, "code": self.code, "display": self.display}
            ],
            "text": self.text or self.display,
        }


@dataclass
class PrescriptionSearchParams:
    status: str | list[str] | None = None
    date_written: str | None = None
    date_written_from: str | None = None
    date_written_to: str | None = None
    count: int | None = None
    sort: str | None = None
    search_term: str | None = None
    medication_name: str | None = None
    patient_name: str | None = None
    nhs_number: str | None = None
    prescriber_id: str | None = None
    prescription_id: str | None = None
    include_history: bool = False

    def to_query(self) -> dict[str, str]:
        query: dict[str, str] = {}
        if self.status:
            query["status"] = ",".join(self.status) if isinstance(self.status, list) else self.status
        if self.date_written:
            query["dateWritten"] = self.date_written
        if self.date_written_from:
            query["dateWritten:ge"] = self.date_written_from
        if self.date_written_to:
            query["dateWritten:le"] = self.date_written_to
        if self.count:
            query["_count"] = str(self.count)
        if self.sort:
            query["_sort"] = self.sort
        if self.prescription_id:
            query["identifier"] = self.prescription_id
        if self.nhs_number:
            query["subject"] = self.nhs_number
        if self.prescriber_id:
            query["requester"] = self.prescriber_id
        if self.medication_name:
            query["medication.display"] = self.medication_name
        if self.patient_name:
            query["subject.display"] = self.patient_name
        if self.search_term:
            query["_content"] = self.search_term
        if self.include_history:
            query["_include"] = "MedicationRequest:history"
        return query


class EPSService(NHSApiClient):
    scopes = ("urn:nhsd:fhir:rest:read:medication", "urn:nhsd:fhir:rest:write:medication")
    audit_category = AuditCategory.PRESCRIPTION
    content_type = FHIR_JSON

    def __init__(self, *args: Any, inventory: InventoryService, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._inventory = inventory
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, prescription_id: str) -> asyncio.Lock:
        lock = self._locks.get(prescription_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[prescription_id] = lock
        return lock

    async def get_prescription(self, prescription_id: str, actor: str | None = None) -> MedicationRequest:
        if not prescription_id:
            raise ValidationInputError("Prescription ID is required")
        return await self._call(
            AuditAction.GET_PRESCRIPTION,
            "eps",
            "GET",
            f"MedicationRequest/{prescription_id}",
            resource_id=prescription_id,
            actor=actor,
            cache_key=make_key("prescription", prescription_id),
            ttl=self._settings.prescription_cache_ttl,
            resource_type="MedicationRequest",
            prescription_id=prescription_id,
        )

    def _checked_nhs_number(self, nhs_number: str | None) -> str:
        if not nhs_number:
            raise ValidationInputError("NHS number is required")
        if not validate_nhs_number(nhs_number, self._settings.enforce_nhs_checksum):
            raise ValidationInputError("Invalid NHS number format or checksum")
        return normalise(nhs_number)

    def _checked_params(self, params: PrescriptionSearchParams | None) -> PrescriptionSearchParams:
        params = params or PrescriptionSearchParams()
        if params.nhs_number:
            params = replace(params, nhs_number=self._checked_nhs_number(params.nhs_number))
        return params

    async def get_pharmacy_prescriptions(
        self,
        ods_code: str,
        params: PrescriptionSearchParams | None = None,
        actor: str | None = None,
    ) -> Bundle:
        if not ods_code:
            raise ValidationInputError("Pharmacy ODS code is required")
        params = self._checked_params(params)
        query = {"performer": ods_code, **params.to_query()}
        return await self._call(
            AuditAction.GET_PHARMACY_PRESCRIPTIONS,
            "eps",
            "GET",
            "MedicationRequest",
            resource_id=ods_code,
            actor=actor,
            params=query,
            cache_key=make_key("pharmacy_prescriptions", ods_code, **query),
            ttl=self._settings.prescription_cache_ttl,
            resource_type="Bundle",
            nhs_number=params.nhs_number,
        )

    async def get_patient_prescriptions(
        self,
        nhs_number: str,
        params: PrescriptionSearchParams | None = None,
        actor: str | None = None,
    ) -> Bundle:
        nhs_number = self._checked_nhs_number(nhs_number)
        params = replace(self._checked_params(params), nhs_number=nhs_number)
        query = params.to_query()
        return await self._call(
            AuditAction.GET_PATIENT_PRESCRIPTIONS,
            "eps",
            "GET",
            "MedicationRequest",
            resource_id=nhs_number,
            actor=actor,
            params=query,
            cache_key=make_key("patient_prescriptions", nhs_number, **query),
            ttl=self._settings.prescription_cache_ttl,
            resource_type="Bundle",
            nhs_number=nhs_number,
        )

    async def search_prescriptions(
        self, params: PrescriptionSearchParams, actor: str | None = None
    ) -> Bundle:
        params = self._checked_params(params)
        query = params.to_query()
        audited = dict(query)
        if "subject" in audited:
            audited["subject"] = mask_nhs_number(audited["subject"])
        return await self._call(
            AuditAction.SEARCH_PRESCRIPTIONS,
            "eps",
            "GET",
            "MedicationRequest",
            resource_id="SYSTEM",
            actor=actor,
            params=query,
            cache_key=make_key("search_prescriptions", **query),
            ttl=self._settings.prescription_cache_ttl,
            resource_type="Bundle",
            nhs_number=params.nhs_number,
            audit_details={"params": audited},
        )

    async def update_prescription_status(
        self,
        prescription_id: str,
        status: str,
        reason: StatusReason | None = None,
        actor: str | None = None,
        expected_status: str | None = None,
    ) -> MedicationRequest:
        if not prescription_id:
            raise ValidationInputError("Prescription ID is required")
        if status not in fhir.PRESCRIPTION_STATUSES:
            raise ValidationInputError(f"Unknown prescription status '{status}'")
        return await self._transition(prescription_id, status, reason, actor, expected_status)

    async def cancel_prescription(
        self, prescription_id: str, reason: StatusReason, actor: str | None = None
    ) -> MedicationRequest:
        if reason is None or not reason.code or not reason.display:
            raise ValidationInputError("Cancellation reason code and display are required")
        return await self.update_prescription_status(
            prescription_id, "cancelled", reason, actor, expected_status="active"
        )

    async def complete_prescription(self, prescription_id: str, actor: str | None = None) -> MedicationRequest:
        if not prescription_id:
            raise ValidationInputError("Prescription ID is required")
        stock: list[StockCheckResult] = []

        async def require_stock(current: dict[str, Any]) -> None:
            result = await self._inventory.check_prescription_stock(current)
            if result.short_items:
                raise StockUnavailableError(
                    prescription_id, [asdict(i) for i in result.short_items]
                )
            stock.append(result)

        updated = await self._transition(
            prescription_id,
            "completed",
            StatusReason(**DISPENSED_REASON),
            actor,
            expected_status="active",
            precondition=require_stock,
        )
        try:
            await self._inventory.update_after_dispensing(stock[0])
        except Exception as exc:
            # Already completed upstream; stock needs manual reconciliation
            logger.exception("Stock update failed after dispensing prescription %s", prescription_id)
            await self._audit.log_prescription_action(
                AuditAction.INVENTORY_UPDATE_FAILED,
                prescription_id,
                actor or "SYSTEM",
                details={
                    "error": str(exc),
                    "items": [
                        {"inventoryItemId": i.inventory_item_id, "quantity": i.required_quantity}
                        for i in stock[0].items
                    ],
                },
            )
        return updated

    async def _transition(
        self,
        prescription_id: str,
        status: str,
        reason: StatusReason | None,
        actor: str | None,
        expected_status: str | None,
        precondition: Callable[[dict[str, Any]], Awaitable[None]] | None = None,
    ) -> MedicationRequest:
        async with self._lock_for(prescription_id):
            # Fresh read, never from cache: this is the compare half of the CAS
            current = await self._call(
                AuditAction.GET_PRESCRIPTION,
                "eps",
                "GET",
                f"MedicationRequest/{prescription_id}",
                resource_id=prescription_id,
                actor=actor,
                resource_type="MedicationRequest",
                prescription_id=prescription_id,
            )
            old_status = current["status"]
            if expected_status is not None and old_status != expected_status:
                raise InvalidTransitionError(prescription_id, old_status, status)
            if status not in ALLOWED_TRANSITIONS.get(old_status, frozenset()):
                raise InvalidTransitionError(prescription_id, old_status, status)

            if precondition is not None:
                await precondition(current)

            payload: dict[str, Any] = {
                "resourceType": "MedicationRequest",
                "id": prescription_id,
                "status": status,
            }
            if reason is not None:
                payload["statusReason"] = reason.to_fhir()

            headers: dict[str, str] = {}
            version_id = (current.get("meta") or {}).get("versionId")
            if version_id:
                headers["If-Match"] = f'W/"{version_id}"'

            try:
                updated = await self._call(
                    AuditAction.UPDATE_PRESCRIPTION,
                    "eps",
                    "PUT",
                    f"MedicationRequest/{prescription_id}",
                    resource_id=prescription_id,
                    actor=actor,
                    json=payload,
                    headers=headers,
                    resource_type="MedicationRequest",
                    prescription_id=prescription_id,
                    audit_details={
                        "oldStatus": old_status,
                        "newStatus": status,
                        "statusReason": reason.display if reason else None,
                    },
                )
            except UpstreamApiError as exc:
                # Upstream optimistic concurrency: someone else changed it first
                if exc.upstream_status in (409, 412):
                    raise InvalidTransitionError(prescription_id, old_status, status) from exc
                raise
            finally:
                self.clear_prescription_cache(prescription_id)
                self.clear_pharmacy_cache()
                self.clear_patient_prescription_cache(fhir.subject_nhs_number(current))
                self._cache.delete_prefix("search_prescriptions:")

        logger.info("Prescription %s moved %s -> %s", prescription_id, old_status, status)
        return updated

    def clear_prescription_cache(self, prescription_id: str) -> None:
        self._cache.delete_prefix(key_prefix("prescription", prescription_id))

    def clear_pharmacy_cache(self, ods_code: str | None = None) -> None:
        """Drop cached bundles for one pharmacy, or for every pharmacy."""
        self._cache.delete_prefix(
            key_prefix("pharmacy_prescriptions", ods_code) if ods_code else "pharmacy_prescriptions:"
        )

    def clear_patient_prescription_cache(self, nhs_number: str | None = None) -> None:
        self._cache.delete_prefix(
            key_prefix("patient_prescriptions", normalise(nhs_number))
            if nhs_number
            else "patient_prescriptions:"
        )
