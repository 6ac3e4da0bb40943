from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from rxautomate.audit.actions import AuditAction, AuditCategory, category_for
from rxautomate.nhs.nhs_number import mask_nhs_number
from rxautomate.services.firestore import FirestoreService
from rxautomate.services.pubsub import PubSubService

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

SENSITIVE_FIELDS = frozenset(
    {
        "password", "token", "secret", "key", "authorization", "auth",
        "creditcard", "card", "cvv", "pin", "ssn", "socialsecurity",
        "dob", "dateofbirth", "birthdate", "address", "postcode",
        "zipcode", "phonenumber", "email",
    }
)


def sanitize_details(details: Any) -> Any:
    if details is None:
        return None
    if not isinstance(details, dict):
        return str(details)
    return {
        k: REDACTED if k.replace("_", "").lower() in SENSITIVE_FIELDS else v
        for k, v in details.items()
    }


class AuditWriter:
    """Audit sink for NHS API calls, prescription changes and validation results.

    Audit failures are logged and never raised: the primary operation must
    not fail because its audit row could not be written.
    """

    def __init__(self, firestore: FirestoreService, pubsub: PubSubService | None = None) -> None:
        self._firestore = firestore
        self._pubsub = pubsub
        self._pending: set[asyncio.Task] = set()

    async def log_action(
        self,
        action: AuditAction,
        category: AuditCategory | None = None,
        user_id: str | None = None,
        details: Any = None,
        nhs_number: str | None = None,
        prescription_id: str | None = None,
        patient_id: str | None = None,
    ) -> str | None:
        audit_doc = {
            "action": action.value,
            "category": (category or category_for(action)).value,
            "user_id": user_id or "SYSTEM",
            "nhs_number": mask_nhs_number(nhs_number) if nhs_number else None,
            "prescription_id": prescription_id,
            "patient_id": patient_id,
            "details": sanitize_details(details),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        try:
            doc_path = await self._firestore.write_audit(audit_doc)
        except Exception:
            logger.exception("Failed to write audit log for %s", action.value)
            return None

        if self._pubsub is not None:
            task = asyncio.create_task(self._safe_publish(audit_doc))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        return doc_path

    async def log_nhs_api_action(
        self,
        action: AuditAction,
        nhs_number: str,
        details: Any = None,
        user_id: str | None = None,
    ) -> str | None:
        return await self.log_action(
            action,
            AuditCategory.NHS_API,
            user_id=user_id,
            details=details,
            nhs_number=nhs_number,
        )

    async def log_prescription_action(
        self,
        action: AuditAction,
        prescription_id: str,
        user_id: str,
        details: Any = None,
    ) -> str | None:
        return await self.log_action(
            action,
            AuditCategory.PRESCRIPTION,
            user_id=user_id,
            details=details,
            prescription_id=prescription_id,
        )

    async def log_system_event(self, action: AuditAction, details: Any = None) -> str | None:
        return await self.log_action(action, AuditCategory.SYSTEM, details=details)

    async def _safe_publish(self, data: dict) -> None:
        try:
            await self._pubsub.publish_audit_event(data)  # type: ignore[union-attr]
        except Exception:
            logger.exception("Failed to publish audit event to Pub/Sub")
