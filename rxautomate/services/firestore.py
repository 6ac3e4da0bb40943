from typing import Any

from google.cloud import firestore
from google.cloud.firestore_v1 import AsyncClient
from google.cloud.firestore_v1.base_query import FieldFilter

from rxautomate.config import Settings


class FirestoreService:
    def __init__(self, settings: Settings) -> None:
        self._client = AsyncClient(project=settings.gcp_project_id)
        self._audit_collection = settings.audit_collection
        self._prescriptions = settings.prescriptions_collection
        self._patients = settings.patients_collection
        self._inventory = settings.inventory_collection

    async def write_audit(self, data: dict[str, Any]) -> str:
        doc_ref = self._client.collection(self._audit_collection).document()
        await doc_ref.set(data)
        return doc_ref.path

    async def get_prescription(self, prescription_id: str) -> dict[str, Any] | None:
        doc = await self._client.collection(self._prescriptions).document(prescription_id).get()
        if not doc.exists:
            return None
        return {**doc.to_dict(), "id": doc.id}

    async def get_patient(self, patient_id: str) -> dict[str, Any] | None:
        doc = await self._client.collection(self._patients).document(patient_id).get()
        if not doc.exists:
            return None
        return {**doc.to_dict(), "id": doc.id}

    async def find_inventory_item(self, medication_name: str) -> dict[str, Any] | None:
        query = (
            self._client.collection(self._inventory)
            .where(filter=FieldFilter("name_lower", "==", medication_name.lower()))
            .limit(1)
        )
        async for doc in query.stream():
            return {**doc.to_dict(), "id": doc.id}
        return None

    async def decrement_stock(self, item_id: str, quantity: int) -> None:
        doc_ref = self._client.collection(self._inventory).document(item_id)
        await doc_ref.update({"current_stock": firestore.Increment(-quantity)})

    async def health_check(self) -> bool:
        """Verify Firestore connectivity with a lightweight read."""
        try:
            query = self._client.collection(self._audit_collection).limit(1)
            async for _ in query.stream():
                pass
            return True
        except Exception:
            return False

    async def close(self) -> None:
        self._client.close()
