import logging
from dataclasses import dataclass, field
from typing import Any

from rxautomate.audit.actions import AuditAction
from rxautomate.audit.writer import AuditWriter
from rxautomate.nhs.fhir import dispense_quantity, medication_name
from rxautomate.services.firestore import FirestoreService

logger = logging.getLogger(__name__)


@dataclass
class StockItem:
    medication_name: str
    required_quantity: int
    current_stock: int = 0
    inventory_item_id: str | None = None
    in_stock: bool = False
    low_stock: bool = False
    out_of_stock: bool = True


@dataclass
class StockCheckResult:
    prescription_id: str
    items: list[StockItem] = field(default_factory=list)

    @property
    def short_items(self) -> list[StockItem]:
        return [i for i in self.items if not i.in_stock]


class InventoryService:
    """Pharmacy stock lookups backing the dispense (complete) transition."""

    def __init__(self, firestore: FirestoreService, audit_writer: AuditWriter) -> None:
        self._firestore = firestore
        self._audit = audit_writer

    async def check_prescription_stock(self, prescription: dict[str, Any]) -> StockCheckResult:
        name = medication_name(prescription)
        required = dispense_quantity(prescription)
        item = StockItem(medication_name=name, required_quantity=required)

        record = await self._firestore.find_inventory_item(name) if name else None
        if record is not None:
            current = int(record.get("current_stock", 0))
            item.current_stock = current
            item.inventory_item_id = record["id"]
            item.in_stock = current >= required
            item.low_stock = current < int(record.get("reorder_level", 0))
            item.out_of_stock = current == 0

        result = StockCheckResult(prescription_id=prescription.get("id", ""), items=[item])
        await self._audit.log_system_event(
            AuditAction.PRESCRIPTION_STOCK_CHECK,
            {
                "prescriptionId": result.prescription_id,
                "medicationName": name,
                "inStock": item.in_stock,
                "currentStock": item.current_stock,
                "requiredQuantity": required,
                "inventoryItemId": item.inventory_item_id,
            },
        )
        return result

    async def update_after_dispensing(self, result: StockCheckResult) -> None:
        for item in result.items:
            if item.inventory_item_id is None:
                continue
            await self._firestore.decrement_stock(item.inventory_item_id, item.required_quantity)
            logger.info(
                "Dispensed %d x %s (item %s)",
                item.required_quantity,
                item.medication_name,
                item.inventory_item_id,
            )
        await self._audit.log_system_event(
            AuditAction.INVENTORY_DISPENSED,
            {
                "prescriptionId": result.prescription_id,
                "items": [
                    {"inventoryItemId": i.inventory_item_id, "quantity": i.required_quantity}
                    for i in result.items
                ],
            },
        )
