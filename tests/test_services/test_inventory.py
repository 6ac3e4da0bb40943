"""Tests for dispense stock checks against the Firestore inventory."""

import pytest

from rxautomate.audit.actions import AuditAction
from rxautomate.services.inventory import StockCheckResult, StockItem


@pytest.fixture
def prescription(sample_prescription):
    return sample_prescription


class TestCheckPrescriptionStock:
    @pytest.mark.asyncio
    async def test_in_stock(self, inventory_service, mock_firestore, prescription):
        mock_firestore.find_inventory_item.return_value = {
            "id": "inv-001",
            "current_stock": 50,
            "reorder_level": 10,
        }

        result = await inventory_service.check_prescription_stock(prescription)

        mock_firestore.find_inventory_item.assert_called_once_with("Amoxicillin 500mg capsules")
        item = result.items[0]
        assert item.required_quantity == 21
        assert item.in_stock is True
        assert item.low_stock is False
        assert result.all_in_stock is True
        assert result.short_items == []

    @pytest.mark.asyncio
    async def test_low_but_sufficient_stock(self, inventory_service, mock_firestore, prescription):
        mock_firestore.find_inventory_item.return_value = {
            "id": "inv-001",
            "current_stock": 25,
            "reorder_level": 30,
        }

        result = await inventory_service.check_prescription_stock(prescription)

        assert result.all_in_stock is True
        assert result.any_low_stock is True

    @pytest.mark.asyncio
    async def test_insufficient_stock(self, inventory_service, mock_firestore, prescription):
        mock_firestore.find_inventory_item.return_value = {
            "id": "inv-001",
            "current_stock": 5,
            "reorder_level": 10,
        }

        result = await inventory_service.check_prescription_stock(prescription)

        assert result.all_in_stock is False
        assert result.any_out_of_stock is False
        assert [i.medication_name for i in result.short_items] == ["Amoxicillin 500mg capsules"]

    @pytest.mark.asyncio
    async def test_unknown_item_is_out_of_stock(self, inventory_service, mock_firestore, prescription):
        result = await inventory_service.check_prescription_stock(prescription)

        assert result.any_out_of_stock is True
        assert result.items[0].inventory_item_id is None

    @pytest.mark.asyncio
    async def test_stock_check_is_audited(
        self, inventory_service, mock_audit_writer, prescription
    ):
        await inventory_service.check_prescription_stock(prescription)

        action, details = mock_audit_writer.log_system_event.call_args.args
        assert action is AuditAction.PRESCRIPTION_STOCK_CHECK
        assert details["prescriptionId"] == "rx-001"
        assert details["inStock"] is False


class TestUpdateAfterDispensing:
    @pytest.mark.asyncio
    async def test_decrements_known_items(self, inventory_service, mock_firestore, mock_audit_writer):
        result = StockCheckResult(
            prescription_id="rx-001",
            items=[
                StockItem("Amoxicillin", 21, 50, "inv-001", True, False, False),
                StockItem("Unknown", 1),
            ],
        )

        await inventory_service.update_after_dispensing(result)

        mock_firestore.decrement_stock.assert_called_once_with("inv-001", 21)
        action, _ = mock_audit_writer.log_system_event.call_args.args
        assert action is AuditAction.INVENTORY_DISPENSED
