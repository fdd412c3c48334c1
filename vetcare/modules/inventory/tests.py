"""
Tests for the inventory module

Covers:
- Stock ledger: signed transactions, insufficient stock, status boundaries
- Posting lifecycle and low-stock alerts
- InventoryService persistence, filters and stats
- Inventory endpoints
"""

import pytest
from decimal import Decimal
from uuid import uuid4

from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy.orm import Session

from vetcare.common.errors import InsufficientStockError, LedgerValidationError
from vetcare.modules.audit.models import AuditEntry
from vetcare.modules.inventory.ledger import (
    apply_transaction, derive_stock_alert, derive_stock_status, signed_quantity
)
from vetcare.modules.inventory.models import StockAlert, StockTransaction
from vetcare.modules.inventory.schemas import (
    AlertSeverity, AlertStatus, AlertType, InventoryFilters, InventoryItemCreate, InventoryItemUpdate,
    ItemSort, StockChange, StockLevel, StockStatus, TransactionState,
    TransactionType, UsageCreate
)
from vetcare.modules.inventory.service import InventoryService


def used(quantity, reason="Used in treatment"):
    return StockChange(transaction_type=TransactionType.USED, quantity=quantity, reason=reason)


# ===== FIXTURES =====

@pytest.fixture
def amoxicillin_data():
    return {
        "item_code": "MED-001",
        "name": "Amoxicillin 250mg",
        "item_type": "medicine",
        "unit_of_measure": "tablets",
        "initial_stock": 50,
        "reorder_point": 20,
        "reorder_quantity": 100,
        "unit_cost": "12.50",
        "has_expiration": True,
    }


@pytest.fixture
def amoxicillin(db_session: Session, ctx, amoxicillin_data):
    service = InventoryService(db_session)
    return service.create_item(InventoryItemCreate(**amoxicillin_data), ctx)


# ===== LEDGER =====

class TestStockLedger:
    """Tests for the pure stock ledger"""

    def test_usage_leading_to_low_stock(self):
        posting = apply_transaction(StockLevel(current_stock=50, reorder_point=20), used(35))

        assert posting.stock_before == 50
        assert posting.stock_after == 15
        assert posting.quantity_change == -35
        assert posting.status == StockStatus.LOW_STOCK
        assert posting.alert.alert_type == AlertType.LOW_STOCK
        assert posting.alert.severity == AlertSeverity.MEDIUM

    def test_usage_exceeding_stock_is_rejected(self):
        level = StockLevel(current_stock=50, reorder_point=20)

        with pytest.raises(InsufficientStockError) as exc_info:
            apply_transaction(level, used(60))

        assert exc_info.value.requested == 60
        assert exc_info.value.available == 50
        assert level.current_stock == 50

    def test_reserved_stock_is_not_available(self):
        level = StockLevel(current_stock=10, reserved_stock=8)

        with pytest.raises(InsufficientStockError):
            apply_transaction(level, used(5))

    def test_increasing_types_add_stock(self):
        level = StockLevel(current_stock=5, reorder_point=10)
        for transaction_type in (TransactionType.PURCHASE, TransactionType.ADJUSTMENT):
            change = StockChange(transaction_type=transaction_type, quantity=20, reason="Restock")
            posting = apply_transaction(level, change)
            assert posting.stock_after == 25
            assert posting.alert is None

    def test_decreasing_types(self):
        for transaction_type in (TransactionType.USED, TransactionType.EXPIRED, TransactionType.DAMAGED):
            assert signed_quantity(transaction_type, 3) == -3
        assert signed_quantity(TransactionType.PURCHASE, 3) == 3

    def test_using_all_stock(self):
        posting = apply_transaction(StockLevel(current_stock=7, reorder_point=5), used(7))

        assert posting.stock_after == 0
        assert posting.status == StockStatus.OUT_OF_STOCK
        assert posting.alert.alert_type == AlertType.OUT_OF_STOCK
        assert posting.alert.severity == AlertSeverity.CRITICAL

    def test_status_boundaries(self):
        assert derive_stock_status(20, 20) == StockStatus.LOW_STOCK
        assert derive_stock_status(21, 20) == StockStatus.IN_STOCK
        assert derive_stock_status(0, 20) == StockStatus.OUT_OF_STOCK
        assert derive_stock_status(0, 0) == StockStatus.OUT_OF_STOCK

    def test_alert_severity(self):
        assert derive_stock_alert(10, 20).severity == AlertSeverity.HIGH
        assert derive_stock_alert(11, 20).severity == AlertSeverity.MEDIUM
        assert derive_stock_alert(21, 20) is None

    def test_non_positive_quantity(self):
        with pytest.raises(ValidationError):
            used(0)

        change = StockChange.model_construct(transaction_type=TransactionType.USED, quantity=-1, reason="x")
        with pytest.raises(LedgerValidationError):
            apply_transaction(StockLevel(current_stock=5), change)

    def test_posting_commits_once(self):
        posting = apply_transaction(StockLevel(current_stock=5), used(1))
        assert posting.state == TransactionState.VALIDATED

        posting.commit()
        assert posting.state == TransactionState.COMMITTED

        with pytest.raises(LedgerValidationError):
            posting.commit()

    def test_reserved_cannot_exceed_current(self):
        with pytest.raises(ValidationError):
            StockLevel(current_stock=3, reserved_stock=4)

    def test_mixed_sequence_keeps_available_within_current(self):
        level = StockLevel(current_stock=30, reserved_stock=10, reorder_point=5)
        sequence = [
            (TransactionType.USED, 15),
            (TransactionType.PURCHASE, 5),
            (TransactionType.DAMAGED, 10),
            (TransactionType.ADJUSTMENT, 2),
        ]
        for transaction_type, quantity in sequence:
            change = StockChange(transaction_type=transaction_type, quantity=quantity, reason="Mixed")
            level = apply_transaction(level, change).level

            assert level.reserved_stock == 10
            assert 0 <= level.available_stock <= level.current_stock

        assert level.current_stock == 12
        assert level.available_stock == 2

        with pytest.raises(InsufficientStockError):
            apply_transaction(level, StockChange(transaction_type=TransactionType.EXPIRED, quantity=3, reason="Expired"))


# ===== SERVICE =====

class TestInventoryService:
    """Tests for InventoryService"""

    def test_create_item_records_initial_purchase(self, db_session: Session, ctx, amoxicillin):
        transactions = db_session.query(StockTransaction).filter(
            StockTransaction.item_id == amoxicillin.id
        ).all()

        assert amoxicillin.current_stock == 50
        assert len(transactions) == 1
        assert transactions[0].transaction_type == TransactionType.PURCHASE.value
        assert transactions[0].reason == "Initial stock"
        assert transactions[0].total_cost == Decimal("625")

    def test_duplicate_item_code(self, db_session: Session, ctx, amoxicillin, amoxicillin_data):
        service = InventoryService(db_session)

        with pytest.raises(HTTPException) as exc_info:
            service.create_item(InventoryItemCreate(**amoxicillin_data), ctx)

        assert exc_info.value.status_code == 400

    def test_usage_persists_transaction_and_alert(self, db_session: Session, ctx, amoxicillin):
        service = InventoryService(db_session)
        result = service.record_usage(amoxicillin.id, UsageCreate(quantity=35), ctx)

        assert result["item"].current_stock == 15
        assert result["transaction"].stock_before == 50
        assert result["transaction"].stock_after == 15
        assert result["transaction"].quantity_change == -35
        assert result["alert"].severity == AlertSeverity.MEDIUM.value
        assert result["alert"].status == AlertStatus.ACTIVE.value

    def test_rejected_usage_leaves_stock_unchanged(self, db_session: Session, ctx, amoxicillin):
        service = InventoryService(db_session)

        with pytest.raises(HTTPException) as exc_info:
            service.post_transaction(amoxicillin.id, used(60), ctx)

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail["field"] == "quantity"
        db_session.refresh(amoxicillin)
        assert amoxicillin.current_stock == 50
        assert db_session.query(StockTransaction).count() == 1

    def test_new_alert_resolves_previous(self, db_session: Session, ctx, amoxicillin):
        service = InventoryService(db_session)
        service.post_transaction(amoxicillin.id, used(35), ctx)
        service.post_transaction(amoxicillin.id, used(10), ctx)

        alerts = service.get_alerts(ctx)
        assert len(alerts) == 1
        assert alerts[0].severity == AlertSeverity.HIGH.value
        assert alerts[0].current_value == 5

        service.post_transaction(
            amoxicillin.id,
            StockChange(transaction_type=TransactionType.PURCHASE, quantity=100, reason="Supplier delivery"),
            ctx
        )
        assert service.get_alerts(ctx) == []
        assert len(service.get_alerts(ctx, AlertStatus.RESOLVED)) == 2

    def test_dismiss_alert(self, db_session: Session, ctx, amoxicillin):
        service = InventoryService(db_session)
        alert = service.post_transaction(amoxicillin.id, used(50), ctx)["alert"]

        dismissed = service.dismiss_alert(alert.id, ctx)
        assert dismissed.status == AlertStatus.DISMISSED.value
        assert dismissed.acknowledged_by == ctx.user_id

        with pytest.raises(HTTPException) as exc_info:
            service.dismiss_alert(alert.id, ctx)
        assert exc_info.value.status_code == 400

    def test_filters_and_sorting(self, db_session: Session, ctx, amoxicillin):
        service = InventoryService(db_session)
        service.create_item(InventoryItemCreate(
            item_code="SUP-001", name="Gauze pads", initial_stock=5, reorder_point=10, unit_cost=Decimal("3")
        ), ctx)
        service.create_item(InventoryItemCreate(
            item_code="VAC-001", name="Rabies vaccine", item_type="vaccine", reorder_point=2
        ), ctx)

        low = service.get_items(ctx, InventoryFilters(stock_level=StockStatus.LOW_STOCK))
        assert [i.item_code for i in low] == ["SUP-001"]

        reorder = service.get_items(ctx, InventoryFilters(requires_reorder=True), ItemSort.ITEM_CODE)
        assert [i.item_code for i in reorder] == ["SUP-001", "VAC-001"]

        by_stock = service.get_items(ctx, InventoryFilters(), ItemSort.STOCK_LEVEL)
        assert [i.current_stock for i in by_stock] == [0, 5, 50]

        found = service.get_items(ctx, InventoryFilters(search="amox"))
        assert [i.id for i in found] == [amoxicillin.id]

    def test_stats(self, db_session: Session, ctx, amoxicillin):
        service = InventoryService(db_session)
        service.create_item(InventoryItemCreate(item_code="SUP-002", name="Syringes", reorder_point=5), ctx)

        stats = service.get_stats(ctx)

        assert stats.total_items == 2
        assert stats.total_value == Decimal("625")
        assert stats.out_of_stock_items == 1
        assert stats.low_stock_items == 0

    def test_other_branch_cannot_post(self, db_session: Session, ctx, amoxicillin):
        service = InventoryService(db_session)
        other = ctx.model_copy(update={"branch_id": uuid4()})

        with pytest.raises(HTTPException) as exc_info:
            service.post_transaction(amoxicillin.id, used(1), other)

        assert exc_info.value.status_code == 404

    def test_transactions_are_audited(self, db_session: Session, ctx, amoxicillin):
        service = InventoryService(db_session)
        result = service.post_transaction(amoxicillin.id, used(5), ctx)

        entry = db_session.query(AuditEntry).filter(
            AuditEntry.entity_id == result["transaction"].id
        ).one()
        assert entry.entity_type == "stock_transaction"
        assert entry.new_values["quantity"] == 5

    def test_reserved_stock_survives_mixed_transactions(self, db_session: Session, ctx):
        service = InventoryService(db_session)
        item = service.create_item(InventoryItemCreate(
            item_code="VAC-010", name="Distemper vaccine", item_type="vaccine",
            initial_stock=30, reserved_stock=10, reorder_point=5
        ), ctx)

        service.post_transaction(item.id, used(15), ctx)
        service.post_transaction(
            item.id, StockChange(transaction_type=TransactionType.PURCHASE, quantity=5, reason="Delivery"), ctx
        )
        with pytest.raises(HTTPException):
            service.post_transaction(item.id, used(11), ctx)
        service.post_transaction(item.id, used(10), ctx)

        db_session.refresh(item)
        assert item.current_stock == 10
        assert item.reserved_stock == 10
        assert item.available_stock == 0
        assert item.available_stock <= item.current_stock

    def test_usage_records_patient_references(self, db_session: Session, ctx, amoxicillin):
        service = InventoryService(db_session)
        pet_id, appointment_id = uuid4(), uuid4()

        result = service.record_usage(
            amoxicillin.id, UsageCreate(quantity=2, pet_id=pet_id, appointment_id=appointment_id), ctx
        )

        assert result["transaction"].pet_id == pet_id
        assert result["transaction"].appointment_id == appointment_id
        entry = db_session.query(AuditEntry).filter(
            AuditEntry.entity_id == result["transaction"].id
        ).one()
        assert entry.new_values["pet_id"] == str(pet_id)

    def test_update_item_settings(self, db_session: Session, ctx, amoxicillin):
        service = InventoryService(db_session)

        item = service.update_item(
            amoxicillin.id, InventoryItemUpdate(reorder_point=60, unit_cost=Decimal("15")), ctx
        )

        assert item.reorder_point == 60
        assert item.unit_cost == Decimal("15")
        assert item.current_stock == 50
        alerts = service.get_alerts(ctx)
        assert len(alerts) == 1
        assert alerts[0].threshold_value == 60

    def test_update_cannot_touch_stock_counters(self):
        with pytest.raises(ValidationError):
            InventoryItemUpdate(current_stock=500)
        with pytest.raises(ValidationError):
            InventoryItemUpdate(reorder_point=None)

    def test_update_reorder_point_above_maximum(self, db_session: Session, ctx, amoxicillin):
        service = InventoryService(db_session)

        with pytest.raises(HTTPException) as exc_info:
            service.update_item(amoxicillin.id, InventoryItemUpdate(maximum_stock=40, reorder_point=60), ctx)

        assert exc_info.value.status_code == 400
        db_session.refresh(amoxicillin)
        assert amoxicillin.maximum_stock is None

    def test_deactivate_item(self, db_session: Session, ctx, amoxicillin):
        service = InventoryService(db_session)
        service.post_transaction(amoxicillin.id, used(40), ctx)

        service.deactivate_item(amoxicillin.id, ctx)

        with pytest.raises(HTTPException) as exc_info:
            service.get_item(amoxicillin.id, ctx)
        assert exc_info.value.status_code == 404
        assert service.get_items(ctx, InventoryFilters()) == []
        assert service.get_alerts(ctx) == []
        assert len(service.get_transactions(ctx, item_id=amoxicillin.id)) == 2
        assert service.get_stats(ctx).total_items == 0


# ===== ENDPOINTS =====

class TestInventoryEndpoints:
    """Tests for the inventory endpoints"""

    def test_create_and_use_item(self, client, clinic_headers, amoxicillin_data):
        response = client.post("/inventory/items", json=amoxicillin_data, headers=clinic_headers)
        assert response.status_code == 201
        item = response.json()
        assert item["status"] == "in_stock"
        assert Decimal(item["stock_value"]) == Decimal("625")

        response = client.post(
            f"/inventory/items/{item['id']}/usage",
            json={"quantity": 35, "notes": "Post-op antibiotics"},
            headers=clinic_headers
        )
        assert response.status_code == 201
        posting = response.json()
        assert posting["item"]["current_stock"] == 15
        assert posting["item"]["status"] == "low_stock"
        assert posting["alert"]["severity"] == "medium"

        response = client.get("/inventory/alerts", headers=clinic_headers)
        assert len(response.json()) == 1

    def test_insufficient_stock(self, client, clinic_headers, amoxicillin_data):
        item = client.post("/inventory/items", json=amoxicillin_data, headers=clinic_headers).json()

        response = client.post(
            f"/inventory/items/{item['id']}/transactions",
            json={"transaction_type": "used", "quantity": 60, "reason": "Surgery"},
            headers=clinic_headers
        )

        assert response.status_code == 400
        assert "available stock" in response.json()["detail"]["message"]

        response = client.get(f"/inventory/items/{item['id']}", headers=clinic_headers)
        assert response.json()["current_stock"] == 50

    def test_list_and_transactions(self, client, clinic_headers, amoxicillin_data):
        item = client.post("/inventory/items", json=amoxicillin_data, headers=clinic_headers).json()

        response = client.get("/inventory/items", params={"search": "MED"}, headers=clinic_headers)
        assert response.status_code == 200
        assert response.json()["total"] == 1

        response = client.get(
            "/inventory/transactions", params={"item_id": item["id"]}, headers=clinic_headers
        )
        assert response.status_code == 200
        assert [t["transaction_type"] for t in response.json()] == ["purchase"]

    def test_invalid_transaction_type(self, client, clinic_headers, amoxicillin_data):
        item = client.post("/inventory/items", json=amoxicillin_data, headers=clinic_headers).json()

        response = client.post(
            f"/inventory/items/{item['id']}/transactions",
            json={"transaction_type": "stolen", "quantity": 1, "reason": "?"},
            headers=clinic_headers
        )
        assert response.status_code == 422

    def test_patch_and_delete_item(self, client, clinic_headers, amoxicillin_data):
        item = client.post("/inventory/items", json=amoxicillin_data, headers=clinic_headers).json()

        response = client.patch(
            f"/inventory/items/{item['id']}", json={"reorder_point": 60}, headers=clinic_headers
        )
        assert response.status_code == 200
        assert response.json()["status"] == "low_stock"
        assert response.json()["current_stock"] == 50

        response = client.patch(
            f"/inventory/items/{item['id']}", json={"current_stock": 999}, headers=clinic_headers
        )
        assert response.status_code == 422

        response = client.delete(f"/inventory/items/{item['id']}", headers=clinic_headers)
        assert response.status_code == 204

        response = client.get(f"/inventory/items/{item['id']}", headers=clinic_headers)
        assert response.status_code == 404
