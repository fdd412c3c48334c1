from typing import List, Optional
from uuid import UUID
from datetime import datetime, timezone
from decimal import Decimal
import logging

from fastapi import HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy import and_, or_, desc

from vetcare.common.context import ClinicContext
from vetcare.common.errors import LedgerValidationError
from vetcare.modules.audit.models import AuditAction, AuditEntityType
from vetcare.modules.audit.service import AuditService
from vetcare.modules.inventory.ledger import apply_transaction, derive_stock_alert, derive_stock_status
from vetcare.modules.inventory.models import InventoryItem, StockTransaction, StockAlert
from vetcare.modules.inventory.schemas import (
    InventoryItemCreate, InventoryItemUpdate, InventoryFilters, InventoryStats, ItemSort,
    StockAlertDraft, StockChange, StockLevel, StockStatus, TransactionType, AlertStatus, UsageCreate
)

logger = logging.getLogger(__name__)


class InventoryService:
    """Service for inventory management operations."""

    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditService(db)

    def create_item(self, item_data: InventoryItemCreate, ctx: ClinicContext) -> InventoryItem:
        """Create an inventory item. Initial stock is posted as a purchase."""
        try:
            existing = self.db.query(InventoryItem).filter(
                and_(
                    InventoryItem.branch_id == ctx.branch_id,
                    InventoryItem.item_code == item_data.item_code
                )
            ).first()
            if existing:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"An item with code '{item_data.item_code}' already exists in this branch"
                )

            item = InventoryItem(
                branch_id=ctx.branch_id,
                item_code=item_data.item_code,
                name=item_data.name,
                item_type=item_data.item_type.value,
                description=item_data.description,
                unit_of_measure=item_data.unit_of_measure,
                current_stock=0,
                reserved_stock=0,
                minimum_stock=item_data.minimum_stock,
                reorder_point=item_data.reorder_point,
                reorder_quantity=item_data.reorder_quantity,
                maximum_stock=item_data.maximum_stock,
                unit_cost=item_data.unit_cost,
                has_expiration=item_data.has_expiration
            )
            self.db.add(item)
            self.db.flush()

            posting = None
            if item_data.initial_stock > 0:
                posting, _, _ = self._post(item, StockChange(
                    transaction_type=TransactionType.PURCHASE,
                    quantity=item_data.initial_stock,
                    reason="Initial stock"
                ), ctx)
            item.reserved_stock = item_data.reserved_stock

            self.audit.log_action(
                ctx, AuditAction.CREATE, AuditEntityType.INVENTORY_ITEM, item.id,
                f"Created inventory item {item.item_code} - {item.name}",
                new_values=item_data
            )

            self.db.commit()
            if posting:
                posting.commit()
            self.db.refresh(item)

            logger.info(f"Inventory item {item.item_code} created with stock {item.current_stock}")
            return item

        except LedgerValidationError as e:
            self.db.rollback()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.to_detail())
        except HTTPException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creating inventory item: {str(e)}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Error creating inventory item: {str(e)}"
            )

    def get_item(self, item_id: UUID, ctx: ClinicContext) -> InventoryItem:
        item = self.db.query(InventoryItem).filter(
            and_(
                InventoryItem.id == item_id,
                InventoryItem.branch_id == ctx.branch_id,
                InventoryItem.is_active.is_(True)
            )
        ).first()
        if not item:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Inventory item not found"
            )
        return item

    def _item_values(self, item: InventoryItem) -> dict:
        return {
            field: getattr(item, field)
            for field in (
                "name", "item_type", "description", "unit_of_measure", "minimum_stock",
                "reorder_point", "reorder_quantity", "maximum_stock", "unit_cost",
                "has_expiration", "is_active"
            )
        }

    def update_item(self, item_id: UUID, item_update: InventoryItemUpdate, ctx: ClinicContext) -> InventoryItem:
        """
        Update item settings. Stock counters are not editable here; a new
        reorder point re-evaluates the item's alerts against current stock.
        """
        try:
            item = self.get_item(item_id, ctx)
            old_values = self._item_values(item)
            changes = item_update.model_dump(exclude_unset=True)

            reorder_point = changes.get("reorder_point", item.reorder_point)
            maximum_stock = changes.get("maximum_stock", item.maximum_stock)
            if maximum_stock is not None and reorder_point > maximum_stock:
                raise LedgerValidationError(
                    "Reorder point cannot exceed the maximum stock", field="reorder_point"
                )

            for field, value in changes.items():
                if field == "item_type":
                    value = value.value
                setattr(item, field, value)

            if "reorder_point" in changes:
                self._replace_alerts(item, derive_stock_alert(item.current_stock, item.reorder_point), ctx)

            self.audit.log_action(
                ctx, AuditAction.UPDATE, AuditEntityType.INVENTORY_ITEM, item.id,
                f"Updated inventory item {item.item_code}",
                old_values=old_values,
                new_values=self._item_values(item)
            )

            self.db.commit()
            self.db.refresh(item)
            logger.info(f"Inventory item {item.item_code} updated: {', '.join(changes) or 'no changes'}")
            return item

        except LedgerValidationError as e:
            self.db.rollback()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.to_detail())
        except HTTPException:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error updating inventory item {item_id}: {str(e)}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Error updating inventory item: {str(e)}"
            )

    def deactivate_item(self, item_id: UUID, ctx: ClinicContext) -> None:
        """Soft delete: the item and its transaction history stay in the database."""
        try:
            item = self.get_item(item_id, ctx)
            item.is_active = False
            self._replace_alerts(item, None, ctx)

            self.audit.log_action(
                ctx, AuditAction.DELETE, AuditEntityType.INVENTORY_ITEM, item.id,
                f"Deactivated inventory item {item.item_code} - {item.name}",
                old_values={**self._item_values(item), "is_active": True, "current_stock": item.current_stock}
            )

            self.db.commit()
            logger.info(f"Inventory item {item.item_code} deactivated")

        except HTTPException:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error deactivating inventory item {item_id}: {str(e)}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Error deleting inventory item: {str(e)}"
            )

    def get_items(
        self,
        ctx: ClinicContext,
        filters: InventoryFilters,
        sort_by: ItemSort = ItemSort.NAME
    ) -> List[InventoryItem]:
        """Filter and sort items; stock status is derived from current counters."""
        query = self.db.query(InventoryItem).filter(
            and_(InventoryItem.branch_id == ctx.branch_id, InventoryItem.is_active.is_(True))
        )

        if filters.item_type:
            query = query.filter(InventoryItem.item_type == filters.item_type.value)
        if filters.has_expiration is not None:
            query = query.filter(InventoryItem.has_expiration.is_(filters.has_expiration))
        if filters.search:
            term = f"%{filters.search.strip()}%"
            query = query.filter(or_(
                InventoryItem.name.ilike(term),
                InventoryItem.item_code.ilike(term)
            ))

        items = query.all()

        if filters.stock_level:
            items = [
                i for i in items
                if derive_stock_status(i.current_stock, i.reorder_point) == filters.stock_level
            ]
        if filters.requires_reorder:
            items = [i for i in items if i.current_stock <= i.reorder_point]

        if sort_by == ItemSort.STOCK_LEVEL:
            items.sort(key=lambda i: i.current_stock)
        elif sort_by == ItemSort.ITEM_CODE:
            items.sort(key=lambda i: i.item_code)
        elif sort_by == ItemSort.VALUE:
            items.sort(key=lambda i: i.current_stock * i.unit_cost, reverse=True)
        else:
            items.sort(key=lambda i: i.name.lower())

        return items

    def _post(self, item: InventoryItem, change: StockChange, ctx: ClinicContext):
        """Validate and stage a transaction on the session; the caller commits."""
        level = StockLevel(
            current_stock=item.current_stock,
            reserved_stock=item.reserved_stock,
            reorder_point=item.reorder_point
        )
        posting = apply_transaction(level, change)

        unit_cost = Decimal(item.unit_cost or 0)
        transaction = StockTransaction(
            branch_id=ctx.branch_id,
            item_id=item.id,
            created_by=ctx.user_id,
            transaction_type=change.transaction_type.value,
            quantity=change.quantity,
            quantity_change=posting.quantity_change,
            stock_before=posting.stock_before,
            stock_after=posting.stock_after,
            unit_cost=unit_cost,
            total_cost=change.quantity * unit_cost,
            reason=change.reason,
            batch_number=change.batch_number,
            lot_number=change.lot_number,
            expiration_date=change.expiration_date,
            pet_id=change.pet_id,
            appointment_id=change.appointment_id
        )
        self.db.add(transaction)

        item.current_stock = posting.stock_after
        alert = self._replace_alerts(item, posting.alert, ctx)
        self.db.flush()

        return posting, transaction, alert

    def _replace_alerts(self, item: InventoryItem, draft: Optional[StockAlertDraft], ctx: ClinicContext) -> Optional[StockAlert]:
        """Resolve the item's active alerts and raise a new one if still at or below the reorder point."""
        self.db.query(StockAlert).filter(
            and_(
                StockAlert.item_id == item.id,
                StockAlert.status == AlertStatus.ACTIVE.value
            )
        ).update({StockAlert.status: AlertStatus.RESOLVED.value}, synchronize_session="fetch")

        if not draft:
            return None

        alert = StockAlert(
            branch_id=ctx.branch_id,
            item_id=item.id,
            alert_type=draft.alert_type.value,
            severity=draft.severity.value,
            message=(
                f"{'Out of Stock' if draft.current_value == 0 else 'Low Stock'}: {item.name}. "
                f"Current stock: {draft.current_value} {item.unit_of_measure}, "
                f"Reorder point: {draft.threshold_value} {item.unit_of_measure}"
            )[:255],
            current_value=draft.current_value,
            threshold_value=draft.threshold_value,
            status=AlertStatus.ACTIVE.value
        )
        self.db.add(alert)
        return alert

    def post_transaction(self, item_id: UUID, change: StockChange, ctx: ClinicContext) -> dict:
        """Apply a stock transaction to an item and persist it."""
        try:
            item = self.get_item(item_id, ctx)
            posting, transaction, alert = self._post(item, change, ctx)

            self.audit.log_action(
                ctx, AuditAction.CREATE, AuditEntityType.STOCK_TRANSACTION, transaction.id,
                f"{change.transaction_type.value} x{change.quantity} on {item.item_code}: "
                f"{posting.stock_before} -> {posting.stock_after}",
                new_values=change
            )

            self.db.commit()
            posting.commit()
            self.db.refresh(item)
            self.db.refresh(transaction)
            if alert:
                self.db.refresh(alert)

            logger.info(
                f"Stock for {item.item_code} ({change.transaction_type.value}): "
                f"{posting.stock_before} -> {posting.stock_after}"
            )
            if alert:
                logger.warning(f"Stock alert for {item.item_code}: {alert.message}")

            return {"item": item, "transaction": transaction, "alert": alert}

        except LedgerValidationError as e:
            self.db.rollback()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.to_detail())
        except HTTPException:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error posting stock transaction for {item_id}: {str(e)}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Error updating stock: {str(e)}"
            )

    def record_usage(self, item_id: UUID, usage: UsageCreate, ctx: ClinicContext) -> dict:
        """Record stock used in a treatment."""
        reason = usage.reason
        if usage.notes:
            reason = f"{reason} - {usage.notes}"[:255]
        change = StockChange(
            transaction_type=TransactionType.USED,
            quantity=usage.quantity,
            reason=reason,
            pet_id=usage.pet_id,
            appointment_id=usage.appointment_id
        )
        return self.post_transaction(item_id, change, ctx)

    def get_transactions(
        self,
        ctx: ClinicContext,
        item_id: Optional[UUID] = None,
        transaction_type: Optional[TransactionType] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[StockTransaction]:
        query = self.db.query(StockTransaction).filter(StockTransaction.branch_id == ctx.branch_id)
        if item_id:
            query = query.filter(StockTransaction.item_id == item_id)
        if transaction_type:
            query = query.filter(StockTransaction.transaction_type == transaction_type.value)

        return query.order_by(desc(StockTransaction.created_at)).offset(offset).limit(limit).all()

    def get_alerts(self, ctx: ClinicContext, alert_status: Optional[AlertStatus] = AlertStatus.ACTIVE) -> List[StockAlert]:
        query = self.db.query(StockAlert).filter(StockAlert.branch_id == ctx.branch_id)
        if alert_status:
            query = query.filter(StockAlert.status == alert_status.value)
        return query.order_by(desc(StockAlert.created_at)).all()

    def dismiss_alert(self, alert_id: UUID, ctx: ClinicContext) -> StockAlert:
        alert = self.db.query(StockAlert).filter(
            and_(StockAlert.id == alert_id, StockAlert.branch_id == ctx.branch_id)
        ).first()
        if not alert:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Alert not found"
            )
        if alert.status != AlertStatus.ACTIVE.value:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Alert is already {alert.status}"
            )

        alert.status = AlertStatus.DISMISSED.value
        alert.acknowledged_at = datetime.now(timezone.utc)
        alert.acknowledged_by = ctx.user_id
        self.db.commit()
        self.db.refresh(alert)
        return alert

    def get_stats(self, ctx: ClinicContext) -> InventoryStats:
        """Totals for the inventory dashboard"""
        items = self.db.query(InventoryItem).filter(
            and_(InventoryItem.branch_id == ctx.branch_id, InventoryItem.is_active.is_(True))
        ).all()

        total_value = Decimal('0')
        low_stock = out_of_stock = 0
        by_type = {}
        for item in items:
            total_value += item.current_stock * Decimal(item.unit_cost or 0)
            stock_status = derive_stock_status(item.current_stock, item.reorder_point)
            if stock_status == StockStatus.LOW_STOCK:
                low_stock += 1
            elif stock_status == StockStatus.OUT_OF_STOCK:
                out_of_stock += 1
            by_type[item.item_type] = by_type.get(item.item_type, 0) + 1

        active_alerts = self.db.query(StockAlert).filter(
            and_(
                StockAlert.branch_id == ctx.branch_id,
                StockAlert.status == AlertStatus.ACTIVE.value
            )
        ).count()

        return InventoryStats(
            total_items=len(items),
            total_value=total_value,
            low_stock_items=low_stock,
            out_of_stock_items=out_of_stock,
            active_alerts=active_alerts,
            items_by_type=by_type
        )
