from fastapi import APIRouter, Query, status
from typing import List, Optional
from uuid import UUID

from vetcare.core.config import settings
from vetcare.dependencies.dbDependencies import db_dependency
from vetcare.dependencies.clinicDependencies import ClinicContextDep
from vetcare.modules.inventory.service import InventoryService
from vetcare.modules.inventory.schemas import (
    InventoryItemCreate, InventoryItemUpdate, InventoryItemOut, InventoryItemList, InventoryFilters,
    InventoryStats, ItemSort, ItemType, StockStatus, StockChange, StockPostingOut,
    StockTransactionOut, StockAlertOut, AlertStatus, TransactionType, UsageCreate
)

router = APIRouter(prefix="/inventory", tags=["Inventory"])


@router.post("/items", response_model=InventoryItemOut, status_code=status.HTTP_201_CREATED)
def create_item(item_data: InventoryItemCreate, db: db_dependency, ctx: ClinicContextDep):
    """
    Create an inventory item

    A non-zero initial stock is recorded as a purchase transaction.
    """
    service = InventoryService(db)
    return service.create_item(item_data, ctx)


@router.get("/items", response_model=InventoryItemList)
def list_items(
    db: db_dependency,
    ctx: ClinicContextDep,
    stock_level: Optional[StockStatus] = Query(None, description="in_stock, low_stock or out_of_stock"),
    item_type: Optional[ItemType] = Query(None),
    has_expiration: Optional[bool] = Query(None),
    requires_reorder: bool = Query(False, description="Only items at or below the reorder point"),
    search: Optional[str] = Query(None, description="Search by name or item code"),
    sort_by: ItemSort = Query(ItemSort.NAME)
):
    service = InventoryService(db)
    filters = InventoryFilters(
        stock_level=stock_level,
        item_type=item_type,
        has_expiration=has_expiration,
        requires_reorder=requires_reorder,
        search=search
    )
    items = service.get_items(ctx, filters, sort_by)
    return InventoryItemList(
        items=[InventoryItemOut.model_validate(i) for i in items],
        total=len(items),
        sort_by=sort_by
    )


@router.get("/stats", response_model=InventoryStats)
def inventory_stats(db: db_dependency, ctx: ClinicContextDep):
    service = InventoryService(db)
    return service.get_stats(ctx)


@router.get("/items/{item_id}", response_model=InventoryItemOut)
def get_item(item_id: UUID, db: db_dependency, ctx: ClinicContextDep):
    service = InventoryService(db)
    return service.get_item(item_id, ctx)


@router.patch("/items/{item_id}", response_model=InventoryItemOut)
def update_item(item_id: UUID, item_update: InventoryItemUpdate, db: db_dependency, ctx: ClinicContextDep):
    """
    Update item settings (name, reorder point, maximum stock, unit cost...)

    Stock counters cannot be set here; post a transaction instead.
    """
    service = InventoryService(db)
    return service.update_item(item_id, item_update, ctx)


@router.delete("/items/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_item(item_id: UUID, db: db_dependency, ctx: ClinicContextDep):
    """Deactivate an item; its transaction history is kept."""
    service = InventoryService(db)
    service.deactivate_item(item_id, ctx)


@router.post("/items/{item_id}/transactions", response_model=StockPostingOut, status_code=status.HTTP_201_CREATED)
def post_transaction(item_id: UUID, change: StockChange, db: db_dependency, ctx: ClinicContextDep):
    """
    Post a stock transaction

    used, expired and damaged decrease stock; purchase and adjustment increase it.
    A decrease larger than the available stock is rejected and nothing changes.
    """
    service = InventoryService(db)
    return StockPostingOut.model_validate(service.post_transaction(item_id, change, ctx), from_attributes=True)


@router.post("/items/{item_id}/usage", response_model=StockPostingOut, status_code=status.HTTP_201_CREATED)
def record_usage(item_id: UUID, usage: UsageCreate, db: db_dependency, ctx: ClinicContextDep):
    """Record stock used in a treatment."""
    service = InventoryService(db)
    return StockPostingOut.model_validate(service.record_usage(item_id, usage, ctx), from_attributes=True)


@router.get("/transactions", response_model=List[StockTransactionOut])
def list_transactions(
    db: db_dependency,
    ctx: ClinicContextDep,
    item_id: Optional[UUID] = Query(None),
    transaction_type: Optional[TransactionType] = Query(None),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0)
):
    service = InventoryService(db)
    return service.get_transactions(ctx, item_id, transaction_type, limit, offset)


@router.get("/alerts", response_model=List[StockAlertOut])
def list_alerts(
    db: db_dependency,
    ctx: ClinicContextDep,
    alert_status: Optional[AlertStatus] = Query(AlertStatus.ACTIVE, alias="status")
):
    service = InventoryService(db)
    return service.get_alerts(ctx, alert_status)


@router.post("/alerts/{alert_id}/dismiss", response_model=StockAlertOut)
def dismiss_alert(alert_id: UUID, db: db_dependency, ctx: ClinicContextDep):
    service = InventoryService(db)
    return service.dismiss_alert(alert_id, ctx)
