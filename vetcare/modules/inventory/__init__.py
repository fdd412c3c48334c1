"""
Inventory module - VetCare

Stock ledger for medicines, vaccines and supplies:

- Stock transactions (purchase, used, expired, damaged, adjustment)
- Decreases never exceed the available stock
- Derived stock status and low-stock alerts
- Item settings edits and soft delete (is_active)

Tables:
- inventory_items: items and their stock counters
- stock_transactions: one row per stock change
- stock_alerts: low-stock and out-of-stock alerts
"""

from .models import InventoryItem, StockTransaction, StockAlert
from .service import InventoryService
from .router import router

__all__ = [
    "InventoryItem", "StockTransaction", "StockAlert",
    "InventoryService",
    "router"
]
