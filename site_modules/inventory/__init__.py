"""
Inventory Module (``site_modules.inventory``).

Responsibility
--------------
Append-only warehouse movement ledger, stock levels derived from it, and
the stock report normalised across materials, equipment and PPE.
"""

from site_modules.inventory.models import StockDrift, StockLevel, StockReportRow
from site_modules.inventory.service import InventoryService, StockCache

__all__ = [
    "InventoryService",
    "StockCache",
    "StockDrift",
    "StockLevel",
    "StockReportRow",
]
