"""
Site services -- orchestration over engines, modules and the database.

Services own transaction boundaries and load snapshots for the pure
engines in ``site_engines``.
"""

from site_services.change_feed import (
    ChangeBatch,
    ChangeBuffer,
    ChangeEvent,
    ChangeOp,
    RecomputeDispatcher,
    RecomputeResult,
    merge_updates,
)
from site_services.inventory_cache import InventoryCache
from site_services.reconciliation_service import ReceiptOutcome, ReconciliationService
from site_services.snapshot_service import SnapshotService

__all__ = [
    "ChangeBatch",
    "ChangeBuffer",
    "ChangeEvent",
    "ChangeOp",
    "InventoryCache",
    "ReceiptOutcome",
    "RecomputeDispatcher",
    "RecomputeResult",
    "ReconciliationService",
    "SnapshotService",
    "merge_updates",
]
