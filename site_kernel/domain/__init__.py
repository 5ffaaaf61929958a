"""Pure domain values: clock, quantities, item identity, document snapshots."""

from site_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from site_kernel.domain.documents import (
    BudgetEntry,
    LedgerEntry,
    MovementDirection,
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseOrderStatus,
    PurchaseRequest,
    PurchaseRequestLine,
    PurchaseRequestStatus,
    ReceiptSource,
    ReconciliationSnapshot,
    Requisition,
    RequisitionLine,
    RequisitionLineStatus,
)
from site_kernel.domain.item_ref import (
    ByDescription,
    ById,
    CatalogItem,
    ItemCatalog,
    ItemKind,
    ItemRef,
    items_match,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "BudgetEntry",
    "LedgerEntry",
    "MovementDirection",
    "PurchaseOrder",
    "PurchaseOrderLine",
    "PurchaseOrderStatus",
    "PurchaseRequest",
    "PurchaseRequestLine",
    "PurchaseRequestStatus",
    "ReceiptSource",
    "ReconciliationSnapshot",
    "Requisition",
    "RequisitionLine",
    "RequisitionLineStatus",
    "ByDescription",
    "ById",
    "CatalogItem",
    "ItemCatalog",
    "ItemKind",
    "ItemRef",
    "items_match",
]
